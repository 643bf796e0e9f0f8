"""
Report formatting and export utilities.
"""

import csv
import json
from typing import Any


def export_report_json(report: dict[str, Any], output_path: str) -> None:
    with open(output_path, "w") as f:
        json.dump(report, f, indent=2, default=str)


def export_report_csv(report: dict[str, Any], output_path: str) -> None:
    """
    Export the per-table section of a report to CSV

    Args:
        report: Report dictionary from generate_pass_report
        output_path: Path to output file
    """
    with open(output_path, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow([
            "Table",
            "Status",
            "Uploaded",
            "Downloaded",
            "Rows Failed",
            "Keys Updated",
            "Keys Missing",
            "Key Failures",
        ])
        for table in report.get("tables", []):
            writer.writerow([
                table.get("table", ""),
                table.get("status", ""),
                table.get("uploaded", 0),
                table.get("downloaded", 0),
                table.get("rows_failed", 0),
                table.get("keys_updated", 0),
                table.get("keys_missing", 0),
                table.get("key_failures", 0),
            ])


def format_report_console(report: dict[str, Any]) -> str:
    """
    Format report for console output

    Args:
        report: Report dictionary

    Returns:
        Formatted string for console display
    """
    lines = []

    lines.append("=" * 80)
    lines.append("SYNC REPORT")
    lines.append("=" * 80)
    lines.append(f"Status: {report['status']}")
    lines.append(f"Timestamp: {report['timestamp']}")
    lines.append(f"Duration: {report['duration_seconds']:.1f}s")
    lines.append(f"Tables: {report['tables_ok']} ok, {report['tables_failed']} failed")
    lines.append(f"Rows Uploaded: {report['uploaded']:,}")
    lines.append(f"Rows Downloaded: {report['downloaded']:,}")
    lines.append(f"Keys Reconciled: {report['keys_updated']:,}")
    if report["constraints_rebuilt"]:
        lines.append("Local constraints rebuilt")
    lines.append("")

    lines.append("SUMMARY")
    lines.append("-" * 80)
    lines.append(report["summary"])
    lines.append("")

    if report["tables"]:
        lines.append("TABLES")
        lines.append("-" * 80)
        for table in report["tables"]:
            lines.append(
                f"{table['table']:<30} {table['status']:<7} "
                f"up={table['uploaded']} down={table['downloaded']} "
                f"failed={table['rows_failed']} keys={table['keys_updated']}"
            )
        lines.append("")

    if report["issues"]:
        lines.append("ISSUES")
        lines.append("-" * 80)
        for issue in report["issues"]:
            lines.append(f"Table: {issue['table'] or '-'}")
            lines.append(f"  Step: {issue['step']}")
            lines.append(f"  Detail: {issue['detail']}")
        lines.append("")

    if report["recommendations"]:
        lines.append("RECOMMENDATIONS")
        lines.append("-" * 80)
        for i, rec in enumerate(report["recommendations"], 1):
            lines.append(f"{i}. {rec}")
        lines.append("")

    lines.append("=" * 80)

    return "\n".join(lines)

"""
Report generation from sync pass results.

Turns a PassReport into a plain dictionary suitable for JSON export, with
per-table totals, the failed steps, and suggested follow-ups.
"""

from datetime import UTC, datetime
from typing import Any

from ..models import PassReport, StepStatus, TableReport


def format_timestamp(timestamp: datetime | None) -> str | None:
    """ISO 8601 timestamp, or None when the value is missing."""
    return timestamp.isoformat() if timestamp else None


def _table_entry(table: TableReport) -> dict[str, Any]:
    stats = table.statistics
    reconcile = table.reconcile
    return {
        "table": table.table,
        "status": table.status,
        "scope_created": table.scope_created,
        "uploaded": stats.uploaded if stats else 0,
        "downloaded": stats.downloaded if stats else 0,
        "rows_failed": stats.failed if stats else 0,
        "keys_updated": reconcile.updated if reconcile else 0,
        "keys_missing": reconcile.missing if reconcile else 0,
        "key_failures": len(reconcile.failures) if reconcile else 0,
    }


def _issues(report: PassReport) -> list[dict[str, Any]]:
    issues = []
    for table in report.tables:
        for step in table.steps:
            if step.status is StepStatus.FAILED:
                issues.append({"table": table.table, "step": step.step, "detail": step.detail})
    for step in report.constraint_results:
        if step.status is StepStatus.FAILED:
            issues.append({"table": step.table, "step": step.step, "detail": step.detail})
    return issues


def generate_pass_report(report: PassReport) -> dict[str, Any]:
    """
    Summarize a sync pass

    Args:
        report: Result of SyncOrchestrator.run_sync

    Returns:
        Dictionary containing:
        - status: PASS, PARTIAL, FAIL, or NO_DATA
        - total_tables, tables_ok, tables_failed
        - uploaded, downloaded, rows_failed, keys_updated totals
        - tables: per-table entries
        - issues: failed steps, constraint rebuild included
        - summary: Human-readable summary
        - recommendations: Suggested follow-ups
        - timestamp: Report generation time
    """
    tables = [_table_entry(t) for t in report.tables]
    issues = _issues(report)
    failed = len(report.failed_tables)

    result = {
        "status": report.status,
        "started_at": format_timestamp(report.started_at),
        "completed_at": format_timestamp(report.completed_at),
        "duration_seconds": report.duration_seconds,
        "total_tables": len(tables),
        "tables_ok": len(tables) - failed,
        "tables_failed": failed,
        "uploaded": sum(t["uploaded"] for t in tables),
        "downloaded": sum(t["downloaded"] for t in tables),
        "rows_failed": sum(t["rows_failed"] for t in tables),
        "keys_updated": sum(t["keys_updated"] for t in tables),
        "schema_changed": report.schema_changed,
        "constraints_rebuilt": report.constraints_rebuilt,
        "tables": tables,
        "issues": issues,
        "timestamp": datetime.now(UTC).isoformat(),
    }
    result["summary"] = _generate_summary(result)
    result["recommendations"] = _generate_recommendations(result)
    return result


def _generate_summary(result: dict[str, Any]) -> str:
    if result["status"] == "NO_DATA":
        return "No tables were synchronized"
    if result["tables_failed"] == 0:
        return (
            f"All {result['total_tables']} tables synchronized: "
            f"{result['uploaded']} rows uploaded, {result['downloaded']} downloaded."
        )
    return (
        f"{result['tables_failed']} of {result['total_tables']} tables failed. "
        f"{result['tables_ok']} tables synchronized."
    )


def _generate_recommendations(result: dict[str, Any]) -> list[str]:
    recommendations = []

    if result["status"] == "NO_DATA":
        recommendations.append("Check that the server database has tables to synchronize.")
        return recommendations

    if result["rows_failed"]:
        recommendations.append(
            f"{result['rows_failed']} rows could not be applied and will be retried. "
            "Rows whose parent table has not synced yet apply on the next pass."
        )

    steps = {issue["step"] for issue in result["issues"]}
    if "provision" in steps:
        recommendations.append(
            "Provisioning failed for some tables. Check that every table has a "
            "GUID column and that the local database is writable."
        )
    if "transport" in steps:
        recommendations.append("Transport failed for some tables. Check server connectivity.")
    if "reconcile" in steps:
        recommendations.append(
            "Some surrogate keys could not be reconciled. Run 'offline-sync drift' "
            "to list the affected rows."
        )
    if any(step.startswith(("foreign key", "index", "read constraints")) for step in steps):
        recommendations.append("Some local constraints could not be rebuilt; see issues for details.")

    if not recommendations:
        recommendations.append("Local and server data are in sync.")
    return recommendations

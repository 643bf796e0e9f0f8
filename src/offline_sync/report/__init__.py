"""
Sync pass report generation and formatting.
"""

from .formatters import export_report_csv, export_report_json, format_report_console
from .generator import format_timestamp, generate_pass_report

__all__ = [
    "generate_pass_report",
    "format_timestamp",
    "export_report_json",
    "export_report_csv",
    "format_report_console",
]

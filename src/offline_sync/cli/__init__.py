"""
Command-line interface for the offline sync engine.

Available commands:
- sync: Run one sync pass
- desync: Remove local tracking and data
- drop-table: Drop one local table and re-sync it
- tables: List synchronizable tables
- query: Run a diagnostic query
- drift: List rows whose local key differs from the server
- schedule: Run sync passes periodically
- report: Format a saved report
"""

import sys

from sync_utils.logging import setup_logging, shutdown_logging
from sync_utils.tracing import initialize_tracing, shutdown_tracing

from .commands import (
    cmd_desync,
    cmd_drift,
    cmd_drop_table,
    cmd_query,
    cmd_report,
    cmd_schedule,
    cmd_sync,
    cmd_tables,
)
from .credentials import build_config, get_connection_strings, parse_tables
from .parser import create_parser

COMMANDS = {
    "sync": cmd_sync,
    "desync": cmd_desync,
    "drop-table": cmd_drop_table,
    "tables": cmd_tables,
    "query": cmd_query,
    "drift": cmd_drift,
    "schedule": cmd_schedule,
    "report": cmd_report,
}


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the offline-sync CLI"""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command not in COMMANDS:
        parser.print_help()
        sys.exit(1)

    if getattr(args, "tables", None) and getattr(args, "tables_file", None):
        parser.error("Use either --tables or --tables-file, not both")

    setup_logging(level=args.log_level, log_file=args.log_file, json_format=args.json_logs)
    initialize_tracing()

    try:
        COMMANDS[args.command](args)
    finally:
        shutdown_tracing()
        shutdown_logging()


__all__ = [
    "main",
    "create_parser",
    "build_config",
    "get_connection_strings",
    "parse_tables",
    "cmd_sync",
    "cmd_desync",
    "cmd_drop_table",
    "cmd_tables",
    "cmd_query",
    "cmd_drift",
    "cmd_schedule",
    "cmd_report",
]


if __name__ == "__main__":
    main()

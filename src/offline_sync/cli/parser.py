"""
Command-line argument parser configuration.
"""

import argparse


def _add_connection_options(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("connection")
    group.add_argument(
        "--use-vault",
        action="store_true",
        help="Fetch connection strings from HashiCorp Vault",
    )
    group.add_argument("--local-connection", help="ODBC connection string for the local store")
    group.add_argument("--remote-connection", help="ODBC connection string for the server store")
    group.add_argument("--local-db", help="Local database name")
    group.add_argument("--remote-db", help="Server database name")
    group.add_argument("--root-dir", help="Directory holding the local database file")
    group.add_argument(
        "--client-id",
        help="Origin tag for this device (default: generated and kept in the local store)",
    )


def _add_tables_option(parser: argparse.ArgumentParser, help_text: str) -> None:
    parser.add_argument("--tables", help=help_text)
    parser.add_argument("--tables-file", help="File containing list of tables (one per line)")


def create_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="offline-sync",
        description="Offline/online sync between a local SQL Server database and a central server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Sync every local table (every server table on first run)
  offline-sync sync

  # Sync two tables and save a JSON report
  offline-sync sync --tables ItemType,Item --format json --output report.json

  # Connection strings from Vault
  offline-sync sync --use-vault

  # Rows whose local key still differs from the server
  offline-sync drift --tables Item

  # Sync every 15 minutes
  offline-sync schedule --interval 900 --output-dir ./sync_reports

  # Remove all local data and tracking
  offline-sync desync --yes
        """,
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    parser.add_argument("--log-file", help="Write logs to this file as well (rotated)")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # ========== sync ==========
    sync_parser = subparsers.add_parser("sync", help="Run one sync pass")
    _add_tables_option(sync_parser, "Comma-separated list of tables to sync, in order")
    sync_parser.add_argument(
        "--format",
        choices=["console", "json", "csv"],
        default="console",
        help="Output format (default: console)",
    )
    sync_parser.add_argument("--output", help="Output file path for report")
    _add_connection_options(sync_parser)

    # ========== desync ==========
    desync_parser = subparsers.add_parser(
        "desync", help="Drop local tracking and every local table"
    )
    desync_parser.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
    _add_connection_options(desync_parser)

    # ========== drop-table ==========
    drop_parser = subparsers.add_parser(
        "drop-table", help="Drop one local table and re-sync it from the server"
    )
    drop_parser.add_argument("table", help="Local table name")
    _add_connection_options(drop_parser)

    # ========== tables ==========
    tables_parser = subparsers.add_parser("tables", help="List synchronizable tables")
    tables_parser.add_argument(
        "--target",
        choices=["local", "server"],
        default="local",
        help="Store to list (default: local)",
    )
    _add_connection_options(tables_parser)

    # ========== query ==========
    query_parser = subparsers.add_parser("query", help="Run a diagnostic query")
    query_parser.add_argument("sql", help="SQL text")
    query_parser.add_argument(
        "--target",
        choices=["local", "server"],
        default="local",
        help="Store to query (default: local)",
    )
    _add_connection_options(query_parser)

    # ========== drift ==========
    drift_parser = subparsers.add_parser(
        "drift", help="List rows whose local surrogate key differs from the server"
    )
    _add_tables_option(drift_parser, "Comma-separated list of tables to check")
    _add_connection_options(drift_parser)

    # ========== schedule ==========
    schedule_parser = subparsers.add_parser("schedule", help="Run sync passes periodically")
    _add_tables_option(schedule_parser, "Comma-separated list of tables to sync, in order")
    schedule_parser.add_argument(
        "--cron",
        help='Cron expression (e.g., "*/15 * * * *" for every 15 minutes)',
    )
    schedule_parser.add_argument(
        "--interval",
        type=int,
        default=900,
        help="Interval in seconds (default: 900)",
    )
    schedule_parser.add_argument("--output-dir", help="Directory to save sync reports")
    schedule_parser.add_argument(
        "--metrics-port",
        type=int,
        help="Serve Prometheus metrics on this port",
    )
    _add_connection_options(schedule_parser)

    # ========== report ==========
    report_parser = subparsers.add_parser("report", help="Format a saved sync report")
    report_parser.add_argument("--input", required=True, help="Input JSON report file")
    report_parser.add_argument(
        "--format",
        choices=["console", "json", "csv"],
        default="console",
        help="Output format (default: console)",
    )
    report_parser.add_argument(
        "--output",
        help="Output file path (required for json and csv formats)",
    )

    return parser

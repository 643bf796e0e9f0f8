"""
CLI command implementations.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from sync_utils.metrics import MetricsPublisher

from ..errors import SyncError
from ..report import (
    export_report_csv,
    export_report_json,
    format_report_console,
    generate_pass_report,
)
from ..scheduler import SyncScheduler, sync_job_wrapper
from ..session import SyncSession
from .credentials import build_config, parse_tables

logger = logging.getLogger(__name__)


def _write_report(report: dict, output_format: str, output: str | None) -> None:
    if output and output_format != "console":
        output_path = Path(output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        if output_format == "json":
            export_report_json(report, str(output_path))
        else:
            export_report_csv(report, str(output_path))
        logger.info(f"Report saved to {output_path}")
    else:
        print(format_report_console(report))


def _open_session(args: argparse.Namespace) -> SyncSession:
    session = SyncSession(build_config(args))
    try:
        session.initialize()
    except SyncError as e:
        session.close()
        logger.error(f"Could not start sync session: {e}")
        sys.exit(1)
    return session


def cmd_sync(args: argparse.Namespace) -> None:
    """Run one sync pass and report it."""
    tables = parse_tables(args)

    with _open_session(args) as session:
        try:
            pass_report = session.sync_now(tables)
        except SyncError as e:
            logger.error(f"Sync failed: {e}")
            sys.exit(1)

    report = generate_pass_report(pass_report)
    _write_report(report, args.format, args.output)

    if report["status"] in ("FAIL", "PARTIAL"):
        logger.warning(f"Sync finished with status {report['status']}")
        sys.exit(1)
    logger.info("Sync completed successfully")


def cmd_desync(args: argparse.Namespace) -> None:
    """Drop local tracking and every local table."""
    if not args.yes:
        answer = input("This deletes every local table and any unsynced changes. Continue? [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            print("Aborted")
            return

    with _open_session(args) as session:
        try:
            session.desync()
        except SyncError as e:
            logger.error(f"Desync failed: {e}")
            sys.exit(1)
    print("Local data removed")


def cmd_drop_table(args: argparse.Namespace) -> None:
    """Drop one local table and re-sync it."""
    with _open_session(args) as session:
        try:
            pass_report = session.delete_local_table(args.table)
        except SyncError as e:
            logger.error(f"Could not drop {args.table}: {e}")
            sys.exit(1)

    print(format_report_console(generate_pass_report(pass_report)))


def cmd_tables(args: argparse.Namespace) -> None:
    """Print the synchronizable tables of one store."""
    with _open_session(args) as session:
        if args.target == "server":
            tables = session.list_server_tables()
        else:
            tables = session.list_local_tables()

    for table in tables:
        print(f"{table.name}\t{table.surrogate_key_column}")


def cmd_query(args: argparse.Namespace) -> None:
    """Run a diagnostic query and print rows as JSON lines."""
    with _open_session(args) as session:
        try:
            rows = session.run_adhoc_query(args.sql, target=args.target)
        except Exception as e:
            logger.error(f"Query failed: {e}")
            sys.exit(1)

    for row in rows:
        print(json.dumps(row, default=str))


def cmd_drift(args: argparse.Namespace) -> None:
    """List rows whose local surrogate key differs from the server's."""
    tables = parse_tables(args)

    with _open_session(args) as session:
        try:
            drift = session.find_drift(tables)
        except SyncError as e:
            logger.error(f"Drift check failed: {e}")
            sys.exit(1)

    total = 0
    for table, rows in drift.items():
        for correlation_key, local_key, server_key in rows:
            print(f"{table}\t{correlation_key}\tlocal={local_key}\tserver={server_key}")
        total += len(rows)

    if total:
        logger.warning(f"{total} rows have drifted keys")
        sys.exit(1)
    logger.info("No key drift")


def cmd_schedule(args: argparse.Namespace) -> None:
    """Run sync passes on an interval or cron schedule."""
    config = build_config(args)
    tables = parse_tables(args)

    output_dir = args.output_dir or "./sync_reports"
    Path(output_dir).mkdir(parents=True, exist_ok=True)

    if args.metrics_port:
        MetricsPublisher(port=args.metrics_port).start()

    scheduler = SyncScheduler()
    if args.cron:
        scheduler.add_cron_job(
            sync_job_wrapper,
            args.cron,
            "sync_job",
            config=config,
            output_dir=output_dir,
            tables=tables,
        )
        logger.info(f"Scheduled sync with cron: {args.cron}")
    else:
        scheduler.add_interval_job(
            sync_job_wrapper,
            args.interval,
            "sync_job",
            config=config,
            output_dir=output_dir,
            tables=tables,
        )
        logger.info(f"Scheduled sync every {args.interval} seconds")

    logger.info("Starting scheduler (press Ctrl+C to stop)")
    scheduler.start()


def cmd_report(args: argparse.Namespace) -> None:
    """Re-format a saved JSON sync report."""
    logger.info(f"Loading sync report from {args.input}")

    try:
        with open(args.input) as f:
            report = json.load(f)
    except (OSError, ValueError) as e:
        logger.error(f"Failed to read report: {e}")
        sys.exit(1)

    if args.format != "console" and not args.output:
        logger.error(f"Output file required for {args.format.upper()} format")
        sys.exit(1)

    _write_report(report, args.format, args.output)

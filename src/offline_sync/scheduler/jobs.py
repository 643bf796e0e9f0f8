"""
Job wrapper for scheduled sync passes.
"""

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ..config import SyncConfig
from ..errors import SyncInProgressError
from ..report import export_report_json, generate_pass_report
from ..session import SyncSession

logger = logging.getLogger(__name__)


def sync_job_wrapper(
    config: SyncConfig,
    output_dir: str,
    tables: list[str] | None = None,
) -> dict[str, Any] | None:
    """
    Run one sync pass and save its report

    A fresh session is built for every run so a connection lost while the
    device was offline does not outlive the job.

    Args:
        config: Sync settings
        output_dir: Directory to save JSON reports in
        tables: Tables to sync; defaults to the session's table list

    Returns:
        The generated report, or None when a pass was already running
    """
    timestamp = datetime.now(UTC).strftime("%Y%m%d_%H%M%S")
    output_path = Path(output_dir) / f"sync_{timestamp}.json"
    Path(output_dir).mkdir(parents=True, exist_ok=True)

    logger.info(f"Starting scheduled sync at {timestamp}")

    try:
        with SyncSession(config) as session:
            session.initialize()
            pass_report = session.sync_now(tables)
    except SyncInProgressError:
        logger.warning("Previous sync pass still running, skipping this run")
        return None
    except Exception as e:
        logger.error(f"Sync job failed: {e}", exc_info=True)
        raise

    report = generate_pass_report(pass_report)
    export_report_json(report, str(output_path))

    logger.info(f"Sync complete. Report saved to {output_path}")
    logger.info(f"Status: {report['status']}")
    if report["tables_failed"]:
        failed = [t["table"] for t in report["tables"] if t["status"] != "OK"]
        logger.warning(f"Failed tables: {failed}")

    return report

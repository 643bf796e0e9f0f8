"""
APScheduler-based sync scheduler.

Runs sync passes on a fixed interval or a cron schedule, for devices that
sync unattended whenever they are online.
"""

import logging
from typing import Any, Callable

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)


class SyncScheduler:
    """
    Scheduler for periodic sync passes

    Jobs never overlap: each job runs with ``max_instances=1`` and a run
    that is still going when the next fires is skipped by APScheduler.
    """

    def __init__(self):
        self.scheduler = BlockingScheduler()
        self.jobs = []

    def add_interval_job(
        self,
        job_func: Callable,
        interval_seconds: int,
        job_id: str,
        **kwargs
    ) -> None:
        """
        Add a job that runs at fixed intervals

        Args:
            job_func: Function to execute
            interval_seconds: Interval in seconds
            job_id: Unique identifier for the job
            **kwargs: Additional arguments to pass to job_func
        """
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")

        job = self.scheduler.add_job(
            job_func,
            trigger=IntervalTrigger(seconds=interval_seconds),
            id=job_id,
            kwargs=kwargs,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        self.jobs.append(job)
        logger.info(f"Added interval job '{job_id}' every {interval_seconds}s")

    def add_cron_job(
        self,
        job_func: Callable,
        cron_expression: str,
        job_id: str,
        **kwargs
    ) -> None:
        """
        Add a job that runs on a cron schedule

        Args:
            job_func: Function to execute
            cron_expression: Five-field cron expression
                (minute hour day month day_of_week)
            job_id: Unique identifier for the job
            **kwargs: Additional arguments to pass to job_func

        Example cron expressions:
            "*/15 * * * *" - Every 15 minutes
            "0 7-18 * * 1-5" - Hourly during working hours on weekdays
        """
        parts = cron_expression.split()
        if len(parts) != 5:
            raise ValueError(
                "Cron expression must have 5 parts: minute hour day month day_of_week"
            )

        minute, hour, day, month, day_of_week = parts
        trigger = CronTrigger(
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=day_of_week,
        )

        job = self.scheduler.add_job(
            job_func,
            trigger=trigger,
            id=job_id,
            kwargs=kwargs,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        self.jobs.append(job)
        logger.info(f"Added cron job '{job_id}' with schedule '{cron_expression}'")

    def remove_job(self, job_id: str) -> None:
        self.scheduler.remove_job(job_id)
        self.jobs = [job for job in self.jobs if job.id != job_id]
        logger.info(f"Removed job '{job_id}'")

    def start(self) -> None:
        """
        Start the scheduler

        Blocks the current thread until interrupted.
        """
        logger.info(f"Starting sync scheduler with {len(self.jobs)} job(s)")

        try:
            self.scheduler.start()
        except (KeyboardInterrupt, SystemExit):
            logger.info("Scheduler stopped by user")
            self.stop()

    def stop(self) -> None:
        self.scheduler.shutdown()
        logger.info("Scheduler stopped")

    def list_jobs(self) -> list[dict[str, Any]]:
        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
                "trigger": str(job.trigger),
            }
            for job in self.scheduler.get_jobs()
        ]

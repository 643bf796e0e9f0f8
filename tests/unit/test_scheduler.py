"""
Unit tests for the sync scheduler module

Tests verify:
- SyncScheduler interval and cron job scheduling
- Job management (list, remove)
- Scheduler lifecycle (start, stop)
- sync_job_wrapper functionality

All tests use mocking to avoid actual scheduling and database connections.
"""

import json
from datetime import UTC, datetime
from unittest.mock import MagicMock, Mock, patch

import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from offline_sync.errors import SyncInProgressError
from offline_sync.models import PassReport, StepResult, TableReport
from offline_sync.scheduler import SyncScheduler, sync_job_wrapper


@pytest.fixture
def mock_scheduler():
    with patch("offline_sync.scheduler.scheduler.BlockingScheduler") as scheduler_class:
        instance = Mock()
        instance.add_job.side_effect = lambda func, **kwargs: Mock(id=kwargs["id"])
        scheduler_class.return_value = instance
        yield instance


# ============================================================================
# Test Interval Jobs
# ============================================================================

class TestIntervalJobs:
    """Test interval-based job scheduling"""

    def test_add_interval_job(self, mock_scheduler):
        """Test add_interval_job registers a non-overlapping job"""
        scheduler = SyncScheduler()
        job_func = Mock()

        scheduler.add_interval_job(job_func, 300, "sync", output_dir="/reports")

        kwargs = mock_scheduler.add_job.call_args.kwargs
        assert isinstance(kwargs["trigger"], IntervalTrigger)
        assert kwargs["id"] == "sync"
        assert kwargs["kwargs"] == {"output_dir": "/reports"}
        assert kwargs["max_instances"] == 1
        assert kwargs["coalesce"] is True
        assert len(scheduler.jobs) == 1

    @pytest.mark.parametrize("interval", [0, -60])
    def test_rejects_non_positive_interval(self, mock_scheduler, interval):
        """Test add_interval_job validates the interval"""
        scheduler = SyncScheduler()

        with pytest.raises(ValueError, match="must be positive"):
            scheduler.add_interval_job(Mock(), interval, "sync")

        mock_scheduler.add_job.assert_not_called()


# ============================================================================
# Test Cron Jobs
# ============================================================================

class TestCronJobs:
    """Test cron-based job scheduling"""

    def test_add_cron_job(self, mock_scheduler):
        """Test add_cron_job builds a CronTrigger"""
        scheduler = SyncScheduler()

        scheduler.add_cron_job(Mock(), "*/15 7-18 * * 1-5", "workday_sync")

        kwargs = mock_scheduler.add_job.call_args.kwargs
        assert isinstance(kwargs["trigger"], CronTrigger)
        assert kwargs["id"] == "workday_sync"

    @pytest.mark.parametrize("expression", ["*/15 * * *", "0 0 * * * *", ""])
    def test_rejects_wrong_field_count(self, mock_scheduler, expression):
        """Test add_cron_job requires five fields"""
        scheduler = SyncScheduler()

        with pytest.raises(ValueError, match="5 parts"):
            scheduler.add_cron_job(Mock(), expression, "sync")


# ============================================================================
# Test Job Management and Lifecycle
# ============================================================================

class TestJobManagement:
    """Test listing, removing, starting and stopping"""

    def test_remove_job(self, mock_scheduler):
        scheduler = SyncScheduler()
        scheduler.add_interval_job(Mock(), 60, "a")
        scheduler.add_interval_job(Mock(), 60, "b")

        scheduler.remove_job("a")

        mock_scheduler.remove_job.assert_called_once_with("a")
        assert [job.id for job in scheduler.jobs] == ["b"]

    def test_list_jobs(self, mock_scheduler):
        job = Mock(id="sync", next_run_time=datetime(2026, 3, 2, 8, 0, tzinfo=UTC), trigger="interval[0:05:00]")
        job.name = "sync_job_wrapper"
        paused = Mock(id="paused", next_run_time=None, trigger="cron")
        paused.name = "sync_job_wrapper"
        mock_scheduler.get_jobs.return_value = [job, paused]

        jobs = SyncScheduler().list_jobs()

        assert jobs[0] == {
            "id": "sync",
            "name": "sync_job_wrapper",
            "next_run_time": "2026-03-02T08:00:00+00:00",
            "trigger": "interval[0:05:00]",
        }
        assert jobs[1]["next_run_time"] is None

    def test_start(self, mock_scheduler):
        SyncScheduler().start()
        mock_scheduler.start.assert_called_once()

    def test_keyboard_interrupt_stops_scheduler(self, mock_scheduler):
        """Test Ctrl+C shuts the scheduler down cleanly"""
        mock_scheduler.start.side_effect = KeyboardInterrupt

        SyncScheduler().start()

        mock_scheduler.shutdown.assert_called_once()


# ============================================================================
# Test sync_job_wrapper
# ============================================================================

class TestSyncJobWrapper:
    """Test the scheduled job body"""

    @pytest.fixture
    def mock_session(self):
        with patch("offline_sync.scheduler.jobs.SyncSession") as session_class:
            session = MagicMock()
            session_class.return_value.__enter__.return_value = session
            session_class.return_value.__exit__.return_value = False
            session.sync_now.return_value = PassReport(
                tables=[TableReport("Item", steps=[StepResult.success("transport")])]
            )
            yield session_class, session

    def test_runs_pass_and_saves_report(self, mock_session, sync_config, tmp_path):
        session_class, session = mock_session
        output_dir = tmp_path / "reports"

        report = sync_job_wrapper(sync_config, str(output_dir), tables=["Item"])

        session_class.assert_called_once_with(sync_config)
        session.initialize.assert_called_once()
        session.sync_now.assert_called_once_with(["Item"])
        assert report["status"] == "PASS"
        saved = list(output_dir.glob("sync_*.json"))
        assert len(saved) == 1
        assert json.loads(saved[0].read_text())["status"] == "PASS"

    def test_logs_failed_tables(self, mock_session, sync_config, tmp_path, caplog):
        _, session = mock_session
        session.sync_now.return_value = PassReport(
            tables=[TableReport("Item", steps=[StepResult.failed("transport", "offline")])]
        )

        report = sync_job_wrapper(sync_config, str(tmp_path))

        assert report["status"] == "FAIL"
        assert "Failed tables: ['Item']" in caplog.text

    def test_overlapping_pass_skipped(self, mock_session, sync_config, tmp_path):
        _, session = mock_session
        session.sync_now.side_effect = SyncInProgressError("busy")

        assert sync_job_wrapper(sync_config, str(tmp_path)) is None
        assert list(tmp_path.glob("sync_*.json")) == []

    def test_other_failures_propagate(self, mock_session, sync_config, tmp_path):
        _, session = mock_session
        session.initialize.side_effect = RuntimeError("server unreachable")

        with pytest.raises(RuntimeError, match="server unreachable"):
            sync_job_wrapper(sync_config, str(tmp_path))

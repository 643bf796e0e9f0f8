"""
Prometheus metrics for sync passes.

Usage:
    from sync_utils.metrics import SyncMetrics, MetricsPublisher

    metrics = SyncMetrics()
    metrics.record_transport("Item", uploaded=3, downloaded=1, failed=0)
    metrics.record_keys_reconciled("Item", updated=2)

    # Scheduled service: expose /metrics
    MetricsPublisher(port=9091).start()
"""

import logging
from typing import Callable, Optional, TypeVar

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_or_create_metric(
    metric_factory: Callable[[], T],
    metric_name: str,
    registry: CollectorRegistry = REGISTRY,
) -> T:
    """
    Create a metric, or return the one already registered under that name.

    Sessions are created more than once per process (the scheduler builds
    one per job), so plain registration would raise on the second run.
    """
    try:
        return metric_factory()
    except ValueError:
        existing = registry._names_to_collectors.get(metric_name)
        if existing is not None:
            return existing
        raise


class SyncMetrics:
    """Counters and timings for the sync orchestrator."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or REGISTRY
        r = self.registry

        self.passes_total = get_or_create_metric(
            lambda: Counter(
                "offline_sync_passes_total",
                "Sync passes run, by outcome",
                ["status"],
                registry=r,
            ),
            "offline_sync_passes",
            r,
        )
        self.pass_duration_seconds = get_or_create_metric(
            lambda: Histogram(
                "offline_sync_pass_duration_seconds",
                "Duration of a full sync pass",
                buckets=(1, 5, 10, 30, 60, 120, 300, 600, 1800, 3600),
                registry=r,
            ),
            "offline_sync_pass_duration_seconds",
            r,
        )
        self.rows_total = get_or_create_metric(
            lambda: Counter(
                "offline_sync_rows_total",
                "Rows exchanged by the transport",
                ["table_name", "direction"],
                registry=r,
            ),
            "offline_sync_rows",
            r,
        )
        self.keys_reconciled_total = get_or_create_metric(
            lambda: Counter(
                "offline_sync_keys_reconciled_total",
                "Local surrogate keys replaced with the server value",
                ["table_name"],
                registry=r,
            ),
            "offline_sync_keys_reconciled",
            r,
        )
        self.table_failures_total = get_or_create_metric(
            lambda: Counter(
                "offline_sync_table_failures_total",
                "Per-table step failures",
                ["table_name", "step"],
                registry=r,
            ),
            "offline_sync_table_failures",
            r,
        )
        self.last_pass_timestamp = get_or_create_metric(
            lambda: Gauge(
                "offline_sync_last_pass_timestamp",
                "Unix time the last sync pass finished",
                registry=r,
            ),
            "offline_sync_last_pass_timestamp",
            r,
        )

    def record_transport(self, table: str, uploaded: int, downloaded: int, failed: int) -> None:
        self.rows_total.labels(table_name=table, direction="upload").inc(uploaded)
        self.rows_total.labels(table_name=table, direction="download").inc(downloaded)
        self.rows_total.labels(table_name=table, direction="failed").inc(failed)

    def record_keys_reconciled(self, table: str, updated: int) -> None:
        self.keys_reconciled_total.labels(table_name=table).inc(updated)

    def record_failure(self, table: str, step: str) -> None:
        self.table_failures_total.labels(table_name=table, step=step).inc()

    def record_pass(self, status: str, duration: float) -> None:
        self.passes_total.labels(status=status).inc()
        self.pass_duration_seconds.observe(duration)
        self.last_pass_timestamp.set_to_current_time()


class MetricsPublisher:
    """Serves the registry on ``/metrics`` for the scheduled service."""

    def __init__(self, port: int = 9091, registry: Optional[CollectorRegistry] = None):
        self.port = port
        self.registry = registry or REGISTRY
        self._server_started = False

    def start(self) -> None:
        if self._server_started:
            logger.warning(f"Metrics server already running on port {self.port}")
            return

        try:
            start_http_server(self.port, registry=self.registry)
        except OSError as e:
            raise RuntimeError(
                f"Metrics server port {self.port} is unavailable: {e}"
            ) from e

        self._server_started = True
        logger.info(f"Metrics server started on port {self.port}")

    def is_started(self) -> bool:
        return self._server_started

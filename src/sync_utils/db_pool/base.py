"""
Base classes and functionality for database connection pooling.

Each store operation in a sync pass (schema query, key update, constraint
script) acquires a connection for that operation only and hands it back on
every exit path. The pool keeps that pattern from paying a full ODBC
handshake per statement, and recycles connections that went stale while
the device was offline.
"""

import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from queue import Empty, Queue
from typing import Any

from opentelemetry import trace
from prometheus_client import Counter, Gauge, Histogram

from sync_utils.metrics import get_or_create_metric
from sync_utils.tracing import trace_operation

logger = logging.getLogger(__name__)


CONNECTION_POOL_SIZE = get_or_create_metric(
    lambda: Gauge(
        "offline_sync_db_pool_size",
        "Current size of database connection pool",
        ["pool_name"],
    ),
    "offline_sync_db_pool_size",
)

CONNECTION_POOL_ACTIVE = get_or_create_metric(
    lambda: Gauge(
        "offline_sync_db_pool_active",
        "Number of connections currently checked out",
        ["pool_name"],
    ),
    "offline_sync_db_pool_active",
)

CONNECTION_POOL_ERRORS = get_or_create_metric(
    lambda: Counter(
        "offline_sync_db_pool_errors_total",
        "Number of connection pool errors",
        ["pool_name", "error_type"],
    ),
    "offline_sync_db_pool_errors",
)

CONNECTION_ACQUIRE_TIME = get_or_create_metric(
    lambda: Histogram(
        "offline_sync_db_acquire_seconds",
        "Time to acquire a connection from pool",
        ["pool_name"],
        buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    ),
    "offline_sync_db_acquire_seconds",
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class PooledConnection:
    """Wrapper for a pooled database connection with metadata."""

    connection: Any
    created_at: datetime = field(default_factory=_utcnow)
    last_used: datetime = field(default_factory=_utcnow)
    use_count: int = 0

    def mark_used(self) -> None:
        self.last_used = _utcnow()
        self.use_count += 1


class ConnectionPoolError(Exception):
    """Base exception for connection pool errors."""


class PoolExhaustedError(ConnectionPoolError):
    """Raised when no connection becomes available within the timeout."""


class PoolClosedError(ConnectionPoolError):
    """Raised when attempting to use a closed pool."""


class BaseConnectionPool:
    """
    Base class for database connection pools.

    Subclasses provide ``_create_connection``, ``_is_connection_healthy``
    and ``_close_connection``. Connections are created lazily up to
    ``max_size`` and validated each time they leave the pool.
    """

    def __init__(
        self,
        min_size: int = 0,
        max_size: int = 4,
        max_idle_time: int = 300,
        max_lifetime: int = 3600,
        acquire_timeout: float = 30.0,
        pool_name: str = "default",
    ):
        """
        Args:
            min_size: Connections opened eagerly at construction
            max_size: Maximum number of connections allowed
            max_idle_time: Maximum idle time in seconds before recycling
            max_lifetime: Maximum connection lifetime in seconds
            acquire_timeout: Timeout for acquiring connection in seconds
            pool_name: Name of the pool for metrics and logs
        """
        self.min_size = min_size
        self.max_size = max_size
        self.max_idle_time = timedelta(seconds=max_idle_time)
        self.max_lifetime = timedelta(seconds=max_lifetime)
        self.acquire_timeout = acquire_timeout
        self.pool_name = pool_name

        self._pool: Queue[PooledConnection] = Queue(maxsize=max_size)
        self._all_connections: list[PooledConnection] = []
        self._lock = threading.RLock()
        self._closed = False

        for _ in range(self.min_size):
            pooled_conn = PooledConnection(connection=self._create_connection())
            self._all_connections.append(pooled_conn)
            self._pool.put(pooled_conn)
        self._update_metrics()

        logger.info(
            f"Initialized {self.__class__.__name__} '{pool_name}' "
            f"(min={min_size}, max={max_size})"
        )

    def _create_connection(self) -> Any:
        raise NotImplementedError

    def _is_connection_healthy(self, conn: Any) -> bool:
        raise NotImplementedError

    def _close_connection(self, conn: Any) -> None:
        raise NotImplementedError

    def _check_connection_health(self, pooled_conn: PooledConnection) -> bool:
        """Lifetime, idle time, then a round-trip check."""
        now = _utcnow()

        if now - pooled_conn.created_at > self.max_lifetime:
            logger.debug("Connection exceeded max lifetime, recycling")
            return False

        if now - pooled_conn.last_used > self.max_idle_time:
            logger.debug("Connection exceeded max idle time, recycling")
            return False

        try:
            return self._is_connection_healthy(pooled_conn.connection)
        except Exception as e:
            logger.warning(f"Health check failed: {e}")
            CONNECTION_POOL_ERRORS.labels(pool_name=self.pool_name, error_type="health_check").inc()
            return False

    def _recycle_connection(self, pooled_conn: PooledConnection) -> None:
        try:
            self._close_connection(pooled_conn.connection)
        except Exception as e:
            logger.warning(f"Error closing connection: {e}")
        finally:
            with self._lock:
                if pooled_conn in self._all_connections:
                    self._all_connections.remove(pooled_conn)
            self._update_metrics()

    def _update_metrics(self) -> None:
        with self._lock:
            total_size = len(self._all_connections)
            active_size = total_size - self._pool.qsize()
        CONNECTION_POOL_SIZE.labels(pool_name=self.pool_name).set(total_size)
        CONNECTION_POOL_ACTIVE.labels(pool_name=self.pool_name).set(active_size)

    def _checkout(self, deadline: float) -> PooledConnection:
        """Take an idle connection, open a new one, or wait until the deadline."""
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                CONNECTION_POOL_ERRORS.labels(pool_name=self.pool_name, error_type="timeout").inc()
                raise PoolExhaustedError(
                    f"No connection available within {self.acquire_timeout}s"
                )

            try:
                pooled_conn = self._pool.get_nowait()
            except Empty:
                pooled_conn = None
                with self._lock:
                    if len(self._all_connections) < self.max_size:
                        # Placeholder reserves the slot while the handshake runs
                        pooled_conn = PooledConnection(connection=None)
                        self._all_connections.append(pooled_conn)

                if pooled_conn is not None:
                    try:
                        pooled_conn.connection = self._create_connection()
                    except Exception:
                        with self._lock:
                            self._all_connections.remove(pooled_conn)
                        CONNECTION_POOL_ERRORS.labels(
                            pool_name=self.pool_name, error_type="creation"
                        ).inc()
                        raise
                    logger.debug(f"Opened new connection for pool '{self.pool_name}'")
                    return pooled_conn

                try:
                    pooled_conn = self._pool.get(timeout=min(remaining, 0.5))
                except Empty:
                    continue

            if self._check_connection_health(pooled_conn):
                return pooled_conn

            logger.info("Connection unhealthy, recycling and retrying")
            self._recycle_connection(pooled_conn)

    @contextmanager
    def acquire(self) -> Iterator[Any]:
        """
        Acquire a connection from the pool for the duration of the block.

        Raises:
            PoolClosedError: If pool is closed
            PoolExhaustedError: If no connection available within timeout
        """
        if self._closed:
            raise PoolClosedError(f"Connection pool '{self.pool_name}' is closed")

        start_time = time.monotonic()

        with trace_operation(
            "db_pool_acquire",
            kind=trace.SpanKind.CLIENT,
            pool_name=self.pool_name,
        ):
            pooled_conn = self._checkout(start_time + self.acquire_timeout)

        pooled_conn.mark_used()
        CONNECTION_ACQUIRE_TIME.labels(pool_name=self.pool_name).observe(
            time.monotonic() - start_time
        )
        self._update_metrics()

        try:
            yield pooled_conn.connection
        finally:
            if self._closed:
                self._recycle_connection(pooled_conn)
            else:
                self._pool.put(pooled_conn)
                self._update_metrics()

    def close(self) -> None:
        """Close all connections and shutdown the pool."""
        if self._closed:
            return

        logger.info(f"Closing connection pool '{self.pool_name}'")
        self._closed = True

        with self._lock:
            for pooled_conn in self._all_connections:
                try:
                    if pooled_conn.connection is not None:
                        self._close_connection(pooled_conn.connection)
                except Exception as e:
                    logger.warning(f"Error closing connection: {e}")
            self._all_connections.clear()

            while True:
                try:
                    self._pool.get_nowait()
                except Empty:
                    break

        self._update_metrics()

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            total_size = len(self._all_connections)
            idle_size = self._pool.qsize()

        return {
            "pool_name": self.pool_name,
            "total_connections": total_size,
            "idle_connections": idle_size,
            "active_connections": total_size - idle_size,
            "min_size": self.min_size,
            "max_size": self.max_size,
            "closed": self._closed,
        }

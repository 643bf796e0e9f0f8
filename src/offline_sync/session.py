"""
Caller-facing sync session.

A SyncSession owns the two stores, the transport and the orchestrator for
one local database. UI code creates one, calls initialize(), and then
drives passes with sync_now() or sync_async().
"""

import logging
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

from sync_utils.metrics import SyncMetrics

from .catalog import SchemaImporter, TableCatalog
from .config import SyncConfig
from .constraints import ConstraintRebuilder
from .errors import ConfigurationError, SyncError, SyncInProgressError
from .models import PassReport, TrackedTable
from .orchestrator import SyncOrchestrator
from .provisioner import ScopeProvisioner
from .reconciler import KeyReconciler
from .store import SqlServerStore, Store, create_database_file
from .transport import ChangeTransport, TrackingTableTransport

logger = logging.getLogger(__name__)

TARGETS = ("local", "server")


class SyncSession:
    """
    Sync engine entry point for one device.

    Stores and transport default to the SQL Server implementations built
    from ``config``; pass your own to run against other backends.

    Usage:
        with SyncSession(SyncConfig.from_env()) as session:
            session.initialize()
            report = session.sync_now()
    """

    def __init__(
        self,
        config: SyncConfig,
        local_store: Store | None = None,
        remote_store: Store | None = None,
        transport: ChangeTransport | None = None,
        importer: SchemaImporter | None = None,
        metrics: SyncMetrics | None = None,
    ):
        self.config = config
        self.local = local_store
        self.remote = remote_store
        self.transport = transport
        self.importer = importer
        self.metrics = metrics
        self.catalog = TableCatalog(config.names)

        self.orchestrator: SyncOrchestrator | None = None
        self.reconciler: KeyReconciler | None = None
        self._local_tables: tuple[TrackedTable, ...] = ()
        self._server_tables: tuple[TrackedTable, ...] = ()
        self._sync_lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None

    # ---- lifecycle ----------------------------------------------------

    def initialize(self) -> None:
        """
        Validate settings, create the local database if needed, and load
        the table lists.

        Raises:
            ConfigurationError: Missing settings, or a store that cannot be
                created or reached
        """
        self.config.validate()
        self._ensure_local_database()

        names = self.config.names
        if self.local is None:
            self.local = SqlServerStore(
                self.config.local_connection_string,
                role="local",
                names=names,
                pool_max_size=self.config.pool_max_size,
            )
        if self.remote is None:
            self.remote = SqlServerStore(
                self.config.remote_connection_string,
                role="server",
                names=names,
                pool_max_size=self.config.pool_max_size,
            )
        if self.transport is None:
            self.transport = TrackingTableTransport(self._client_id())

        try:
            self._refresh_tables()
        except Exception as e:
            raise ConfigurationError(f"Could not read store catalogs: {e}") from e

        correlation_column = self.config.correlation_column
        self.reconciler = KeyReconciler(self.local, self.remote, correlation_column)
        self.orchestrator = SyncOrchestrator(
            self.local,
            self.remote,
            self.transport,
            provisioner=ScopeProvisioner(correlation_column),
            importer=self.importer
            or SchemaImporter(
                self.local,
                self.remote,
                local_pk_start=self.config.local_pk_start,
                correlation_column=correlation_column,
            ),
            reconciler=self.reconciler,
            rebuilder=ConstraintRebuilder(self.local, self.remote, names),
            metrics=self.metrics,
        )

        logger.info(
            f"Sync session ready: {len(self._local_tables)} local tables, "
            f"{len(self._server_tables)} server tables"
        )

    def _ensure_local_database(self) -> None:
        path = self.config.local_database_file
        if path is None or path.exists():
            return

        logger.info(f"Local database file {path} not found, creating it")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            create_database_file(
                self.config.master_connection_string,
                self.config.local_database,
                str(path),
            )
        except Exception as e:
            raise ConfigurationError(f"Could not create local database at {path}: {e}") from e

    def _client_id(self) -> str:
        if self.config.client_id:
            return self.config.client_id
        try:
            return self.local.load_client_id()
        except Exception as e:
            raise ConfigurationError(f"Could not read the local client id: {e}") from e

    def _require_initialized(self) -> SyncOrchestrator:
        if self.orchestrator is None:
            raise ConfigurationError("Session is not initialized; call initialize() first")
        return self.orchestrator

    def _refresh_tables(self) -> None:
        self._local_tables = self.catalog.list_tables(self.local)
        self._server_tables = self.catalog.list_tables(self.remote)

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        for store in (self.local, self.remote):
            if store is not None:
                store.close()

    def __enter__(self) -> "SyncSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ---- sync ---------------------------------------------------------

    def _resolve_tables(self, tables: Iterable[str | TrackedTable] | None) -> tuple[TrackedTable, ...]:
        if tables is None:
            if self._local_tables:
                return self._local_tables
            # First run: bootstrap every server table, parents before children
            return self.catalog.sort_by_dependency(self._server_tables, self.remote)

        by_name = {t.name.lower(): t for t in self._server_tables}
        by_name.update({t.name.lower(): t for t in self._local_tables})

        resolved = []
        for table in tables:
            if isinstance(table, TrackedTable):
                resolved.append(table)
                continue
            try:
                resolved.append(by_name[table.lower()])
            except KeyError:
                raise ConfigurationError(f"Unknown table: {table!r}") from None
        return tuple(resolved)

    def sync_now(self, tables: Iterable[str | TrackedTable] | None = None) -> PassReport:
        """
        Run one sync pass and wait for it.

        Args:
            tables: Tables to sync, in order; defaults to every local table,
                or every server table on first run

        Raises:
            SyncInProgressError: Another pass is running on this session
            ConfigurationError: Session not initialized, or unknown table
        """
        if not self._sync_lock.acquire(blocking=False):
            raise SyncInProgressError("A sync pass is already running for this session")
        try:
            orchestrator = self._require_initialized()
            snapshot = self._resolve_tables(tables)

            if self.config.backup_hook is not None:
                self.config.backup_hook()

            report = orchestrator.run_sync(snapshot)
            self._refresh_tables()
            return report
        finally:
            self._sync_lock.release()

    def sync_async(
        self,
        on_start: Callable[[], None] | None = None,
        on_finish: Callable[[], None] | None = None,
    ) -> "Future[PassReport]":
        """
        Run a pass on the session's worker thread.

        ``on_start`` and ``on_finish`` run on the worker before and after
        the pass so a UI can disable actions that conflict with it.
        ``on_finish`` runs whether or not the pass raised.
        """
        self._require_initialized()
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="offline-sync")

        def run() -> PassReport:
            if on_start is not None:
                on_start()
            try:
                return self.sync_now()
            finally:
                if on_finish is not None:
                    on_finish()

        return self._executor.submit(run)

    # ---- local data management ----------------------------------------

    def desync(self) -> None:
        """
        Remove local tracking and every local table.

        Tables are dropped in reverse sync order so dependents go first.
        A table that cannot be dropped does not stop the others; the
        failures are raised together once every drop has been tried.
        """
        if not self._sync_lock.acquire(blocking=False):
            raise SyncInProgressError("Cannot desync while a sync pass is running")
        try:
            self._require_initialized()
            tables = self.catalog.list_tables(self.local)
            self.local.deprovision_store()
            failed = []
            for table in reversed(tables):
                try:
                    self.local.drop_table(table.name)
                except Exception as e:
                    logger.warning(f"Could not drop local table {table.name}: {e}")
                    failed.append(f"{table.name} ({e})")
                    continue
                logger.info(f"Dropped local table {table.name}")
            self._refresh_tables()
            if failed:
                raise SyncError(f"Could not drop local tables: {', '.join(failed)}")
        finally:
            self._sync_lock.release()

    def delete_local_table(self, name: str) -> PassReport:
        """
        Drop one local table and its tracking, then sync to re-create it
        from the server.
        """
        if not self._sync_lock.acquire(blocking=False):
            raise SyncInProgressError("Cannot drop a table while a sync pass is running")
        try:
            self._require_initialized()
            tables = self._local_tables
            try:
                self.local.deprovision_scope(name)
                self.local.drop_table(name)
            except Exception as e:
                raise SyncError(f"Could not drop local table: {e}", name) from e
            logger.info(f"Dropped local table {name}, re-syncing")
        finally:
            self._sync_lock.release()

        return self.sync_now(tables)

    # ---- queries ------------------------------------------------------

    def list_local_tables(self) -> tuple[TrackedTable, ...]:
        self._require_initialized()
        self._local_tables = self.catalog.list_tables(self.local)
        return self._local_tables

    def list_server_tables(self) -> tuple[TrackedTable, ...]:
        self._require_initialized()
        self._server_tables = self.catalog.list_tables(self.remote)
        return self._server_tables

    def run_adhoc_query(self, sql: str, target: str = "local") -> list[dict[str, Any]]:
        """Run a diagnostic query against the local or server store."""
        self._require_initialized()
        if target not in TARGETS:
            raise ValueError(f"target must be one of {TARGETS}, got {target!r}")
        store = self.local if target == "local" else self.remote
        return store.query(sql)

    def find_drift(self, tables: Iterable[str | TrackedTable] | None = None) -> dict[str, list]:
        """Rows whose local surrogate key differs from the server's, per table."""
        self._require_initialized()
        return {t.name: self.reconciler.find_drift(t) for t in self._resolve_tables(tables)}

"""
Sync pass orchestration.

One pass walks the table list in order. For each table it provisions the
server and local scopes (importing the local schema on first sight),
exchanges changes through the transport, then reconciles surrogate keys.
A failure is recorded against its table and the pass moves on; the
caller gets a PassReport rather than an exception.
"""

import logging
import time
from collections.abc import Iterable

from opentelemetry import trace

from sync_utils.logging import ContextLogger
from sync_utils.metrics import SyncMetrics
from sync_utils.tracing import add_span_attributes, trace_operation

from .catalog import SchemaImporter
from .constraints import ConstraintRebuilder
from .models import PassReport, StepResult, StepStatus, TableReport, TrackedTable, utcnow
from .provisioner import ScopeProvisioner
from .reconciler import KeyReconciler
from .store import Store
from .transport import ChangeTransport, SyncDirection

logger = logging.getLogger(__name__)

STEP_PROVISION = "provision"
STEP_TRANSPORT = "transport"
STEP_RECONCILE = "reconcile"
STEP_REBUILD = "rebuild constraints"


class SyncOrchestrator:
    """
    Runs sync passes between one local and one server store.

    Collaborators are injected so a pass can run against doubles; the
    defaults are built from the two stores.
    """

    def __init__(
        self,
        local: Store,
        remote: Store,
        transport: ChangeTransport,
        provisioner: ScopeProvisioner | None = None,
        importer: SchemaImporter | None = None,
        reconciler: KeyReconciler | None = None,
        rebuilder: ConstraintRebuilder | None = None,
        metrics: SyncMetrics | None = None,
        direction: SyncDirection = SyncDirection.UPLOAD_AND_DOWNLOAD,
    ):
        self.local = local
        self.remote = remote
        self.transport = transport
        self.provisioner = provisioner or ScopeProvisioner()
        self.importer = importer or SchemaImporter(local, remote)
        self.reconciler = reconciler or KeyReconciler(local, remote)
        self.rebuilder = rebuilder or ConstraintRebuilder(local, remote, local.names)
        self.metrics = metrics or SyncMetrics()
        self.direction = direction

    def run_sync(self, tables: Iterable[TrackedTable]) -> PassReport:
        """
        Run one pass over ``tables`` in the given order.

        The list is copied up front; changes to the caller's list during
        the pass are not seen. Constraints are rebuilt once, after every
        table has run, if any scope was created.
        """
        snapshot = tuple(tables)
        report = PassReport()
        started = time.monotonic()

        logger.info(f"Starting sync pass over {len(snapshot)} tables")

        with trace_operation("sync_pass", kind=trace.SpanKind.INTERNAL, table_count=len(snapshot)):
            for table in snapshot:
                table_report = self._sync_table(table)
                report.tables.append(table_report)
                report.schema_changed |= table_report.scope_created

            if report.schema_changed:
                report.constraint_results = self._rebuild(snapshot)
                report.constraints_rebuilt = True

            add_span_attributes(status=report.status, failed_tables=len(report.failed_tables))

        report.completed_at = utcnow()
        self.metrics.record_pass(report.status, time.monotonic() - started)

        logger.info(
            f"Sync pass finished: {report.status} "
            f"({len(report.tables) - len(report.failed_tables)}/{len(report.tables)} tables ok)"
        )
        return report

    def _sync_table(self, table: TrackedTable) -> TableReport:
        table_report = TableReport(table=table.name)
        log = ContextLogger(__name__, table_name=table.name)

        with trace_operation("sync_table", kind=trace.SpanKind.INTERNAL, table=table.name):
            provisioned = self._provision(table, table_report, log)

            if not provisioned:
                reason = "provisioning failed"
                table_report.steps.append(StepResult.skipped(STEP_TRANSPORT, reason, table.name))
                table_report.steps.append(StepResult.skipped(STEP_RECONCILE, reason, table.name))
                return table_report

            if not self._transport(table, table_report, log):
                reason = "transport failed"
                table_report.steps.append(StepResult.skipped(STEP_RECONCILE, reason, table.name))
                return table_report

            self._reconcile(table, table_report, log)

        return table_report

    def _provision(self, table: TrackedTable, table_report: TableReport, log: ContextLogger) -> bool:
        warnings: list[str] = []
        try:
            server_result = self.provisioner.ensure_scope(self.remote, table)
            table_report.scope_created |= server_result.created
            warnings.extend(server_result.warnings)

            if not self.local.table_exists(table.name):
                log.info(f"Local table {table.name} missing, importing schema")
                self.importer.import_schema(table)

            local_result = self.provisioner.ensure_scope(self.local, table)
            table_report.scope_created |= local_result.created
            warnings.extend(local_result.warnings)
        except Exception as e:
            log.error(f"Provisioning failed for {table.name}: {e}", exc_info=True)
            table_report.steps.append(StepResult.failed(STEP_PROVISION, e, table.name))
            self.metrics.record_failure(table.name, STEP_PROVISION)
            return False

        table_report.steps.append(StepResult.success(STEP_PROVISION, "; ".join(warnings), table.name))
        return True

    def _transport(self, table: TrackedTable, table_report: TableReport, log: ContextLogger) -> bool:
        try:
            stats = self.transport.synchronize(table, self.local, self.remote, self.direction)
        except Exception as e:
            log.error(f"Transport failed for {table.name}: {e}", exc_info=True)
            table_report.steps.append(StepResult.failed(STEP_TRANSPORT, e, table.name))
            self.metrics.record_failure(table.name, STEP_TRANSPORT)
            return False

        table_report.statistics = stats
        self.metrics.record_transport(table.name, stats.uploaded, stats.downloaded, stats.failed)
        detail = f"{stats.uploaded} uploaded, {stats.downloaded} downloaded, {stats.failed} failed"
        table_report.steps.append(StepResult.success(STEP_TRANSPORT, detail, table.name))
        log.info(f"Transport {table.name}: {detail}", uploaded=stats.uploaded, downloaded=stats.downloaded)
        return True

    def _reconcile(self, table: TrackedTable, table_report: TableReport, log: ContextLogger) -> None:
        try:
            result = self.reconciler.reconcile(table)
        except Exception as e:
            log.error(f"Key reconciliation failed for {table.name}: {e}", exc_info=True)
            table_report.steps.append(StepResult.failed(STEP_RECONCILE, e, table.name))
            self.metrics.record_failure(table.name, STEP_RECONCILE)
            return

        table_report.reconcile = result
        self.metrics.record_keys_reconciled(table.name, result.updated)
        detail = f"{result.updated} updated, {result.missing} missing of {result.checked}"

        if result.failures:
            self.metrics.record_failure(table.name, STEP_RECONCILE)
            table_report.steps.append(
                StepResult(
                    STEP_RECONCILE,
                    StepStatus.FAILED,
                    f"{detail}, {len(result.failures)} rows failed",
                    table.name,
                )
            )
        else:
            table_report.steps.append(StepResult.success(STEP_RECONCILE, detail, table.name))

    def _rebuild(self, tables: tuple[TrackedTable, ...]) -> list[StepResult]:
        logger.info("New scopes were created, rebuilding local constraints")
        try:
            return self.rebuilder.rebuild(tables)
        except Exception as e:
            logger.error(f"Constraint rebuild failed: {e}", exc_info=True)
            return [StepResult.failed(STEP_REBUILD, e)]

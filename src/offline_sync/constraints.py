"""
Local constraint rebuild.

Local tables are created without the server's foreign keys and indexes so
that rows can arrive in any order on first sync. Once a pass has created
new scopes, the constraints are added from the server catalog, with every
foreign key declared ON UPDATE CASCADE so key reconciliation reaches
dependent rows.
"""

import logging

from opentelemetry import trace

from sync_utils.sql_safety import quote_identifier
from sync_utils.tracing import trace_operation

from .errors import ConstraintError
from .models import ForeignKeyDescriptor, StepResult, StepStatus, TrackedTable
from .store import Store
from .tracking import TrackingNames

logger = logging.getLogger(__name__)


def cascade_constraint_name(fk: ForeignKeyDescriptor) -> str:
    return f"cascade_{fk.table}_{fk.columns[0]}"


class ConstraintRebuilder:
    """
    Re-creates server constraints on the local store.

    Every construct is attempted on its own; a failure is reported and the
    rest still run. Constraints already present locally are skipped, so a
    second rebuild changes nothing.
    """

    def __init__(self, local: Store, remote: Store, names: TrackingNames | None = None):
        self.local = local
        self.remote = remote
        self.names = names or TrackingNames()

    def rebuild(self, tables: tuple[TrackedTable, ...]) -> list[StepResult]:
        results: list[StepResult] = []
        with trace_operation("rebuild_constraints", kind=trace.SpanKind.INTERNAL, tables=len(tables)):
            for table in tables:
                results.extend(self._rebuild_table(table))

        failed = sum(1 for r in results if r.status is StepStatus.FAILED)
        logger.info(f"Constraint rebuild finished: {len(results)} steps, {failed} failed")
        return results

    def _rebuild_table(self, table: TrackedTable) -> list[StepResult]:
        results = []
        name = table.name

        try:
            foreign_keys = self.remote.foreign_keys(name)
            indexes = self.remote.indexes(name)
            existing_fks = {fk.name.lower() for fk in self.local.foreign_keys(name)}
            existing_indexes = {ix.name.lower() for ix in self.local.indexes(name)}
        except Exception as e:
            return [self._failure("read constraints", name, e)]

        for fk in foreign_keys:
            constraint = cascade_constraint_name(fk)
            step = f"foreign key {constraint}"
            if constraint.lower() in existing_fks:
                results.append(StepResult.skipped(step, "already present", name))
                continue
            try:
                self.local.execute(self._cascade_sql(fk, constraint))
                results.append(StepResult.success(step, table=name))
            except Exception as e:
                results.append(self._failure(step, name, e))

        for index in indexes:
            step = f"index {index.name}"
            if index.name.lower() in existing_indexes:
                results.append(StepResult.skipped(step, "already present", name))
                continue
            try:
                self.local.execute(index.script)
                results.append(StepResult.success(step, table=name))
            except Exception as e:
                results.append(self._failure(step, name, e))

        trigger = quote_identifier(self.names.delete_trigger(name))
        for store in (self.local, self.remote):
            step = f"drop delete trigger on {store.role}"
            try:
                store.execute(f"DROP TRIGGER IF EXISTS {trigger}")
                results.append(StepResult.success(step, table=name))
            except Exception as e:
                results.append(self._failure(step, name, e))

        return results

    def _cascade_sql(self, fk: ForeignKeyDescriptor, constraint: str) -> str:
        columns = ", ".join(quote_identifier(c) for c in fk.columns)
        referenced = ", ".join(quote_identifier(c) for c in fk.referenced_columns)
        return (
            f"ALTER TABLE {quote_identifier(fk.table)} "
            f"ADD CONSTRAINT {quote_identifier(constraint)} "
            f"FOREIGN KEY ({columns}) "
            f"REFERENCES {quote_identifier(fk.referenced_table)} ({referenced}) "
            "ON UPDATE CASCADE"
        )

    def _failure(self, step: str, table: str, error: Exception) -> StepResult:
        wrapped = ConstraintError(f"{step} failed: {error}", table)
        logger.warning(str(wrapped))
        return StepResult.failed(step, wrapped, table)

"""
Surrogate key reconciliation.

Rows created offline get provisional local keys. Once the server has the
row it assigns the authoritative key; this module copies that value onto
the local row with the same correlation key. Local foreign keys declared
ON UPDATE CASCADE carry the new value to dependent rows.
"""

import logging
from typing import Any

from opentelemetry import trace

from sync_utils.tracing import add_span_attributes, add_span_event, trace_operation

from .config import DEFAULT_CORRELATION_COLUMN
from .errors import ReconciliationError
from .models import ReconcileResult, TrackedTable
from .store import Store

logger = logging.getLogger(__name__)


def _normalize(correlation_key: Any) -> str:
    return str(correlation_key).lower()


class KeyReconciler:
    """
    Makes local surrogate keys equal to the server's.

    Safe to run any number of times: a pass over converged tables issues no
    updates.
    """

    def __init__(
        self,
        local: Store,
        remote: Store,
        correlation_column: str = DEFAULT_CORRELATION_COLUMN,
    ):
        self.local = local
        self.remote = remote
        self.correlation_column = correlation_column

    def _key_pairs(self, store: Store, table: TrackedTable) -> list[dict[str, Any]]:
        t = store.quote_table(table.name)
        key = store.quote_column(table.name, table.surrogate_key_column)
        guid = store.quote_column(table.name, self.correlation_column)
        return store.query(
            f"SELECT {key} AS surrogate_key, {guid} AS correlation_key "
            f"FROM {t} WHERE {guid} IS NOT NULL"
        )

    def find_drift(self, table: TrackedTable) -> list[tuple[str, int | None, int]]:
        """
        Rows whose local key differs from the server's.

        Returns:
            ``(correlation_key, local_key, server_key)`` triples; ``local_key``
            is None when the row is not present locally
        """
        local_keys = {
            _normalize(row["correlation_key"]): row["surrogate_key"]
            for row in self._key_pairs(self.local, table)
        }
        drift = []
        for row in self._key_pairs(self.remote, table):
            local_key = local_keys.get(_normalize(row["correlation_key"]))
            if local_key != row["surrogate_key"]:
                drift.append((str(row["correlation_key"]), local_key, row["surrogate_key"]))
        return drift

    def reconcile(self, table: TrackedTable) -> ReconcileResult:
        """
        Copy server surrogate keys onto matching local rows.

        A server row with no local counterpart (deleted locally, or not yet
        downloaded) is counted as missing. A failing update is recorded and
        the remaining rows still run.
        """
        result = ReconcileResult(table=table.name)

        with trace_operation("reconcile_keys", kind=trace.SpanKind.INTERNAL, table=table.name):
            server_rows = self._key_pairs(self.remote, table)
            local_keys = {
                _normalize(row["correlation_key"]): row["surrogate_key"]
                for row in self._key_pairs(self.local, table)
            }

            t = self.local.quote_table(table.name)
            key = self.local.quote_column(table.name, table.surrogate_key_column)
            guid = self.local.quote_column(table.name, self.correlation_column)
            update_sql = f"UPDATE {t} SET {key} = ? WHERE {guid} = ?"

            for row in server_rows:
                result.checked += 1
                normalized = _normalize(row["correlation_key"])

                if normalized not in local_keys:
                    result.missing += 1
                    continue
                if local_keys[normalized] == row["surrogate_key"]:
                    continue

                try:
                    affected = self.local.execute(
                        update_sql,
                        [row["surrogate_key"], row["correlation_key"]],
                        origin=self.local.names.reconcile_origin,
                    )
                except Exception as e:
                    logger.warning(
                        f"Key update failed for {table.name} row {row['correlation_key']}: {e}"
                    )
                    result.failures.append(
                        ReconciliationError(str(e), table.name, str(row["correlation_key"]))
                    )
                    add_span_event("key_update_failed", correlation_key=row["correlation_key"], error=e)
                    continue

                if affected == 0:
                    result.missing += 1
                else:
                    result.updated += 1

            add_span_attributes(checked=result.checked, updated=result.updated, missing=result.missing)

        logger.info(
            f"Reconciled {table.name}: {result.updated} updated, {result.missing} missing, "
            f"{len(result.failures)} failed of {result.checked}"
        )
        return result

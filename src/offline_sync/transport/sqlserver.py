"""
Tracking-table transport for SQL Server stores.

Each store keeps a tracking table per synchronized table with a rowversion
per correlation key. A pass reads the rows whose version is above the
anchor recorded for that direction, applies them to the other store keyed
on the correlation column, and moves the anchor up to the last row that
applied cleanly. Both anchors live in the local store's scope-info table,
so the server carries no per-client state.
"""

import logging
from dataclasses import dataclass
from typing import Any

import pyodbc
from opentelemetry import trace

from sync_utils.sql_safety import quote_identifier
from sync_utils.tracing import add_span_attributes, add_span_event, trace_operation

from ..errors import TransportError
from ..models import ScopeDescription, SyncStatistics, TrackedTable, utcnow
from ..store import Store
from ..tracking import SERVER_ORIGIN
from .base import ChangeTransport, SyncDirection

logger = logging.getLogger(__name__)


@dataclass
class _ApplyOutcome:
    applied: int = 0
    failed: int = 0
    anchor: int = 0


class TrackingTableTransport(ChangeTransport):
    """
    Default transport between two SqlServerStore instances.

    Args:
        client_id: Origin tag stamped on rows this device uploads. Downloads
            skip server rows carrying this tag, uploads skip local rows
            tagged as coming from the server.
    """

    def __init__(self, client_id: str):
        if not client_id or client_id == SERVER_ORIGIN:
            raise ValueError(f"Invalid client_id: {client_id!r}")
        self.client_id = client_id

    def synchronize(
        self,
        table: TrackedTable,
        local: Store,
        remote: Store,
        direction: SyncDirection = SyncDirection.UPLOAD_AND_DOWNLOAD,
    ) -> SyncStatistics:
        stats = SyncStatistics()

        local_scope = self._require_scope(local, table)
        remote_scope = self._require_scope(remote, table)
        local_anchor, remote_anchor = self._read_anchors(local, table)

        with trace_operation(
            "transport_synchronize",
            kind=trace.SpanKind.CLIENT,
            table=table.name,
            direction=direction.value,
        ):
            if direction.uploads:
                outcome = self._exchange(
                    table,
                    source=local,
                    source_scope=local_scope,
                    destination=remote,
                    destination_scope=remote_scope,
                    anchor=local_anchor,
                    skip_origin=SERVER_ORIGIN,
                    apply_origin=self.client_id,
                )
                stats.uploaded = outcome.applied
                stats.failed += outcome.failed
                local_anchor = outcome.anchor

            if direction.downloads:
                outcome = self._exchange(
                    table,
                    source=remote,
                    source_scope=remote_scope,
                    destination=local,
                    destination_scope=local_scope,
                    anchor=remote_anchor,
                    skip_origin=self.client_id,
                    apply_origin=SERVER_ORIGIN,
                )
                stats.downloaded = outcome.applied
                stats.failed += outcome.failed
                remote_anchor = outcome.anchor

            self._write_anchors(local, table, local_anchor, remote_anchor)
            add_span_attributes(
                uploaded=stats.uploaded, downloaded=stats.downloaded, failed=stats.failed
            )

        stats.completed_at = utcnow()
        logger.info(
            f"Transport {table.name}: {stats.uploaded} up, {stats.downloaded} down, "
            f"{stats.failed} failed"
        )
        return stats

    def _require_scope(self, store: Store, table: TrackedTable) -> ScopeDescription:
        try:
            scope = store.get_scope(table.name)
        except pyodbc.Error as e:
            raise TransportError(f"Could not read {store.role} scope: {e}", table.name) from e
        if scope is None:
            raise TransportError(f"No tracking scope on {store.role}", table.name)
        if scope.key_column is None:
            raise TransportError(
                f"Scope on {store.role} has no correlation column to key changes on",
                table.name,
            )
        return scope

    def _scope_info(self, store: Store) -> str:
        return quote_identifier(store.names.scope_info_table)

    def _read_anchors(self, local: Store, table: TrackedTable) -> tuple[int, int]:
        rows = local.query(
            f"SELECT local_anchor, remote_anchor FROM {self._scope_info(local)} "
            "WHERE scope_name = ?",
            [table.name],
        )
        if not rows:
            return 0, 0
        return int(rows[0]["local_anchor"]), int(rows[0]["remote_anchor"])

    def _write_anchors(
        self, local: Store, table: TrackedTable, local_anchor: int, remote_anchor: int
    ) -> None:
        local.execute(
            f"UPDATE {self._scope_info(local)} SET local_anchor = ?, remote_anchor = ? "
            "WHERE scope_name = ?",
            [local_anchor, remote_anchor, table.name],
        )

    def _enumerate(
        self, store: Store, scope: ScopeDescription, columns: list[str], anchor: int
    ) -> list[dict[str, Any]]:
        key = quote_identifier(scope.key_column)
        tracking = quote_identifier(store.names.tracking_table(scope.name))
        selected = "".join(f", s.{quote_identifier(c)}" for c in columns)

        return store.query(
            "SELECT CAST(t.[change_version] AS bigint) AS change_version, "
            "t.[is_tombstone], t.[last_origin], "
            f"t.{key} AS correlation_key, s.{key} AS present_key{selected} "
            f"FROM {tracking} t "
            f"LEFT JOIN [dbo].{quote_identifier(scope.name)} s ON s.{key} = t.{key} "
            "WHERE CAST(t.[change_version] AS bigint) > ? "
            "ORDER BY t.[change_version]",
            [anchor],
        )

    def _exchange(
        self,
        table: TrackedTable,
        source: Store,
        source_scope: ScopeDescription,
        destination: Store,
        destination_scope: ScopeDescription,
        anchor: int,
        skip_origin: str,
        apply_origin: str,
    ) -> _ApplyOutcome:
        destination_columns = set(destination_scope.data_columns)
        columns = [c for c in source_scope.data_columns if c in destination_columns]

        changes = self._enumerate(source, source_scope, columns, anchor)
        outcome = _ApplyOutcome(anchor=anchor)
        blocked = False

        for change in changes:
            version = int(change["change_version"])
            skip = change["last_origin"] == skip_origin or (
                not change["is_tombstone"] and change["present_key"] is None
            )

            if not skip:
                try:
                    self._apply(destination, destination_scope, columns, change, apply_origin)
                    outcome.applied += 1
                except pyodbc.Error as e:
                    outcome.failed += 1
                    blocked = True
                    logger.warning(
                        f"Could not apply {table.name} row {change['correlation_key']} "
                        f"to {destination.role}: {e}"
                    )
                    add_span_event(
                        "apply_failed",
                        destination=destination.role,
                        correlation_key=change["correlation_key"],
                        error=e,
                    )
                    continue

            # Anchor stops below the first failure so it is retried next pass
            if not blocked:
                outcome.anchor = version

        return outcome

    def _apply(
        self,
        store: Store,
        scope: ScopeDescription,
        columns: list[str],
        change: dict[str, Any],
        origin: str,
    ) -> None:
        table = f"[dbo].{quote_identifier(scope.name)}"
        key = quote_identifier(scope.key_column)
        correlation_key = change["correlation_key"]

        if change["is_tombstone"]:
            store.execute(f"DELETE FROM {table} WHERE {key} = ?", [correlation_key], origin=origin)
            return

        values = [change[c] for c in columns]
        if columns:
            assignments = ", ".join(f"{quote_identifier(c)} = ?" for c in columns)
            updated = store.execute(
                f"UPDATE {table} SET {assignments} WHERE {key} = ?",
                values + [correlation_key],
                origin=origin,
            )
        else:
            rows = store.query(f"SELECT COUNT(*) AS n FROM {table} WHERE {key} = ?", [correlation_key])
            updated = rows[0]["n"] if rows else 0

        if updated == 0:
            column_list = ", ".join([key] + [quote_identifier(c) for c in columns])
            placeholders = ", ".join("?" for _ in range(len(columns) + 1))
            store.execute(
                f"INSERT INTO {table} ({column_list}) VALUES ({placeholders})",
                [correlation_key] + values,
                origin=origin,
            )

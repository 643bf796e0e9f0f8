"""
SQL Server implementation of the Store collaborator.

Catalog reads go through the sys.* views. Tracking objects are plain
T-SQL: a tracking table per synchronized table keyed on the correlation
column, three triggers that keep it current, and one scope-info table per
database. Triggers read the origin tag from SESSION_CONTEXT so a change
applied on behalf of a peer is not sent back to it.
"""

import logging
from collections import OrderedDict
from typing import Any, Sequence

import pyodbc
from opentelemetry import trace

from sync_utils.db_pool import SQLServerConnectionPool
from sync_utils.sql_safety import quote_identifier, validate_identifier
from sync_utils.tracing import trace_operation

from ..models import ColumnDescription, ForeignKeyDescriptor, IndexDescriptor, ScopeDescription
from ..tracking import TrackingNames
from .base import Store

logger = logging.getLogger(__name__)


_LIST_TABLES_SQL = """
SELECT t.name AS table_name
FROM sys.tables t
WHERE t.is_ms_shipped = 0
ORDER BY t.create_date, t.object_id
"""

_COLUMNS_SQL = """
SELECT
    c.name AS column_name,
    ty.name AS type_name,
    c.max_length,
    c.precision,
    c.scale,
    c.is_nullable,
    c.is_identity,
    CAST(ISNULL(ic.seed_value, 0) AS bigint) AS seed_value,
    CAST(ISNULL(ic.increment_value, 0) AS bigint) AS increment_value,
    CASE WHEN pk.column_id IS NULL THEN 0 ELSE 1 END AS is_key
FROM sys.columns c
JOIN sys.types ty ON ty.user_type_id = c.user_type_id
LEFT JOIN sys.identity_columns ic
    ON ic.object_id = c.object_id AND ic.column_id = c.column_id
LEFT JOIN (
    SELECT xc.object_id, xc.column_id
    FROM sys.indexes i
    JOIN sys.index_columns xc ON xc.object_id = i.object_id AND xc.index_id = i.index_id
    WHERE i.is_primary_key = 1
) pk ON pk.object_id = c.object_id AND pk.column_id = c.column_id
WHERE c.object_id = OBJECT_ID(?)
ORDER BY c.column_id
"""

_FOREIGN_KEYS_SQL = """
SELECT
    fk.name AS fk_name,
    OBJECT_NAME(fk.parent_object_id) AS table_name,
    pc.name AS column_name,
    OBJECT_NAME(fk.referenced_object_id) AS referenced_table,
    rc.name AS referenced_column
FROM sys.foreign_keys fk
JOIN sys.foreign_key_columns fkc ON fkc.constraint_object_id = fk.object_id
JOIN sys.columns pc
    ON pc.object_id = fkc.parent_object_id AND pc.column_id = fkc.parent_column_id
JOIN sys.columns rc
    ON rc.object_id = fkc.referenced_object_id AND rc.column_id = fkc.referenced_column_id
WHERE fk.parent_object_id = OBJECT_ID(?)
ORDER BY fk.name, fkc.constraint_column_id
"""

_INDEXES_SQL = """
SELECT
    i.name AS index_name,
    i.is_unique,
    i.is_primary_key,
    c.name AS column_name,
    ic.is_descending_key,
    ic.is_included_column
FROM sys.indexes i
JOIN sys.index_columns ic ON ic.object_id = i.object_id AND ic.index_id = i.index_id
JOIN sys.columns c ON c.object_id = ic.object_id AND c.column_id = ic.column_id
WHERE i.object_id = OBJECT_ID(?) AND i.name IS NOT NULL AND i.is_hypothetical = 0
ORDER BY i.name, ic.is_included_column, ic.key_ordinal
"""

_UNICODE_TYPES = {"nchar", "nvarchar"}
_LENGTH_TYPES = {"char", "varchar", "binary", "varbinary"}
_DECIMAL_TYPES = {"decimal", "numeric"}
_SCALE_TYPES = {"datetime2", "datetimeoffset", "time"}


def format_column_type(type_name: str, max_length: int, precision: int, scale: int) -> str:
    """Render a sys.columns type as it appears in a column definition."""
    if type_name in _UNICODE_TYPES:
        size = "max" if max_length == -1 else str(max_length // 2)
        return f"{type_name}({size})"
    if type_name in _LENGTH_TYPES:
        size = "max" if max_length == -1 else str(max_length)
        return f"{type_name}({size})"
    if type_name in _DECIMAL_TYPES:
        return f"{type_name}({precision}, {scale})"
    if type_name in _SCALE_TYPES:
        return f"{type_name}({scale})"
    return type_name


class SqlServerStore(Store):
    """
    Store backed by a SQL Server database.

    Every public operation acquires its own pooled connection and releases
    it before returning; no connection is held across steps of a pass.
    """

    def __init__(
        self,
        connection_string: str,
        role: str,
        names: TrackingNames | None = None,
        pool: SQLServerConnectionPool | None = None,
        pool_max_size: int = 4,
    ):
        super().__init__(role, names or TrackingNames())
        self.pool = pool or SQLServerConnectionPool(
            connection_string,
            max_size=pool_max_size,
            pool_name=role,
        )

    # ---- statement execution ------------------------------------------

    def execute(self, sql: str, params: Sequence[Any] = (), origin: str | None = None) -> int:
        with self.pool.acquire() as conn:
            cursor = conn.cursor()
            try:
                if origin is not None:
                    self._set_origin(cursor, origin)
                try:
                    if params:
                        cursor.execute(sql, list(params))
                    else:
                        cursor.execute(sql)
                    return cursor.rowcount
                finally:
                    if origin is not None:
                        self._clear_origin(conn, cursor)
            finally:
                cursor.close()

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        with self.pool.acquire() as conn:
            cursor = conn.cursor()
            try:
                if params:
                    cursor.execute(sql, list(params))
                else:
                    cursor.execute(sql)
                if cursor.description is None:
                    return []
                column_names = [d[0] for d in cursor.description]
                return [dict(zip(column_names, row)) for row in cursor.fetchall()]
            finally:
                cursor.close()

    def _set_origin(self, cursor: Any, origin: str) -> None:
        cursor.execute(
            "EXEC sp_set_session_context @key = ?, @value = ?",
            [self.names.origin_context_key, origin],
        )

    def _clear_origin(self, conn: Any, cursor: Any) -> None:
        # A pooled connection must not carry the tag into the next operation
        try:
            cursor.execute(
                "EXEC sp_set_session_context @key = ?, @value = NULL",
                [self.names.origin_context_key],
            )
        except pyodbc.Error as e:
            logger.warning(f"Could not clear origin tag on {self.role} connection, closing it: {e}")
            conn.close()

    # ---- catalog ------------------------------------------------------

    def list_tables(self) -> list[str]:
        return [row["table_name"] for row in self.query(_LIST_TABLES_SQL)]

    def columns(self, table: str) -> list[ColumnDescription]:
        return [
            ColumnDescription(
                name=row["column_name"],
                data_type=format_column_type(
                    row["type_name"], row["max_length"], row["precision"], row["scale"]
                ),
                is_nullable=bool(row["is_nullable"]),
                is_key=bool(row["is_key"]),
                is_identity=bool(row["is_identity"]),
            )
            for row in self._column_rows(table)
        ]

    def _column_rows(self, table: str) -> list[dict[str, Any]]:
        validate_identifier(table)
        return self.query(_COLUMNS_SQL, [f"dbo.{table}"])

    def script_table(self, table: str) -> list[str]:
        rows = self._column_rows(table)
        if not rows:
            raise ValueError(f"Unknown table: {table!r}")

        definitions = []
        for row in rows:
            column_type = format_column_type(
                row["type_name"], row["max_length"], row["precision"], row["scale"]
            )
            parts = [quote_identifier(row["column_name"]), column_type]
            if row["is_identity"]:
                parts.append(f"IDENTITY({int(row['seed_value'])},{int(row['increment_value'])})")
            parts.append("NULL" if row["is_nullable"] else "NOT NULL")
            definitions.append("    " + " ".join(parts))

        body = ",\n".join(definitions)
        return [f"CREATE TABLE [dbo].{quote_identifier(table)}(\n{body}\n)"]

    def foreign_keys(self, table: str) -> list[ForeignKeyDescriptor]:
        validate_identifier(table)
        grouped: OrderedDict[str, list[dict[str, Any]]] = OrderedDict()
        for row in self.query(_FOREIGN_KEYS_SQL, [f"dbo.{table}"]):
            grouped.setdefault(row["fk_name"], []).append(row)

        return [
            ForeignKeyDescriptor(
                name=name,
                table=rows[0]["table_name"],
                columns=tuple(r["column_name"] for r in rows),
                referenced_table=rows[0]["referenced_table"],
                referenced_columns=tuple(r["referenced_column"] for r in rows),
            )
            for name, rows in grouped.items()
        ]

    def indexes(self, table: str) -> list[IndexDescriptor]:
        """
        Index scripts for ``table``.

        The local copy is clustered on its correlation-column primary key,
        so every server index (the primary key included) is scripted as a
        nonclustered index; a server primary key becomes a unique index,
        which is what local foreign keys reference.
        """
        validate_identifier(table)
        grouped: OrderedDict[str, list[dict[str, Any]]] = OrderedDict()
        for row in self.query(_INDEXES_SQL, [f"dbo.{table}"]):
            grouped.setdefault(row["index_name"], []).append(row)

        descriptors = []
        for name, rows in grouped.items():
            unique = rows[0]["is_unique"] or rows[0]["is_primary_key"]
            keys = [
                f"{quote_identifier(r['column_name'])} {'DESC' if r['is_descending_key'] else 'ASC'}"
                for r in rows
                if not r["is_included_column"]
            ]
            included = [quote_identifier(r["column_name"]) for r in rows if r["is_included_column"]]

            script = (
                f"CREATE {'UNIQUE ' if unique else ''}NONCLUSTERED INDEX {quote_identifier(name)} "
                f"ON [dbo].{quote_identifier(table)} ({', '.join(keys)})"
            )
            if included:
                script += f" INCLUDE ({', '.join(included)})"
            descriptors.append(IndexDescriptor(name=name, table=table, script=script))

        return descriptors

    # ---- tracking scopes ----------------------------------------------

    def _scope_info_exists(self) -> bool:
        return self.table_exists(self.names.scope_info_table)

    def scope_exists(self, name: str) -> bool:
        if not self._scope_info_exists():
            return False
        rows = self.query(
            f"SELECT COUNT(*) AS n FROM {quote_identifier(self.names.scope_info_table)} "
            "WHERE scope_name = ?",
            [name],
        )
        return bool(rows and rows[0]["n"])

    def get_scope(self, name: str) -> ScopeDescription | None:
        if not self._scope_info_exists():
            return None
        rows = self.query(
            "SELECT key_column, tracked_columns "
            f"FROM {quote_identifier(self.names.scope_info_table)} WHERE scope_name = ?",
            [name],
        )
        if not rows:
            return None

        tracked = [c for c in rows[0]["tracked_columns"].split(",") if c]
        key_column = rows[0]["key_column"]
        by_name = {c.name: c for c in self.columns(name)}
        columns = tuple(
            ColumnDescription(
                name=c,
                data_type=by_name[c].data_type,
                is_nullable=by_name[c].is_nullable,
                is_key=(c == key_column),
            )
            for c in tracked
            if c in by_name
        )
        return ScopeDescription(name=name, columns=columns, key_column=key_column)

    def _ensure_scope_info(self) -> None:
        if self._scope_info_exists():
            return
        self.execute(
            f"CREATE TABLE {quote_identifier(self.names.scope_info_table)} (\n"
            "    [scope_name] nvarchar(128) NOT NULL PRIMARY KEY,\n"
            "    [key_column] nvarchar(128) NULL,\n"
            "    [tracked_columns] nvarchar(max) NOT NULL,\n"
            "    [local_anchor] bigint NOT NULL DEFAULT 0,\n"
            "    [remote_anchor] bigint NOT NULL DEFAULT 0,\n"
            "    [created_at] datetime2 NOT NULL DEFAULT SYSUTCDATETIME()\n"
            ")"
        )

    def apply_scope(self, scope: ScopeDescription) -> None:
        table = quote_identifier(scope.name)
        with trace_operation(
            "apply_scope",
            kind=trace.SpanKind.CLIENT,
            store=self.role,
            table=scope.name,
        ):
            self._ensure_scope_info()

            if scope.key_column is not None:
                key_type = next(c.data_type for c in scope.columns if c.name == scope.key_column)
                tracking = quote_identifier(self.names.tracking_table(scope.name))
                key = quote_identifier(scope.key_column)

                self.execute(
                    f"CREATE TABLE {tracking} (\n"
                    f"    {key} {key_type} NOT NULL PRIMARY KEY,\n"
                    "    [change_version] rowversion NOT NULL,\n"
                    "    [is_tombstone] bit NOT NULL DEFAULT 0,\n"
                    "    [last_origin] nvarchar(128) NOT NULL DEFAULT N'',\n"
                    "    [last_change_datetime] datetime2 NOT NULL DEFAULT SYSUTCDATETIME()\n"
                    ")"
                )
                for operation in ("insert", "update", "delete"):
                    self.execute(self._trigger_sql(scope.name, scope.key_column, operation))
                seeded = self.execute(
                    f"INSERT INTO {tracking} ({key}, [last_origin]) "
                    f"SELECT {key}, N'' FROM {table} WHERE {key} IS NOT NULL"
                )
                logger.debug(f"Seeded {seeded} tracking rows for {self.role} table {scope.name}")
            else:
                logger.warning(
                    f"Scope {scope.name} on {self.role} has no key column; "
                    "tracking table and triggers not created"
                )

            self.execute(
                f"INSERT INTO {quote_identifier(self.names.scope_info_table)} "
                "(scope_name, key_column, tracked_columns) VALUES (?, ?, ?)",
                [scope.name, scope.key_column, ",".join(scope.column_names)],
            )

        logger.info(f"Provisioned tracking scope {scope.name} on {self.role}")

    def _trigger_sql(self, table: str, key_column: str, operation: str) -> str:
        trigger = quote_identifier(self.names.trigger(table, operation))
        tracking = quote_identifier(self.names.tracking_table(table))
        key = quote_identifier(key_column)
        source = "deleted" if operation == "delete" else "inserted"
        tombstone = 1 if operation == "delete" else 0
        context_key = self.names.origin_context_key
        reconcile_origin = self.names.reconcile_origin

        return (
            f"CREATE TRIGGER {trigger} ON [dbo].{quote_identifier(table)} "
            f"AFTER {operation.upper()} AS\n"
            "BEGIN\n"
            "    SET NOCOUNT ON;\n"
            "    DECLARE @origin nvarchar(128) = "
            f"ISNULL(CAST(SESSION_CONTEXT(N'{context_key}') AS nvarchar(128)), N'');\n"
            f"    IF @origin = N'{reconcile_origin}' RETURN;\n"
            f"    MERGE {tracking} AS t\n"
            f"    USING (SELECT DISTINCT {key} FROM {source} WHERE {key} IS NOT NULL) AS s\n"
            f"    ON t.{key} = s.{key}\n"
            "    WHEN MATCHED THEN UPDATE SET\n"
            f"        t.[is_tombstone] = {tombstone},\n"
            "        t.[last_origin] = @origin,\n"
            "        t.[last_change_datetime] = SYSUTCDATETIME()\n"
            "    WHEN NOT MATCHED THEN\n"
            f"        INSERT ({key}, [is_tombstone], [last_origin]) "
            f"VALUES (s.{key}, {tombstone}, @origin);\n"
            "END"
        )

    def deprovision_scope(self, name: str) -> None:
        validate_identifier(name)
        for operation in ("insert", "update", "delete"):
            trigger = self.names.trigger(name, operation)
            self.execute(
                f"IF OBJECT_ID(N'dbo.{trigger}', N'TR') IS NOT NULL "
                f"DROP TRIGGER {quote_identifier(trigger)}"
            )

        tracking = self.names.tracking_table(name)
        self.execute(
            f"IF OBJECT_ID(N'dbo.{tracking}', N'U') IS NOT NULL "
            f"DROP TABLE {quote_identifier(tracking)}"
        )

        if self._scope_info_exists():
            self.execute(
                f"DELETE FROM {quote_identifier(self.names.scope_info_table)} WHERE scope_name = ?",
                [name],
            )
        logger.info(f"Deprovisioned tracking scope {name} on {self.role}")

    def deprovision_store(self) -> None:
        if not self._scope_info_exists():
            return
        rows = self.query(f"SELECT scope_name FROM {quote_identifier(self.names.scope_info_table)}")
        for row in rows:
            self.deprovision_scope(row["scope_name"])
        self.execute(f"DROP TABLE {quote_identifier(self.names.scope_info_table)}")

    def close(self) -> None:
        active = self.pool.get_stats()["active_connections"]
        if active:
            logger.warning(f"Closing {self.role} store with {active} connections still in use")
        self.pool.close()


def create_database_file(master_connection_string: str, database: str, file_path: str) -> None:
    """
    Create a database backed by ``file_path`` and detach it.

    The detached .mdf is what LocalDB attaches on first connect through
    AttachDbFileName.
    """
    validate_identifier(database)
    # FILENAME takes a literal; escape quotes rather than bind
    literal_path = file_path.replace("'", "''")

    with trace_operation("create_local_database", kind=trace.SpanKind.CLIENT, database=database):
        conn = pyodbc.connect(master_connection_string, autocommit=True)
        try:
            cursor = conn.cursor()
            cursor.execute(
                f"CREATE DATABASE {quote_identifier(database)} ON PRIMARY "
                f"(NAME = {quote_identifier(database)}, FILENAME = N'{literal_path}')"
            )
            cursor.execute("EXEC sp_detach_db ?, 'true'", [database])
            cursor.close()
        finally:
            conn.close()

    logger.info(f"Created local database {database} at {file_path}")

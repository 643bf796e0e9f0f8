"""
Table discovery and local schema import.

TableCatalog lists the synchronizable tables of a store and orders them by
foreign-key dependency. SchemaImporter creates a local copy of a server
table shaped for offline use: the correlation column becomes the primary
key and the surrogate key is a plain integer filled by a trigger with
provisional values until the key reconciler replaces them.
"""

import logging
from enum import Enum

from opentelemetry import trace

from sync_utils.sql_safety import quote_identifier, validate_integer_param
from sync_utils.tracing import trace_operation

from .config import DEFAULT_CORRELATION_COLUMN, DEFAULT_LOCAL_PK_START
from .errors import ProvisioningError
from .models import TrackedTable
from .store import Store
from .tracking import TrackingNames

logger = logging.getLogger(__name__)


class KeyPosition(str, Enum):
    """Where the surrogate key column sits in a store's tables."""

    FIRST = "first"
    LAST = "last"


class TableCatalog:
    """Lists tracked tables and sorts them for processing."""

    def __init__(self, names: TrackingNames | None = None):
        self.names = names or TrackingNames()

    def list_tables(self, store: Store, key_position: KeyPosition | None = None) -> tuple[TrackedTable, ...]:
        """
        Synchronizable tables of ``store`` in catalog order.

        Tracking objects are excluded. Imported local tables carry the
        surrogate key as their last column (it is re-added after import),
        server tables as their first, so the default position follows the
        store's role.

        Args:
            store: Store to read
            key_position: Override the surrogate key position

        Returns:
            Immutable snapshot of the table list
        """
        if key_position is None:
            key_position = KeyPosition.LAST if store.role == "local" else KeyPosition.FIRST

        tables = []
        for name in store.list_tables():
            if self.names.is_tracking_object(name):
                continue
            columns = store.columns(name)
            if not columns:
                continue
            key = columns[-1] if key_position is KeyPosition.LAST else columns[0]
            tables.append(TrackedTable(name=name, surrogate_key_column=key.name))

        logger.debug(f"Catalog for {store.role}: {[t.name for t in tables]}")
        return tuple(tables)

    def sort_by_dependency(self, tables: tuple[TrackedTable, ...], store: Store) -> tuple[TrackedTable, ...]:
        """
        Order tables so every referenced table precedes its dependents.

        Unrelated tables keep their input order. A reference cycle cannot be
        ordered; its members are appended in input order and a warning is
        logged.
        """
        names = {t.name.lower() for t in tables}
        depends_on: dict[str, set[str]] = {}
        for table in tables:
            refs = {
                fk.referenced_table.lower()
                for fk in store.foreign_keys(table.name)
                if fk.referenced_table.lower() in names
                and fk.referenced_table.lower() != table.name.lower()
            }
            depends_on[table.name.lower()] = refs

        ordered: list[TrackedTable] = []
        placed: set[str] = set()
        pending = list(tables)

        while pending:
            ready = next((t for t in pending if depends_on[t.name.lower()] <= placed), None)
            if ready is None:
                logger.warning(
                    f"Foreign key cycle among {[t.name for t in pending]}; keeping input order"
                )
                ordered.extend(pending)
                break
            ordered.append(ready)
            placed.add(ready.name.lower())
            pending.remove(ready)

        return tuple(ordered)


class SchemaImporter:
    """Creates the local copy of a server table."""

    def __init__(
        self,
        local: Store,
        remote: Store,
        local_pk_start: int = DEFAULT_LOCAL_PK_START,
        correlation_column: str = DEFAULT_CORRELATION_COLUMN,
    ):
        validate_integer_param(local_pk_start, "local_pk_start", min_value=1)
        self.local = local
        self.remote = remote
        self.local_pk_start = local_pk_start
        self.correlation_column = correlation_column

    def import_schema(self, table: TrackedTable) -> None:
        """
        Create ``table`` locally from the server definition.

        Raises:
            ProvisioningError: When the script or any edit fails; the local
                table may be left half-built and is reported as failed
        """
        name = table.name
        t = quote_identifier(name)
        guid = quote_identifier(self.correlation_column)
        key = quote_identifier(table.surrogate_key_column)

        with trace_operation("import_schema", kind=trace.SpanKind.CLIENT, table=name):
            try:
                script = self.remote.script_table(name)
            except Exception as e:
                raise ProvisioningError(f"Could not script server table: {e}", name) from e

            for statement in script:
                self._step(name, "create table", statement)

            self._step(name, "correlation column not null",
                       f"ALTER TABLE {t} ALTER COLUMN {guid} uniqueidentifier NOT NULL")
            self._step(name, "correlation primary key",
                       f"ALTER TABLE {t} ADD CONSTRAINT {quote_identifier(f'PK_GUID_{name}')} "
                       f"PRIMARY KEY ({guid})")
            self._step(name, "correlation default",
                       f"ALTER TABLE {t} ADD CONSTRAINT {quote_identifier(f'DF_GUID_{name}')} "
                       f"DEFAULT newid() FOR {guid}")
            self._step(name, "drop surrogate key", f"ALTER TABLE {t} DROP COLUMN {key}")
            self._step(name, "add surrogate key", f"ALTER TABLE {t} ADD {key} INT DEFAULT ((0)) NOT NULL")
            self._step(name, "surrogate key trigger", self._key_trigger_sql(name, table.surrogate_key_column))

        logger.info(f"Imported schema for {name} into local store")

    def _key_trigger_sql(self, name: str, key_column: str) -> str:
        t = quote_identifier(name)
        guid = quote_identifier(self.correlation_column)
        key = quote_identifier(key_column)
        trigger = quote_identifier(f"{name}_pk_trigger")

        return (
            f"CREATE TRIGGER {trigger} ON {t} FOR INSERT AS\n"
            "BEGIN\n"
            "    SET NOCOUNT ON;\n"
            f"    WITH numbered AS (\n"
            f"        SELECT {guid}, ROW_NUMBER() OVER (ORDER BY {guid}) AS n FROM inserted\n"
            "    )\n"
            f"    UPDATE {t} SET {key} = {self.local_pk_start}\n"
            f"        + (SELECT COUNT({key}) FROM {t})\n"
            "        - (SELECT COUNT(*) FROM inserted)\n"
            "        + numbered.n\n"
            f"    FROM {t} JOIN numbered ON {t}.{guid} = numbered.{guid};\n"
            "END"
        )

    def _step(self, table: str, step: str, sql: str) -> None:
        try:
            self.local.execute(sql)
        except Exception as e:
            raise ProvisioningError(f"Schema import step '{step}' failed: {e}", table) from e

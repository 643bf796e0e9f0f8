"""
Store collaborator interface.

A Store is one side of the sync: the local database on the device or the
central server database. The engine only talks to stores through this
interface, which keeps the orchestration testable against an in-memory
double.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Sequence

from sync_utils.sql_safety import quote_identifier, require_known_identifier

from ..models import ColumnDescription, ForeignKeyDescriptor, IndexDescriptor, ScopeDescription
from ..tracking import TrackingNames

logger = logging.getLogger(__name__)


class Store(ABC):
    """
    Abstract store.

    Attributes:
        role: "local" or "server", used in logs and reports
        names: Tracking object naming rules shared with the engine
    """

    def __init__(self, role: str, names: TrackingNames):
        self.role = role
        self.names = names

    # ---- statement execution ------------------------------------------

    @abstractmethod
    def execute(self, sql: str, params: Sequence[Any] = (), origin: str | None = None) -> int:
        """
        Run one statement and return its rowcount.

        ``origin`` tags the session so tracking triggers attribute the
        change to that peer instead of to this store.
        """

    @abstractmethod
    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Run a query and return rows as dicts keyed by column name."""

    # ---- catalog ------------------------------------------------------

    @abstractmethod
    def list_tables(self) -> list[str]:
        """User tables, tracking tables included, in creation order."""

    @abstractmethod
    def columns(self, table: str) -> list[ColumnDescription]:
        """Columns of ``table`` in ordinal order."""

    @abstractmethod
    def script_table(self, table: str) -> list[str]:
        """Statements that create ``table`` (columns only, no constraints)."""

    @abstractmethod
    def foreign_keys(self, table: str) -> list[ForeignKeyDescriptor]:
        ...

    @abstractmethod
    def indexes(self, table: str) -> list[IndexDescriptor]:
        ...

    def table_exists(self, table: str) -> bool:
        wanted = table.lower()
        return any(name.lower() == wanted for name in self.list_tables())

    # ---- tracking scopes ----------------------------------------------

    @abstractmethod
    def scope_exists(self, name: str) -> bool:
        ...

    @abstractmethod
    def get_scope(self, name: str) -> ScopeDescription | None:
        """The scope as recorded when it was applied, or None."""

    @abstractmethod
    def apply_scope(self, scope: ScopeDescription) -> None:
        """Create tracking objects for ``scope``."""

    @abstractmethod
    def deprovision_scope(self, name: str) -> None:
        ...

    @abstractmethod
    def deprovision_store(self) -> None:
        """Drop every tracking scope and the scope-info table. The client id is kept."""

    # ---- replica identity ---------------------------------------------

    def load_client_id(self) -> str:
        """
        The origin tag generated for this store on first use.

        Kept in a one-row tracking table so the device stamps the same tag
        on every session and survives a desync.
        """
        table = quote_identifier(self.names.client_table)
        if not self.table_exists(self.names.client_table):
            self.execute(f"CREATE TABLE {table} (client_id nvarchar(128) NOT NULL)")

        rows = self.query(f"SELECT client_id FROM {table}")
        if rows:
            return str(rows[0]["client_id"])

        client_id = str(uuid.uuid4())
        self.execute(f"INSERT INTO {table} (client_id) VALUES (?)", [client_id])
        logger.info(f"Generated client id {client_id} for the {self.role} store")
        return client_id

    # ---- helpers ------------------------------------------------------

    def quote_table(self, table: str) -> str:
        """Quote a table name after checking it exists in this store."""
        return quote_identifier(require_known_identifier(table, self.list_tables(), "table"))

    def quote_column(self, table: str, column: str) -> str:
        """Quote a column name after checking it exists on ``table``."""
        known = [c.name for c in self.columns(table)]
        return quote_identifier(require_known_identifier(column, known, f"column of {table}"))

    def drop_table(self, table: str) -> None:
        self.execute(f"DROP TABLE {self.quote_table(table)}")

    def close(self) -> None:
        """Release pooled resources. Stores without any may ignore this."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(role={self.role!r})"

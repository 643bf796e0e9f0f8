"""SQL Server connection pool implementation."""

from typing import Any

import pyodbc
from opentelemetry import trace

from sync_utils.retry import retry_database_operation
from sync_utils.tracing import trace_operation

from .base import BaseConnectionPool


def extract_from_conn_str(conn_str: str, key: str) -> str | None:
    """Return the value of ``key`` in an ODBC connection string, if present."""
    for part in conn_str.split(";"):
        name, sep, value = part.partition("=")
        if sep and name.strip().upper() == key.upper():
            return value.strip()
    return None


class SQLServerConnectionPool(BaseConnectionPool):
    """Connection pool for SQL Server databases (LocalDB included)."""

    def __init__(
        self,
        connection_string: str,
        connect_timeout: int = 10,
        connect_retries: int = 2,
        **kwargs: Any,
    ):
        """
        Args:
            connection_string: Complete ODBC connection string
            connect_timeout: Login timeout in seconds passed to pyodbc
            connect_retries: Retries for transient connect failures
            **kwargs: Additional arguments for BaseConnectionPool
        """
        if not connection_string:
            raise ValueError("connection_string must be provided")

        self.connection_string = connection_string
        self.connect_timeout = connect_timeout
        self.connect_retries = connect_retries
        self.host = extract_from_conn_str(connection_string, "SERVER") or "unknown"
        self.database = extract_from_conn_str(connection_string, "DATABASE") or "unknown"

        super().__init__(**kwargs)

    def _create_connection(self) -> pyodbc.Connection:
        @retry_database_operation(max_retries=self.connect_retries, base_delay=1.0)
        def connect() -> pyodbc.Connection:
            return pyodbc.connect(self.connection_string, timeout=self.connect_timeout)

        with trace_operation(
            "sqlserver_connect",
            kind=trace.SpanKind.CLIENT,
            db_host=self.host,
            db_name=self.database,
        ):
            conn = connect()
            # Each statement stands alone; there is no cross-step transaction
            conn.autocommit = True
            return conn

    def _is_connection_healthy(self, conn: pyodbc.Connection) -> bool:
        if conn is None:
            return False

        try:
            cursor = conn.cursor()
            cursor.execute("SELECT 1")
            cursor.fetchone()
            cursor.close()
            return True
        except pyodbc.Error:
            return False

    def _close_connection(self, conn: pyodbc.Connection) -> None:
        if conn is not None:
            conn.close()

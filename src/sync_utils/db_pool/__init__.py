"""
Database connection pooling for the local and server SQL Server stores.

Pools are owned by the store that uses them (one per store in a sync
session); there is no process-wide pool registry.
"""

from .base import (
    BaseConnectionPool,
    ConnectionPoolError,
    PoolClosedError,
    PooledConnection,
    PoolExhaustedError,
)
from .sqlserver import SQLServerConnectionPool, extract_from_conn_str

__all__ = [
    "BaseConnectionPool",
    "SQLServerConnectionPool",
    "PooledConnection",
    "ConnectionPoolError",
    "PoolExhaustedError",
    "PoolClosedError",
    "extract_from_conn_str",
]

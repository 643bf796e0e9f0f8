"""Stores: the local and server databases a sync pass works between."""

from .base import Store
from .sqlserver import SqlServerStore, create_database_file, format_column_type

__all__ = [
    "Store",
    "SqlServerStore",
    "create_database_file",
    "format_column_type",
]

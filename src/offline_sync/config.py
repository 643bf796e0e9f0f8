"""
Configuration for a sync session.

Connection strings and database names come from the caller's settings (a
desktop app's saved preferences, environment variables, or Vault through
the CLI); the engine never persists them.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from sync_utils.sql_safety import validate_identifier, validate_integer_param

from .errors import ConfigurationError
from .tracking import DEFAULT_TRACKING_PREFIX, SERVER_ORIGIN, TrackingNames

DEFAULT_LOCAL_PK_START = 1000
DEFAULT_CORRELATION_COLUMN = "GUID"
# Master connection used to create the local database file when it is missing
DEFAULT_LOCALDB_MASTER = (
    "DRIVER={ODBC Driver 18 for SQL Server};"
    "SERVER=(LocalDB)\\MSSQLLocalDB;"
    "Trusted_Connection=yes;"
)


@dataclass
class SyncConfig:
    """
    Settings consumed by the engine.

    Attributes:
        local_connection_string: ODBC connection string for the local store
        remote_connection_string: ODBC connection string for the server store
        local_database: Local database name (also the .mdf file stem)
        remote_database: Server database name
        root_directory: Directory holding the local .mdf file; when set and
            the file is missing, the database is created on initialize
        tracking_prefix: Reserved prefix for tracking objects
        local_pk_start: Offset for provisional local surrogate keys
        correlation_column: Name of the GUID column present on every table
        client_id: Origin tag this device stamps on its uploads; when empty,
            the session uses an id generated once and kept in the local store
        master_connection_string: Connection used to create the local database
        pool_max_size: Connections per store
        backup_hook: Called before every pass; default does nothing
    """

    local_connection_string: str = ""
    remote_connection_string: str = ""
    local_database: str = "local"
    remote_database: str = ""
    root_directory: Optional[str] = None
    tracking_prefix: str = DEFAULT_TRACKING_PREFIX
    local_pk_start: int = DEFAULT_LOCAL_PK_START
    correlation_column: str = DEFAULT_CORRELATION_COLUMN
    client_id: str = ""
    master_connection_string: str = DEFAULT_LOCALDB_MASTER
    pool_max_size: int = 4
    backup_hook: Optional[Callable[[], None]] = field(default=None, repr=False)

    @property
    def names(self) -> TrackingNames:
        return TrackingNames(self.tracking_prefix)

    @property
    def local_database_file(self) -> Optional[Path]:
        if not self.root_directory:
            return None
        return Path(self.root_directory) / f"{self.local_database}.mdf"

    def validate(self) -> None:
        """
        Check the settings before any store is touched.

        Raises:
            ConfigurationError: On the first problem found
        """
        if not self.local_connection_string:
            raise ConfigurationError("Local connection string is not configured")
        if not self.remote_connection_string:
            raise ConfigurationError("Remote connection string is not configured")

        try:
            validate_identifier(self.local_database)
            if self.remote_database:
                validate_identifier(self.remote_database)
            validate_identifier(self.tracking_prefix)
            validate_identifier(self.correlation_column)
            validate_integer_param(self.local_pk_start, "local_pk_start", min_value=1)
            validate_integer_param(self.pool_max_size, "pool_max_size", min_value=1)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        if self.client_id == SERVER_ORIGIN:
            raise ConfigurationError(
                f"client_id {SERVER_ORIGIN!r} is reserved for changes originating on the server"
            )
        if self.client_id == self.names.reconcile_origin:
            raise ConfigurationError(
                f"client_id {self.client_id!r} is reserved for local key fixes"
            )

    @classmethod
    def from_env(cls, **overrides) -> "SyncConfig":
        """
        Build a config from environment variables

        Environment variables:
            SYNC_LOCAL_CONNECTION, SYNC_REMOTE_CONNECTION: ODBC connection strings
            SYNC_LOCAL_DB, SYNC_REMOTE_DB: database names
            SYNC_ROOT_DIRECTORY: directory for the local .mdf file
            SYNC_CLIENT_ID: origin tag for this device
            SYNC_TRACKING_PREFIX, SYNC_LOCAL_PK_START: advanced overrides
        """
        values = {
            "local_connection_string": os.getenv("SYNC_LOCAL_CONNECTION", ""),
            "remote_connection_string": os.getenv("SYNC_REMOTE_CONNECTION", ""),
            "local_database": os.getenv("SYNC_LOCAL_DB", "local"),
            "remote_database": os.getenv("SYNC_REMOTE_DB", ""),
            "root_directory": os.getenv("SYNC_ROOT_DIRECTORY") or None,
            "client_id": os.getenv("SYNC_CLIENT_ID", ""),
            "tracking_prefix": os.getenv("SYNC_TRACKING_PREFIX", DEFAULT_TRACKING_PREFIX),
        }

        pk_start = os.getenv("SYNC_LOCAL_PK_START")
        if pk_start:
            try:
                values["local_pk_start"] = int(pk_start)
            except ValueError:
                raise ConfigurationError(
                    f"SYNC_LOCAL_PK_START must be an integer, got {pk_start!r}"
                ) from None

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

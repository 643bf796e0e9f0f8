"""
Exception hierarchy for the sync engine.

Only ConfigurationError and SyncInProgressError reach the caller of a sync
pass. The per-table kinds are caught by the orchestrator and land in the
pass report.
"""


class SyncError(Exception):
    """Base class for sync engine errors."""

    def __init__(self, message: str, table: str | None = None):
        super().__init__(message)
        self.table = table

    def __str__(self) -> str:
        message = super().__str__()
        if self.table:
            return f"[{self.table}] {message}"
        return message


class ConfigurationError(SyncError):
    """Missing or invalid connection settings, or a store that cannot be reached."""


class SyncInProgressError(SyncError):
    """A second pass was started while one is still running for the same stores."""


class ProvisioningError(SyncError):
    """Tracking scope or local schema could not be created for a table."""


class TransportError(SyncError):
    """The change exchange for a table failed."""


class ReconciliationError(SyncError):
    """A surrogate key update failed for one row."""

    def __init__(self, message: str, table: str | None = None, correlation_key: str | None = None):
        super().__init__(message, table)
        self.correlation_key = correlation_key


class ConstraintError(SyncError):
    """A foreign key, index, or trigger operation failed during rebuild."""

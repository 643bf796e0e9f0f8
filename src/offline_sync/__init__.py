"""
Offline/online relational sync engine.

Keeps a local SQL Server database on a field device in sync with a
central server. Rows pair up across stores by a GUID correlation column;
surrogate integer keys assigned offline are replaced by the server's once
a row has synced.

Usage:
    from offline_sync import SyncConfig, SyncSession

    with SyncSession(SyncConfig.from_env()) as session:
        session.initialize()
        report = session.sync_now()
        print(report.status)
"""

from .config import SyncConfig
from .errors import (
    ConfigurationError,
    ConstraintError,
    ProvisioningError,
    ReconciliationError,
    SyncError,
    SyncInProgressError,
    TransportError,
)
from .models import PassReport, StepResult, StepStatus, SyncStatistics, TableReport, TrackedTable
from .orchestrator import SyncOrchestrator
from .session import SyncSession

__version__ = "1.0.0"

__all__ = [
    "SyncConfig",
    "SyncSession",
    "SyncOrchestrator",
    "TrackedTable",
    "PassReport",
    "TableReport",
    "StepResult",
    "StepStatus",
    "SyncStatistics",
    "SyncError",
    "ConfigurationError",
    "SyncInProgressError",
    "ProvisioningError",
    "TransportError",
    "ReconciliationError",
    "ConstraintError",
]

"""
Value types shared by the sync engine components.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class TrackedTable:
    """A table eligible for sync. Identity is the table name."""

    name: str
    surrogate_key_column: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class ColumnDescription:
    """One column of a table as read from a store catalog."""

    name: str
    data_type: str
    is_nullable: bool = True
    is_key: bool = False
    is_identity: bool = False


@dataclass(frozen=True)
class ScopeDescription:
    """
    What a tracking scope records for one table.

    ``key_column`` is the column the tracking objects are keyed on (the
    correlation column), or None when the table has none and the scope was
    provisioned without key substitution.
    """

    name: str
    columns: tuple[ColumnDescription, ...]
    key_column: str | None

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.columns)

    @property
    def data_columns(self) -> tuple[str, ...]:
        """Tracked columns other than the key."""
        return tuple(c.name for c in self.columns if not c.is_key)


@dataclass(frozen=True)
class ForeignKeyDescriptor:
    """A foreign key declared on the server."""

    name: str
    table: str
    columns: tuple[str, ...]
    referenced_table: str
    referenced_columns: tuple[str, ...]


@dataclass(frozen=True)
class IndexDescriptor:
    """A server index and the statement that recreates it."""

    name: str
    table: str
    script: str


@dataclass
class SyncStatistics:
    """Counts returned by a transport exchange for one table."""

    uploaded: int = 0
    downloaded: int = 0
    failed: int = 0
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "uploaded": self.uploaded,
            "downloaded": self.downloaded,
            "failed": self.failed,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass(frozen=True)
class ProvisionResult:
    created: bool
    warnings: tuple[str, ...] = ()


@dataclass
class ReconcileResult:
    """Outcome of one key reconciliation run for a table."""

    table: str
    checked: int = 0
    updated: int = 0
    missing: int = 0
    failures: list = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "checked": self.checked,
            "updated": self.updated,
            "missing": self.missing,
            "failures": [str(f) for f in self.failures],
        }


class StepStatus(str, Enum):
    SUCCESS = "SUCCESS"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class StepResult:
    """Outcome of one step (provision, transport, reconcile, constraint)."""

    step: str
    status: StepStatus
    detail: str = ""
    table: str | None = None

    @classmethod
    def success(cls, step: str, detail: str = "", table: str | None = None) -> "StepResult":
        return cls(step, StepStatus.SUCCESS, detail, table)

    @classmethod
    def skipped(cls, step: str, reason: str, table: str | None = None) -> "StepResult":
        return cls(step, StepStatus.SKIPPED, reason, table)

    @classmethod
    def failed(cls, step: str, error: Exception | str, table: str | None = None) -> "StepResult":
        return cls(step, StepStatus.FAILED, str(error), table)

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "status": self.status.value,
            "detail": self.detail,
            "table": self.table,
        }


@dataclass
class TableReport:
    """Everything that happened to one table during a pass."""

    table: str
    steps: list[StepResult] = field(default_factory=list)
    statistics: SyncStatistics | None = None
    reconcile: ReconcileResult | None = None
    scope_created: bool = False

    @property
    def failed(self) -> bool:
        return any(s.status is StepStatus.FAILED for s in self.steps)

    @property
    def status(self) -> str:
        return "FAILED" if self.failed else "OK"

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "status": self.status,
            "scope_created": self.scope_created,
            "steps": [s.to_dict() for s in self.steps],
            "statistics": self.statistics.to_dict() if self.statistics else None,
            "reconcile": self.reconcile.to_dict() if self.reconcile else None,
        }


@dataclass
class PassReport:
    """Aggregate result of one RunSync pass, returned to the caller."""

    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    tables: list[TableReport] = field(default_factory=list)
    schema_changed: bool = False
    constraints_rebuilt: bool = False
    constraint_results: list[StepResult] = field(default_factory=list)

    @property
    def failed_tables(self) -> list[str]:
        return [t.table for t in self.tables if t.failed]

    @property
    def status(self) -> str:
        if not self.tables:
            return "NO_DATA"
        failed = len(self.failed_tables)
        if failed == 0:
            return "PASS"
        if failed == len(self.tables):
            return "FAIL"
        return "PARTIAL"

    @property
    def duration_seconds(self) -> float:
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()

    def table(self, name: str) -> TableReport | None:
        for report in self.tables:
            if report.table == name:
                return report
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "schema_changed": self.schema_changed,
            "constraints_rebuilt": self.constraints_rebuilt,
            "tables": [t.to_dict() for t in self.tables],
            "constraint_results": [c.to_dict() for c in self.constraint_results],
        }

"""
Change transport interface.

A transport moves row changes for one table between the local and server
stores and reports what it moved. It never touches surrogate keys; those
are fixed afterwards by the key reconciler.
"""

from abc import ABC, abstractmethod
from enum import Enum

from ..models import SyncStatistics, TrackedTable
from ..store import Store


class SyncDirection(str, Enum):
    UPLOAD = "upload"
    DOWNLOAD = "download"
    UPLOAD_AND_DOWNLOAD = "upload_and_download"

    @property
    def uploads(self) -> bool:
        return self in (SyncDirection.UPLOAD, SyncDirection.UPLOAD_AND_DOWNLOAD)

    @property
    def downloads(self) -> bool:
        return self in (SyncDirection.DOWNLOAD, SyncDirection.UPLOAD_AND_DOWNLOAD)


class ChangeTransport(ABC):
    """Bidirectional row-change exchange for a single table."""

    @abstractmethod
    def synchronize(
        self,
        table: TrackedTable,
        local: Store,
        remote: Store,
        direction: SyncDirection = SyncDirection.UPLOAD_AND_DOWNLOAD,
    ) -> SyncStatistics:
        """
        Exchange pending changes for ``table``.

        Rows that cannot be applied are counted in ``failed`` and retried on
        a later pass; the call itself raises TransportError only when the
        exchange cannot run at all.
        """

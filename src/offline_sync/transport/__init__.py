"""Change transports between the local and server stores."""

from .base import ChangeTransport, SyncDirection
from .sqlserver import TrackingTableTransport

__all__ = ["ChangeTransport", "SyncDirection", "TrackingTableTransport"]

"""
Naming rules for tracking objects.

Every object the engine creates for change tracking starts with a reserved
prefix. The catalog hides prefixed tables from the sync list, and the
constraint rebuilder derives the delete-trigger name from the same rules,
so both sides must go through this class.
"""

from dataclasses import dataclass

from sync_utils.sql_safety import validate_identifier

DEFAULT_TRACKING_PREFIX = "xsync"

# Origin tag the local store records for changes that came from the server
SERVER_ORIGIN = "server"

TRIGGER_OPERATIONS = ("insert", "update", "delete")


@dataclass(frozen=True)
class TrackingNames:
    """Derives tracking object names from the reserved prefix."""

    prefix: str = DEFAULT_TRACKING_PREFIX

    def __post_init__(self) -> None:
        validate_identifier(self.prefix)

    @property
    def scope_info_table(self) -> str:
        return f"{self.prefix}_scope_info"

    @property
    def origin_context_key(self) -> str:
        """SESSION_CONTEXT key triggers read to attribute a change to a peer."""
        return f"{self.prefix}_origin"

    @property
    def client_table(self) -> str:
        return f"{self.prefix}_client"

    @property
    def reconcile_origin(self) -> str:
        """Origin for local key fixes; tracking triggers leave these rows alone."""
        return f"{self.prefix}_reconcile"

    def tracking_table(self, table: str) -> str:
        return f"{self.prefix}_{table}_tracking"

    def trigger(self, table: str, operation: str) -> str:
        if operation not in TRIGGER_OPERATIONS:
            raise ValueError(f"Unknown trigger operation: {operation!r}")
        return f"{self.prefix}_{table}_{operation}_trigger"

    def delete_trigger(self, table: str) -> str:
        return self.trigger(table, "delete")

    def is_tracking_object(self, name: str) -> bool:
        """True for any object name carrying the reserved prefix."""
        return self.prefix.lower() in name.lower()

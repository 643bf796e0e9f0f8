"""
Tracking scope provisioning.
"""

import logging

from opentelemetry import trace

from sync_utils.tracing import trace_operation

from .config import DEFAULT_CORRELATION_COLUMN
from .errors import ProvisioningError
from .models import ColumnDescription, ProvisionResult, ScopeDescription, TrackedTable
from .store import Store

logger = logging.getLogger(__name__)


class ScopeProvisioner:
    """
    Ensures a tracking scope exists for a table in a store.

    The scope tracks every column except the surrogate key, and is keyed on
    the correlation column so rows pair up across stores whatever their
    local key values are.
    """

    def __init__(self, correlation_column: str = DEFAULT_CORRELATION_COLUMN):
        self.correlation_column = correlation_column

    def describe(self, store: Store, table: TrackedTable) -> tuple[ScopeDescription, tuple[str, ...]]:
        """Build the scope for ``table`` and any warnings raised on the way."""
        warnings: list[str] = []
        wanted = self.correlation_column.lower()
        surrogate = table.surrogate_key_column.lower()

        columns = []
        key_column = None
        for column in store.columns(table.name):
            if column.name.lower() == surrogate:
                continue
            is_key = column.name.lower() == wanted
            if is_key:
                key_column = column.name
            columns.append(
                ColumnDescription(
                    name=column.name,
                    data_type=column.data_type,
                    is_nullable=column.is_nullable,
                    is_key=is_key,
                )
            )

        if key_column is None:
            message = (
                f"Table {table.name} on {store.role} has no {self.correlation_column} column; "
                "provisioning without key substitution"
            )
            logger.warning(message)
            warnings.append(message)

        scope = ScopeDescription(name=table.name, columns=tuple(columns), key_column=key_column)
        return scope, tuple(warnings)

    def ensure_scope(self, store: Store, table: TrackedTable) -> ProvisionResult:
        """
        Create the scope for ``table`` unless it already exists.

        Returns:
            ProvisionResult with ``created`` set when a scope was made

        Raises:
            ProvisioningError: When the store rejects the scope
        """
        with trace_operation(
            "ensure_scope",
            kind=trace.SpanKind.INTERNAL,
            store=store.role,
            table=table.name,
        ):
            try:
                if store.scope_exists(table.name):
                    logger.debug(f"Scope {table.name} already provisioned on {store.role}")
                    return ProvisionResult(created=False)

                scope, warnings = self.describe(store, table)
                store.apply_scope(scope)
            except ProvisioningError:
                raise
            except Exception as e:
                raise ProvisioningError(
                    f"Could not provision scope on {store.role}: {e}", table.name
                ) from e

        logger.info(f"Created tracking scope {table.name} on {store.role}")
        return ProvisionResult(created=True, warnings=warnings)

"""
SQL safety utilities for preventing SQL injection.

Provides identifier validation and bracket quoting for SQL Server DDL/DML
construction. Values are never embedded in SQL text; callers bind them as
parameters. Identifiers (table, column, constraint, trigger names) cannot
be bound, so they are validated here and, where a catalog is available,
checked against it before being quoted.
"""

import re
from collections.abc import Iterable


# Strict ASCII-only pattern for SQL identifiers
VALID_IDENTIFIER = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

# SQL Server caps sysname at 128 characters
MAX_IDENTIFIER_LENGTH = 128


def validate_identifier(identifier: str) -> None:
    """
    Validate a SQL identifier (table name, column name, etc.).

    Args:
        identifier: The identifier to validate

    Raises:
        ValueError: If the identifier contains invalid characters
    """
    if not identifier:
        raise ValueError("SQL identifier cannot be empty")

    if len(identifier) > MAX_IDENTIFIER_LENGTH:
        raise ValueError(
            f"Invalid SQL identifier: {identifier!r}. "
            f"Identifiers are limited to {MAX_IDENTIFIER_LENGTH} characters."
        )

    if not VALID_IDENTIFIER.match(identifier):
        raise ValueError(
            f"Invalid SQL identifier: {identifier!r}. "
            "Only ASCII letters, digits, and underscores are allowed, "
            "and must start with a letter or underscore."
        )


def quote_identifier(identifier: str) -> str:
    """
    Safely bracket-quote a SQL Server identifier after validation.

    Args:
        identifier: The identifier to quote (table name, column name, etc.)

    Returns:
        Quoted identifier safe for use in SQL

    Raises:
        ValueError: If the identifier is invalid
    """
    validate_identifier(identifier)
    return f"[{identifier}]"


def require_known_identifier(identifier: str, known: Iterable[str], kind: str = "identifier") -> str:
    """
    Validate an identifier and check it is present in a catalog listing.

    Matching is case-insensitive, as SQL Server's default collations are.
    The catalog spelling is returned so generated DDL uses the server's
    casing.

    Args:
        identifier: Identifier supplied by the caller
        known: Names read from the store catalog
        kind: Label used in the error message ("table", "column", ...)

    Returns:
        The identifier as spelled in the catalog

    Raises:
        ValueError: If the identifier is malformed or not in the catalog
    """
    validate_identifier(identifier)

    lookup = {name.lower(): name for name in known}
    try:
        return lookup[identifier.lower()]
    except KeyError:
        raise ValueError(f"Unknown {kind}: {identifier!r}") from None


def validate_integer_param(value: int, param_name: str, min_value: int = 0) -> None:
    """
    Validate an integer parameter that ends up in generated DDL.

    Args:
        value: The value to validate
        param_name: Name of the parameter (for error messages)
        min_value: Minimum allowed value (default 0)

    Raises:
        ValueError: If the value is not a valid integer or below minimum
    """
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(
            f"Invalid {param_name}: {value!r}. Must be an integer."
        )

    if value < min_value:
        raise ValueError(
            f"Invalid {param_name}: {value}. Must be >= {min_value}."
        )

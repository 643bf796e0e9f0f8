"""
Retry decorator with exponential backoff for database operations

Connecting to the central server from a field device is the flakiest part
of a sync pass: the link comes and goes. Transient failures (connection
drops, timeouts, deadlocks) are retried with exponential backoff and
jitter; anything else (syntax errors, constraint violations) is raised
immediately so the caller can report it.

Usage:
    from sync_utils.retry import retry_database_operation

    @retry_database_operation(max_retries=3, base_delay=1.0)
    def connect():
        return pyodbc.connect(connection_string)
"""

import logging
import random
import time
from functools import wraps
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


# Common retryable error patterns (matched against the lowercased message)
RETRYABLE_PATTERNS = (
    "connection",
    "timeout",
    "deadlock",
    "lock request time out",
    "can't connect",
    "unable to connect",
    "connection refused",
    "connection reset",
    "broken pipe",
    "network error",
    "communication link failure",
    "tcp provider",
    "login timeout expired",
)

RETRYABLE_EXCEPTION_NAMES = (
    "connectionerror",
    "timeouterror",
    "operationalerror",
    "interfaceerror",
)


def is_retryable_db_exception(exception: Exception) -> bool:
    """
    Determine if a database exception is retryable

    Args:
        exception: The exception to check

    Returns:
        True if the exception looks transient, False otherwise
    """
    exception_str = str(exception).lower()
    exception_type = type(exception).__name__.lower()

    for pattern in RETRYABLE_PATTERNS:
        if pattern in exception_str or pattern in exception_type:
            return True

    return exception_type in RETRYABLE_EXCEPTION_NAMES


def compute_backoff_delay(
    attempt: int,
    base_delay: float,
    max_delay: float = 60.0,
    jitter: bool = True,
) -> float:
    """
    Delay before retry number ``attempt`` (0-based).

    Jitter is +/-25% of the delay, with a 0.1s floor.
    """
    delay = min(base_delay * (2.0 ** attempt), max_delay)
    if jitter:
        jitter_amount = delay * 0.25
        delay = delay + random.uniform(-jitter_amount, jitter_amount)
        delay = max(0.1, delay)
    return delay


def retry_database_operation(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    on_retry: Optional[Callable[[int, Exception, float], None]] = None
):
    """
    Decorator for database operations with smart exception filtering

    Only retries on transient database errors (connection, timeout, deadlock, etc.)
    Non-retryable errors fail immediately.

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Initial delay in seconds (default: 1.0)
        max_delay: Upper bound for a single delay in seconds (default: 60.0)
        on_retry: Callback function(attempt, exception, delay) called on each retry
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            func_name = getattr(func, '__name__', 'function')

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)

                except Exception as e:
                    if not is_retryable_db_exception(e):
                        logger.error(
                            f"Non-retryable database error in {func_name}: "
                            f"{type(e).__name__}: {e}"
                        )
                        raise

                    if attempt == max_retries:
                        logger.error(
                            f"Max retries ({max_retries}) exceeded for {func_name}: "
                            f"{type(e).__name__}: {e}"
                        )
                        raise

                    delay = compute_backoff_delay(attempt, base_delay, max_delay)

                    logger.warning(
                        f"Retryable database error in {func_name} "
                        f"(attempt {attempt + 1}/{max_retries}): "
                        f"{type(e).__name__}: {e}. Retrying in {delay:.2f}s..."
                    )

                    if on_retry:
                        try:
                            on_retry(attempt + 1, e, delay)
                        except Exception as callback_error:
                            logger.error(f"Error in retry callback: {callback_error}")

                    time.sleep(delay)

            raise RuntimeError(f"Unexpected error in retry logic for {func_name}")

        return wrapper
    return decorator

"""
Unit tests for retry logic with exponential backoff

Tests verify:
- Backoff delay calculation
- Exception filtering
- Retry callbacks
"""

from unittest.mock import Mock, patch

import pytest

from sync_utils.retry import (
    compute_backoff_delay,
    is_retryable_db_exception,
    retry_database_operation,
)


class OperationalError(Exception):
    """Stands in for a driver's OperationalError (matched by class name)."""


class TestIsRetryable:
    """Test exception classification"""

    @pytest.mark.parametrize(
        "message",
        [
            "[08S01] Communication link failure",
            "Login timeout expired",
            "Transaction was deadlocked on lock resources",
            "TCP Provider: An existing connection was forcibly closed",
            "Connection refused",
        ],
    )
    def test_transient_messages_are_retryable(self, message):
        assert is_retryable_db_exception(Exception(message)) is True

    def test_retryable_by_exception_type(self):
        assert is_retryable_db_exception(OperationalError("server gone")) is True
        assert is_retryable_db_exception(TimeoutError("slow")) is True

    @pytest.mark.parametrize(
        "message",
        [
            "Incorrect syntax near 'FROM'",
            "Violation of PRIMARY KEY constraint 'PK_GUID_Item'",
            "The INSERT statement conflicted with the FOREIGN KEY constraint",
        ],
    )
    def test_permanent_errors_are_not_retryable(self, message):
        assert is_retryable_db_exception(ValueError(message)) is False


class TestComputeBackoffDelay:
    """Test backoff delay calculation"""

    def test_exponential_without_jitter(self):
        assert compute_backoff_delay(0, 1.0, jitter=False) == 1.0
        assert compute_backoff_delay(1, 1.0, jitter=False) == 2.0
        assert compute_backoff_delay(3, 1.0, jitter=False) == 8.0

    def test_capped_at_max_delay(self):
        assert compute_backoff_delay(10, 1.0, max_delay=5.0, jitter=False) == 5.0

    def test_jitter_stays_within_bounds(self):
        for _ in range(50):
            delay = compute_backoff_delay(2, 1.0)
            assert 3.0 <= delay <= 5.0

    def test_jitter_has_floor(self):
        for _ in range(50):
            assert compute_backoff_delay(0, 0.01) >= 0.1


class TestRetryDatabaseOperation:
    """Test retry_database_operation decorator"""

    @patch("sync_utils.retry.time.sleep")
    def test_success_on_first_attempt(self, mock_sleep):
        func = Mock(return_value="ok", __name__="connect")

        assert retry_database_operation(max_retries=3)(func)() == "ok"
        assert func.call_count == 1
        mock_sleep.assert_not_called()

    @patch("sync_utils.retry.time.sleep")
    def test_retries_transient_errors_then_succeeds(self, mock_sleep):
        func = Mock(
            side_effect=[ConnectionError("connection reset"), TimeoutError("timeout"), "ok"],
            __name__="connect",
        )

        assert retry_database_operation(max_retries=3, base_delay=0.5)(func)() == "ok"
        assert func.call_count == 3
        assert mock_sleep.call_count == 2

    @patch("sync_utils.retry.time.sleep")
    def test_non_retryable_error_raises_immediately(self, mock_sleep):
        func = Mock(side_effect=ValueError("Invalid column name 'Foo'"), __name__="query")

        with pytest.raises(ValueError, match="Invalid column name"):
            retry_database_operation(max_retries=3)(func)()

        assert func.call_count == 1
        mock_sleep.assert_not_called()

    @patch("sync_utils.retry.time.sleep")
    def test_max_retries_exceeded(self, mock_sleep):
        func = Mock(side_effect=ConnectionError("connection refused"), __name__="connect")

        with pytest.raises(ConnectionError):
            retry_database_operation(max_retries=2)(func)()

        # initial attempt + 2 retries
        assert func.call_count == 3

    @patch("sync_utils.retry.time.sleep")
    def test_on_retry_callback(self, mock_sleep):
        callback = Mock()
        error = ConnectionError("connection reset")
        func = Mock(side_effect=[error, "ok"], __name__="connect")

        retry_database_operation(max_retries=2, on_retry=callback)(func)()

        callback.assert_called_once()
        attempt, exc, delay = callback.call_args[0]
        assert attempt == 1
        assert exc is error
        assert delay > 0

    @patch("sync_utils.retry.time.sleep")
    def test_callback_failure_does_not_stop_retry(self, mock_sleep):
        callback = Mock(side_effect=RuntimeError("callback broke"))
        func = Mock(side_effect=[ConnectionError("connection reset"), "ok"], __name__="connect")

        assert retry_database_operation(max_retries=2, on_retry=callback)(func)() == "ok"

    def test_preserves_function_metadata(self):
        @retry_database_operation()
        def open_connection():
            """Open it."""

        assert open_connection.__name__ == "open_connection"
        assert open_connection.__doc__ == "Open it."

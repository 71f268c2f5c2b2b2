"""Tests for the scheduler exception hierarchy."""

import pytest

from call_scheduler.exceptions import (
    BackendCallError,
    BatchAggregateError,
    QueueClearedError,
    RetriesExhaustedError,
    SchedulerError,
    TerminalError,
    ThrottlingError,
)


class TestBackendCallError:
    """Tests for tagged backend errors."""

    def test_throttling_defaults(self) -> None:
        """ThrottlingError is retryable and keeps its metadata."""
        error = ThrottlingError("slow down", status_code=429, retry_after=1.5)

        assert error.retryable is True
        assert error.status_code == 429
        assert error.retry_after == 1.5
        assert str(error) == "slow down"

    def test_terminal_defaults(self) -> None:
        """TerminalError is not retryable."""
        error = TerminalError("gone", status_code=410)

        assert error.retryable is False
        assert error.retry_after is None

    def test_base_is_untagged_terminal(self) -> None:
        """A bare BackendCallError defaults to not retryable."""
        assert BackendCallError("x").retryable is False

    @pytest.mark.parametrize(
        "error_class",
        [BackendCallError, RetriesExhaustedError, QueueClearedError, BatchAggregateError],
    )
    def test_all_derive_from_scheduler_error(self, error_class: type) -> None:
        """Every scheduler error shares the SchedulerError base."""
        assert issubclass(error_class, SchedulerError)


class TestSchedulerErrors:
    """Tests for errors raised by the scheduler itself."""

    def test_retries_exhausted_message(self) -> None:
        """RetriesExhaustedError names the attempt count and last error."""
        last = ThrottlingError("429 Too Many Requests")
        error = RetriesExhaustedError(last, attempts=4)

        assert error.last_error is last
        assert error.attempts == 4
        assert str(error) == "Retries exhausted after 4 attempts: 429 Too Many Requests"

    def test_queue_cleared_message(self) -> None:
        """QueueClearedError has a fixed default message."""
        assert str(QueueClearedError()) == "Queue cleared"

    def test_batch_aggregate(self) -> None:
        """BatchAggregateError carries every (index, error) pair."""
        errors: list[tuple[int, BaseException]] = [(0, ValueError("a")), (1, ValueError("b"))]
        error = BatchAggregateError(errors)

        assert error.failure_count == 2
        assert error.errors == errors
        assert str(error) == "All batch requests failed: 2 errors"

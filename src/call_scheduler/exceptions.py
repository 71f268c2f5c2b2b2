"""Call scheduler exceptions."""

from __future__ import annotations


class SchedulerError(Exception):
    """Base exception for call scheduler errors."""

    pass


class BackendCallError(SchedulerError):
    """A failed backend call tagged with its retry classification.

    Raised by the transport layer so the scheduler can decide on retries
    from the ``retryable`` flag instead of inspecting messages.
    """

    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = self.default_retryable if retryable is None else retryable
        self.retry_after = retry_after


class ThrottlingError(BackendCallError):
    """Raised when the backend signals throttling (429 or equivalent)."""

    default_retryable = True


class TerminalError(BackendCallError):
    """Raised for backend failures that must not be retried."""

    pass


class RetriesExhaustedError(SchedulerError):
    """Raised when a throttled call is still failing after its retry budget."""

    def __init__(self, last_error: BaseException, attempts: int) -> None:
        super().__init__(f"Retries exhausted after {attempts} attempts: {last_error}")
        self.last_error = last_error
        self.attempts = attempts


class QueueClearedError(SchedulerError):
    """Delivered to queued calls dropped by clear_queue() or reset()."""

    def __init__(self, message: str = "Queue cleared") -> None:
        super().__init__(message)


class BatchAggregateError(SchedulerError):
    """Raised by the batch runner when every task in the batch failed."""

    def __init__(self, errors: list[tuple[int, BaseException]]) -> None:
        super().__init__(f"All batch requests failed: {len(errors)} errors")
        self.errors = errors

    @property
    def failure_count(self) -> int:
        """Number of failed tasks."""
        return len(self.errors)

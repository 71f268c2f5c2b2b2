"""Batch runner for sequences of independent scheduled calls.

Calls are submitted to the RequestScheduler one at a time, in order, and
each settlement is awaited before the next submission. Per-item failures
are reported through ``on_error`` and only a batch in which every call
failed raises.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from call_scheduler.exceptions import BatchAggregateError
from call_scheduler.logging import get_logger

from .progress import ProgressTracker
from .scheduler import RequestScheduler, Work

logger = get_logger(__name__)

T = TypeVar("T")

ProgressHook = Callable[[int, int], None]
"""Called as ``on_progress(completed_count, total)`` after each success."""

ErrorHook = Callable[[BaseException, int], None]
"""Called as ``on_error(error, index)`` after each failure."""


@dataclass
class BatchResult(Generic[T]):
    """Result of a batch run."""

    succeeded: list[T] = field(default_factory=list)
    failed: list[tuple[int, BaseException]] = field(default_factory=list)

    @property
    def total_count(self) -> int:
        """Total number of calls settled."""
        return len(self.succeeded) + len(self.failed)

    @property
    def success_count(self) -> int:
        """Number of calls that returned a value."""
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        """Number of calls that raised."""
        return len(self.failed)

    @property
    def all_succeeded(self) -> bool:
        """True when no call failed."""
        return len(self.failed) == 0

    @property
    def failed_indices(self) -> list[int]:
        """Positions of the failed calls in the submitted sequence."""
        return [index for index, _ in self.failed]


class BatchRunner:
    """Runs a sequence of calls through a scheduler, in submission order.

    Usage:
        runner = BatchRunner(scheduler, progress=ProgressTracker(name="export"))
        result = await runner.execute(
            [lambda n=n: client.get_record(n) for n in record_ids],
            on_error=lambda error, index: print(f"record {index} failed: {error}"),
        )
        print(f"Fetched {result.success_count} records")
    """

    def __init__(
        self,
        scheduler: RequestScheduler,
        progress: ProgressTracker | None = None,
    ) -> None:
        """Initialize the batch runner.

        Args:
            scheduler: RequestScheduler every call is submitted to
            progress: Optional ProgressTracker updated per call
        """
        self._scheduler = scheduler
        self._progress = progress
        self._cancelled = False

    async def execute(
        self,
        works: Sequence[Work[T]],
        *,
        on_progress: ProgressHook | None = None,
        on_error: ErrorHook | None = None,
    ) -> BatchResult[T]:
        """Run every call and collect results.

        Args:
            works: Zero-argument callables, submitted in order
            on_progress: Called after each success with (settled so far, total)
            on_error: Called after each failure with (error, index)

        Returns:
            BatchResult with successes in submission order and (index, error) failures

        Raises:
            BatchAggregateError: Every call in a non-empty batch failed
        """
        self._cancelled = False
        result: BatchResult[T] = BatchResult()
        total = len(works)

        if not works:
            return result

        if self._progress:
            self._progress.total = total
            self._progress.start()

        try:
            for index, work in enumerate(works):
                if self._cancelled:
                    break
                await self._run_one(index, work, total, result, on_progress, on_error)

            if result.failure_count == total:
                raise BatchAggregateError(result.failed)

        except Exception as e:
            logger.error("Batch on {} failed: {}", self._scheduler.name, e)
            if self._progress:
                self._progress.fail(str(e))
            raise

        if self._progress:
            if self._cancelled:
                self._progress.cancel()
            else:
                self._progress.complete()

        return result

    async def _run_one(
        self,
        index: int,
        work: Work[T],
        total: int,
        result: BatchResult[T],
        on_progress: ProgressHook | None,
        on_error: ErrorHook | None,
    ) -> None:
        """Run one call through the scheduler and record its outcome.

        Args:
            index: Position of the call in the batch
            work: The call's zero-argument callable
            total: Batch size, for the progress label
            result: Batch result to append the outcome to
            on_progress: Called with (index + 1, total) after a success
            on_error: Called with (error, index) after a failure
        """
        if self._progress:
            self._progress.set_current(f"call {index + 1}/{total}")

        try:
            value = await self._scheduler.execute(work)
        except Exception as error:
            result.failed.append((index, error))
            if self._progress:
                self._progress.increment_failed(error=str(error))
            if on_error:
                on_error(error, index)
            return

        result.succeeded.append(value)
        if self._progress:
            self._progress.increment()
        if on_progress:
            on_progress(index + 1, total)

    def cancel(self) -> None:
        """Stop submitting further calls.

        The call currently in the scheduler still settles.
        """
        self._cancelled = True
        logger.info("Batch on {} cancelled", self._scheduler.name)

    @property
    def is_cancelled(self) -> bool:
        """Whether cancel() has been called."""
        return self._cancelled


async def run_batch(
    scheduler: RequestScheduler,
    works: Sequence[Work[T]],
    *,
    on_progress: ProgressHook | None = None,
    on_error: ErrorHook | None = None,
    progress: ProgressTracker | None = None,
) -> list[T]:
    """Convenience function: run a batch and return only the successful results.

    The list keeps the submission order of the successes; use ``on_error``'s
    index to place failures.

    Raises:
        BatchAggregateError: Every call failed
    """
    runner = BatchRunner(scheduler, progress=progress)
    result = await runner.execute(works, on_progress=on_progress, on_error=on_error)
    return result.succeeded


def batch_summary(result: BatchResult[Any]) -> dict[str, Any]:
    """Convert a BatchResult to a JSON-friendly summary."""
    return {
        "succeeded": result.success_count,
        "failed": result.failure_count,
        "failures": [
            {"index": index, "error": type(error).__name__, "message": str(error)}
            for index, error in result.failed
        ],
    }

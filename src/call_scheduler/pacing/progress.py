"""Observable progress for batches of scheduled calls.

A ProgressTracker counts settled calls and pushes an immutable
ProgressUpdate to every registered callback after each change. The CLI
drives its progress bar from these callbacks.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

logger = logging.getLogger(__name__)

RECENT_ERRORS_KEPT = 10


class ProgressState(StrEnum):
    """Lifecycle of a tracked batch."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


FINAL_STATES = frozenset(
    {ProgressState.COMPLETED, ProgressState.FAILED, ProgressState.CANCELLED}
)


@dataclass(frozen=True)
class ProgressUpdate:
    """Snapshot handed to progress callbacks."""

    total: int
    completed: int
    failed: int
    state: ProgressState
    current_item: str | None = None
    error: str | None = None
    started_at: datetime | None = None
    elapsed_seconds: float = 0.0
    recent_errors: tuple[str, ...] = field(default_factory=tuple)

    @property
    def processed(self) -> int:
        """Calls settled either way."""
        return self.completed + self.failed

    @property
    def remaining(self) -> int:
        """Calls not yet settled."""
        return max(0, self.total - self.processed)

    @property
    def progress_percent(self) -> float:
        """Share of the batch settled (0-100); an empty batch counts as done."""
        if self.total == 0:
            return 100.0
        return self.processed / self.total * 100

    @property
    def success_rate(self) -> float:
        """Share of settled calls that succeeded (0-100)."""
        if self.processed == 0:
            return 100.0
        return self.completed / self.processed * 100

    @property
    def calls_per_second(self) -> float:
        """Settled calls per second since start."""
        if self.elapsed_seconds <= 0:
            return 0.0
        return self.processed / self.elapsed_seconds

    @property
    def eta_seconds(self) -> float | None:
        """Estimated seconds left at the current rate, or None before any settle."""
        rate = self.calls_per_second
        if rate == 0:
            return None
        return self.remaining / rate


ProgressCallback = Callable[[ProgressUpdate], None]


class ProgressTracker:
    """Counts settled calls of a batch and notifies listeners.

    Usage:
        tracker = ProgressTracker(total=len(works), name="export")
        tracker.on_progress(lambda u: print(f"{u.progress_percent:.0f}%"))
        await BatchRunner(scheduler, progress=tracker).execute(works)
    """

    def __init__(self, total: int = 0, name: str = "batch") -> None:
        self._name = name
        self._total = total
        self._callbacks: list[ProgressCallback] = []
        self._recent_errors: deque[str] = deque(maxlen=RECENT_ERRORS_KEPT)
        self._clear()

    def _clear(self) -> None:
        self._completed = 0
        self._failed = 0
        self._state = ProgressState.PENDING
        self._current_item: str | None = None
        self._error: str | None = None
        self._started_at: datetime | None = None
        self._start_time: float | None = None
        self._recent_errors.clear()

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------
    @property
    def name(self) -> str:
        """Label used in log messages."""
        return self._name

    @property
    def total(self) -> int:
        """Number of calls expected in the batch."""
        return self._total

    @total.setter
    def total(self, value: int) -> None:
        self._total = value
        self._notify()

    @property
    def completed(self) -> int:
        """Calls that succeeded so far."""
        return self._completed

    @property
    def failed(self) -> int:
        """Calls that failed so far."""
        return self._failed

    @property
    def state(self) -> ProgressState:
        return self._state

    @property
    def is_running(self) -> bool:
        """True between start() and a final state."""
        return self._state is ProgressState.IN_PROGRESS

    @property
    def is_done(self) -> bool:
        """True once completed, failed or cancelled."""
        return self._state in FINAL_STATES

    @property
    def elapsed_seconds(self) -> float:
        """Seconds since start(), or 0.0 before it."""
        if self._start_time is None:
            return 0.0
        return time.monotonic() - self._start_time

    # -------------------------------------------------------------------------
    # Callbacks
    # -------------------------------------------------------------------------
    def on_progress(self, callback: ProgressCallback) -> None:
        """Register callback to receive every ProgressUpdate."""
        self._callbacks.append(callback)

    def _notify(self) -> None:
        update = self.get_update()
        for callback in self._callbacks:
            try:
                callback(update)
            except Exception as e:
                logger.warning("Progress callback error: %s", e)

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------
    def _transition(self, state: ProgressState) -> None:
        self._state = state
        if state in FINAL_STATES:
            self._current_item = None
        self._notify()

    def start(self) -> None:
        """Mark the batch as running and record the start time."""
        self._started_at = datetime.now(UTC)
        self._start_time = time.monotonic()
        logger.info("%s: started, %d calls", self._name, self._total)
        self._transition(ProgressState.IN_PROGRESS)

    def complete(self) -> None:
        """Mark the batch as finished."""
        logger.info(
            "%s: %d succeeded, %d failed in %.1fs",
            self._name,
            self._completed,
            self._failed,
            self.elapsed_seconds,
        )
        self._transition(ProgressState.COMPLETED)

    def fail(self, error: str) -> None:
        """Mark the whole batch as failed with ``error``."""
        self._error = error
        logger.error("%s: failed: %s", self._name, error)
        self._transition(ProgressState.FAILED)

    def cancel(self) -> None:
        """Mark the batch as cancelled."""
        logger.info("%s: cancelled after %d/%d", self._name, self._settled, self._total)
        self._transition(ProgressState.CANCELLED)

    # -------------------------------------------------------------------------
    # Counting
    # -------------------------------------------------------------------------
    @property
    def _settled(self) -> int:
        return self._completed + self._failed

    def set_current(self, item: str) -> None:
        """Label the call currently in the scheduler."""
        self._current_item = item
        self._notify()

    def increment(self, count: int = 1) -> None:
        """Record ``count`` successful calls."""
        self._completed += count
        self._current_item = None
        logger.debug("%s: %d/%d settled", self._name, self._settled, self._total)
        self._notify()

    def increment_failed(self, count: int = 1, error: str | None = None) -> None:
        """Record ``count`` failed calls, keeping ``error`` among the recent ones."""
        self._failed += count
        self._current_item = None
        if error:
            self._recent_errors.append(error)
            logger.warning("%s: call failed: %s", self._name, error)
        self._notify()

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------
    def get_update(self) -> ProgressUpdate:
        """Snapshot of the current counts and state."""
        return ProgressUpdate(
            total=self._total,
            completed=self._completed,
            failed=self._failed,
            state=self._state,
            current_item=self._current_item,
            error=self._error,
            started_at=self._started_at,
            elapsed_seconds=self.elapsed_seconds,
            recent_errors=tuple(self._recent_errors),
        )

    def reset(self) -> None:
        """Return to PENDING with zero counts; total and callbacks are kept."""
        self._clear()
        self._notify()

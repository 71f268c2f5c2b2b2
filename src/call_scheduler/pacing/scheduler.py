"""Admission and retry scheduler for calls to one rate-limited backend.

A RequestScheduler owns three pieces of state:

- the queue of calls waiting for admission
- the usage ledger, one monotonic timestamp per admitted execution,
  pruned to a sliding window
- the active count of executions currently holding a concurrency slot

A single processing loop admits calls when both the window and the
concurrency cap have room, runs each admitted call as its own task, and
requeues calls whose failure the retry classifier marks as throttling.
Check-and-reserve never awaits, so two calls cannot claim the same slot.
"""

from __future__ import annotations

import asyncio
import inspect
import math
import time
import uuid
from collections import deque
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum
from functools import wraps
from typing import Any, Generic, ParamSpec, TypeVar

from pydantic import BaseModel, computed_field

from call_scheduler.classifiers import (
    RetryClassifier,
    is_throttling_error,
    retry_after_seconds,
)
from call_scheduler.config import SchedulerConfig, get_settings
from call_scheduler.enums import RetryPolicy
from call_scheduler.exceptions import QueueClearedError, RetriesExhaustedError
from call_scheduler.logging import bind_backend, bind_call

T = TypeVar("T")
P = ParamSpec("P")

Work = Callable[[], Awaitable[T] | T]


class CallState(IntEnum):
    """Lifecycle state of a scheduled call."""

    QUEUED = 1
    IN_FLIGHT = 2
    BACKING_OFF = 3
    SUCCEEDED = 4
    FAILED = 5
    CANCELLED = 6


@dataclass(eq=False)
class ScheduledCall(Generic[T]):
    """A unit of work plus the future that settles it."""

    work: Work[T]
    future: asyncio.Future[T]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: CallState = CallState.QUEUED
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    retry_count: int = 0
    attempts: int = 0
    last_error: BaseException | None = None
    # Reset epoch the current slot was reserved in
    epoch: int = 0
    runner: asyncio.Task[None] | None = None

    @property
    def short_id(self) -> str:
        """First eight hex digits of the call id, for log lines."""
        return self.id[:8]


class SchedulerStats(BaseModel):
    """Point-in-time view of a scheduler."""

    active_requests: int
    queued_requests: int
    backing_off_requests: int
    requests_last_minute: int
    max_requests_per_minute: int
    max_concurrent_requests: int
    total_submitted: int
    total_completed: int
    total_failed: int
    total_retries: int
    is_processing: bool

    @computed_field  # type: ignore[prop-decorator]
    @property
    def utilization_percentage(self) -> float:
        """Share of the window cap used (0.0 to 100.0)."""
        return (self.requests_last_minute / self.max_requests_per_minute) * 100


class RequestScheduler:
    """Rate-window and concurrency gate with throttling retries.

    Usage:
        scheduler = RequestScheduler(
            SchedulerConfig(max_requests_per_minute=120, max_concurrent_requests=4),
            is_retryable=status_code_classifier(429),
            name="dataverse",
        )

        # Wait for the result
        account = await scheduler.execute(lambda: client.get_account(account_id))

        # Or hold on to the future
        future = scheduler.submit(lambda: client.list_accounts())
        ...
        accounts = await future
    """

    def __init__(
        self,
        config: SchedulerConfig | None = None,
        *,
        is_retryable: RetryClassifier | None = None,
        name: str = "default",
    ) -> None:
        """Initialize the scheduler.

        Args:
            config: Scheduler configuration (uses settings if not provided)
            is_retryable: Predicate deciding whether a failure is throttling
                          (default: the error's ``retryable`` tag)
            name: Backend label used in log context
        """
        self._config = config or get_settings().scheduler
        self._is_retryable = is_retryable or is_throttling_error
        self._name = name
        self._logger = bind_backend(name)

        # Queues: first attempts, and retries under the FAIR policy
        self._queue: deque[ScheduledCall[Any]] = deque()
        self._retry_queue: deque[ScheduledCall[Any]] = deque()
        self._serve_retry_next = True

        # Usage ledger and concurrency
        self._ledger: deque[float] = deque()
        self._active_count = 0
        self._epoch = 0
        self._inflight: set[ScheduledCall[Any]] = set()
        self._backing_off: set[ScheduledCall[Any]] = set()

        # Processing loop
        self._processing = False
        self._loop_task: asyncio.Task[None] | None = None
        self._runners: set[asyncio.Task[None]] = set()  # Prevent task GC
        self._capacity_changed = asyncio.Event()

        # Statistics
        self._total_submitted = 0
        self._total_completed = 0
        self._total_failed = 0
        self._total_retries = 0

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------
    @property
    def name(self) -> str:
        """Backend name used in log context."""
        return self._name

    @property
    def config(self) -> SchedulerConfig:
        """Current configuration."""
        return self._config

    @property
    def queue_size(self) -> int:
        """Number of calls waiting for admission."""
        return len(self._queue) + len(self._retry_queue)

    @property
    def active_count(self) -> int:
        """Calls currently holding a concurrency slot."""
        return self._active_count

    @property
    def is_processing(self) -> bool:
        """Whether the processing loop is running."""
        return self._processing

    @property
    def is_idle(self) -> bool:
        """True if nothing is queued, executing or backing off."""
        return self.queue_size == 0 and not self._inflight

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------
    def submit(self, work: Work[T]) -> asyncio.Future[T]:
        """Queue a call and return the future that settles it.

        Cancelling the future cancels the call: a queued call leaves the
        queue, a backing-off call is never retried, and an executing call
        has its work cancelled and its slot released.

        Args:
            work: Zero-argument callable; may return a value or an awaitable

        Returns:
            Future resolved with the work's result or its failure
        """
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        call: ScheduledCall[T] = ScheduledCall(work=work, future=future, epoch=self._epoch)
        future.add_done_callback(lambda _f: self._on_future_done(call))

        self._queue.append(call)
        self._total_submitted += 1
        self._logger.debug("Queued call {} (queue_size={})", call.short_id, self.queue_size)

        self._ensure_processing()
        return future

    async def execute(self, work: Work[T], *, timeout: float | None = None) -> T:
        """Run ``work`` under the scheduler and return its result.

        Args:
            work: Zero-argument callable; may return a value or an awaitable
            timeout: Optional seconds to wait before cancelling the call

        Returns:
            Result of the work

        Raises:
            RetriesExhaustedError: Throttled on every allowed attempt
            QueueClearedError: Dropped by clear_queue() or reset() while queued
            TimeoutError: Timeout exceeded (the call is cancelled)
            Exception: Any non-retryable error raised by the work
        """
        future = self.submit(work)
        if timeout is not None:
            return await asyncio.wait_for(future, timeout)
        return await future

    # -------------------------------------------------------------------------
    # Processing Loop
    # -------------------------------------------------------------------------
    def _ensure_processing(self) -> None:
        """Start the processing loop unless one is already running."""
        if self._processing:
            return
        self._processing = True
        self._loop_task = asyncio.get_running_loop().create_task(self._process_queue())

    async def _process_queue(self) -> None:
        """Admit queued calls while there are any."""
        self._logger.debug("Processing loop started")
        try:
            while self.queue_size:
                changed = self._capacity_changed
                wait = self._time_until_admissible()
                if wait > 0:
                    await self._await_capacity(changed, wait)
                    continue

                call = self._next_call()
                if call.future.done():
                    # Cancelled before its done-callback ran
                    continue
                self._admit(call)
        finally:
            if self._loop_task is asyncio.current_task():
                self._processing = False
                self._loop_task = None
                self._logger.debug("Processing loop idle")

    def _time_until_admissible(self) -> float:
        """Seconds until a call could be admitted.

        0 means admit now; inf means wait for a slot to be released.
        """
        now = time.monotonic()
        self._prune_ledger(now)
        if self._active_count >= self._config.max_concurrent_requests:
            return math.inf
        if len(self._ledger) >= self._config.max_requests_per_minute:
            return max(0.0, self._ledger[0] + self._config.window_seconds - now)
        return 0.0

    async def _await_capacity(self, changed: asyncio.Event, wait: float) -> None:
        """Sleep until capacity changes or wait seconds pass."""
        timeout = None if math.isinf(wait) else wait
        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(changed.wait(), timeout)

    def _notify_capacity(self) -> None:
        """Wake everything waiting on the current capacity event."""
        self._capacity_changed.set()
        self._capacity_changed = asyncio.Event()

    def _prune_ledger(self, now: float) -> None:
        """Drop window entries older than the usage window."""
        cutoff = now - self._config.window_seconds
        while self._ledger and self._ledger[0] <= cutoff:
            self._ledger.popleft()

    def _next_call(self) -> ScheduledCall[Any]:
        """Pop the next call, alternating retries and fresh calls when both wait."""
        serve_retry = bool(self._retry_queue) and (not self._queue or self._serve_retry_next)
        if serve_retry:
            self._serve_retry_next = False
            return self._retry_queue.popleft()
        self._serve_retry_next = True
        return self._queue.popleft()

    def _admit(self, call: ScheduledCall[Any]) -> None:
        """Reserve a window entry and a slot, then start the call."""
        self._ledger.append(time.monotonic())
        self._active_count += 1
        call.state = CallState.IN_FLIGHT
        call.epoch = self._epoch
        self._inflight.add(call)

        runner = asyncio.get_running_loop().create_task(self._run(call))
        call.runner = runner
        self._runners.add(runner)
        runner.add_done_callback(lambda task: self._on_runner_done(call, task))

        self._logger.debug(
            "Admitted call {} (active={}, window={})",
            call.short_id,
            self._active_count,
            len(self._ledger),
        )

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------
    async def _run(self, call: ScheduledCall[Any]) -> None:
        holding_slot = True
        try:
            call.attempts += 1
            try:
                result = call.work()
                if inspect.isawaitable(result):
                    result = await result
            except Exception as error:
                call.last_error = error
                retryable = self._classify(call, error)

                if retryable and call.retry_count < self._config.retry_attempts:
                    if self._config.release_slot_during_backoff:
                        self._release_slot(call)
                        holding_slot = False
                    try:
                        await self._back_off(call, error)
                        self._requeue(call)
                    except Exception as internal:
                        self._logger.exception(
                            "Retry bookkeeping failed for call {}", call.short_id
                        )
                        self._settle_failure(call, internal)
                elif retryable:
                    exhausted = RetriesExhaustedError(error, call.attempts)
                    exhausted.__cause__ = error
                    self._settle_failure(call, exhausted)
                else:
                    self._settle_failure(call, error)
            else:
                self._settle_success(call, result)
        finally:
            if holding_slot:
                self._release_slot(call)
            if call.state is not CallState.QUEUED:
                self._inflight.discard(call)
                self._notify_capacity()

    def _on_runner_done(self, call: ScheduledCall[Any], runner: asyncio.Task[None]) -> None:
        """Release the slot of a runner cancelled before it started."""
        self._runners.discard(runner)
        # A runner cancelled before its first step never reached its finally
        if runner.cancelled() and call in self._inflight:
            self._release_slot(call)
            self._inflight.discard(call)
            self._notify_capacity()

    def _classify(self, call: ScheduledCall[Any], error: Exception) -> bool:
        """Apply the retry predicate; a raising predicate counts as terminal."""
        try:
            return bool(self._is_retryable(error))
        except Exception:
            self._logger.exception(
                "Retry classifier failed for call {}; treating as terminal", call.short_id
            )
            return False

    def _backoff_delay(self, call: ScheduledCall[Any], error: Exception) -> float:
        """Backoff in seconds for the call's next retry."""
        delay_ms = self._config.backoff_ms(call.retry_count)
        if self._config.honor_retry_after:
            hint = retry_after_seconds(error)
            if hint is not None:
                delay_ms = min(max(delay_ms, hint * 1000), self._config.max_backoff_ms)
        return delay_ms / 1000

    async def _back_off(self, call: ScheduledCall[Any], error: Exception) -> None:
        """Wait out the backoff for the call's next retry."""
        delay = self._backoff_delay(call, error)
        call.state = CallState.BACKING_OFF
        self._backing_off.add(call)
        self._total_retries += 1

        bind_call(self._name, call.short_id).warning(
            "Throttled, retrying in {:.0f}ms (attempt {}/{}): {}",
            delay * 1000,
            call.retry_count + 1,
            self._config.retry_attempts,
            error,
        )

        try:
            await asyncio.sleep(delay)
        finally:
            self._backing_off.discard(call)
        call.retry_count += 1

    def _requeue(self, call: ScheduledCall[Any]) -> None:
        """Put a retried call back according to the retry policy."""
        if call.future.done():
            return

        call.state = CallState.QUEUED
        policy = self._config.retry_policy
        if policy is RetryPolicy.HEAD:
            self._queue.appendleft(call)
        elif policy is RetryPolicy.TAIL:
            self._queue.append(call)
        else:
            self._retry_queue.append(call)

        self._inflight.discard(call)
        self._notify_capacity()
        self._ensure_processing()

    def _release_slot(self, call: ScheduledCall[Any]) -> None:
        # Slots reserved before a reset() were already zeroed out
        if call.epoch == self._epoch and self._active_count > 0:
            self._active_count -= 1
        self._notify_capacity()

    # -------------------------------------------------------------------------
    # Settlement
    # -------------------------------------------------------------------------
    def _settle_success(self, call: ScheduledCall[Any], result: Any) -> None:
        """Resolve the call's future with result unless already settled."""
        if call.future.done():
            return
        call.state = CallState.SUCCEEDED
        call.future.set_result(result)
        self._total_completed += 1
        self._logger.debug("Call {} completed (attempts={})", call.short_id, call.attempts)

    def _settle_failure(self, call: ScheduledCall[Any], error: BaseException) -> None:
        """Fail the call's future with error unless already settled."""
        if call.future.done():
            return
        call.state = CallState.FAILED
        call.future.set_exception(error)
        self._total_failed += 1
        bind_call(self._name, call.short_id).error("Failed permanently: {}", error)

    def _on_future_done(self, call: ScheduledCall[Any]) -> None:
        """Drop a cancelled call from the queues or cancel its runner."""
        if not call.future.cancelled():
            return

        previous = call.state
        call.state = CallState.CANCELLED
        if previous is CallState.QUEUED:
            for queue in (self._queue, self._retry_queue):
                with suppress(ValueError):
                    queue.remove(call)
        elif call.runner is not None and not call.runner.done():
            call.runner.cancel()

        self._logger.debug("Call {} cancelled while {}", call.short_id, previous.name)

    # -------------------------------------------------------------------------
    # Capacity, Reset and Options
    # -------------------------------------------------------------------------
    async def wait_for_capacity(self) -> None:
        """Return once a call could be admitted immediately."""
        while True:
            changed = self._capacity_changed
            wait = self._time_until_admissible()
            if wait <= 0:
                return
            await self._await_capacity(changed, wait)

    def clear_queue(self) -> int:
        """Fail every queued call with QueueClearedError.

        Executing and backing-off calls are left alone.

        Returns:
            Number of calls failed
        """
        pending = [*self._queue, *self._retry_queue]
        self._queue.clear()
        self._retry_queue.clear()

        cleared = 0
        for call in pending:
            if call.future.done():
                continue
            call.state = CallState.FAILED
            call.future.set_exception(QueueClearedError())
            self._total_failed += 1
            cleared += 1

        if cleared:
            self._logger.info("Cleared {} queued calls", cleared)
        return cleared

    def reset(self) -> None:
        """Clear the queue and ledger, zero the active count, stop the loop.

        Executions already running still settle their callers but no longer
        count against the new state.
        """
        self.clear_queue()
        self._ledger.clear()
        self._active_count = 0
        self._epoch += 1

        loop_task, self._loop_task = self._loop_task, None
        self._processing = False
        if loop_task is not None:
            loop_task.cancel()

        self._notify_capacity()
        self._logger.info("Scheduler reset")

    def update_options(self, **changes: Any) -> None:
        """Replace configuration fields; applies from the next admission check.

        Raises:
            pydantic.ValidationError: Unknown field or invalid value
        """
        merged = {**self._config.model_dump(), **changes}
        self._config = SchedulerConfig.model_validate(merged)
        self._logger.info("Scheduler options updated: {}", changes)
        self._notify_capacity()

    async def shutdown(self, wait: bool = True, timeout: float = 30.0) -> None:
        """Stop the scheduler.

        Args:
            wait: If True, let queued and running calls finish first
            timeout: Maximum seconds to wait for them
        """
        if wait and not self.is_idle:
            self._logger.info("Waiting for {} calls...", self.queue_size + len(self._inflight))
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._wait_idle(), timeout)

        for call in list(self._inflight):
            call.future.cancel()
        self.reset()

        self._logger.info(
            "Scheduler stopped (completed={}, failed={})",
            self._total_completed,
            self._total_failed,
        )

    async def _wait_idle(self) -> None:
        """Wait until no call is queued, running or backing off."""
        while not self.is_idle:
            await self._capacity_changed.wait()

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------
    def _requests_in_window(self) -> int:
        """Executions admitted within the current usage window."""
        cutoff = time.monotonic() - self._config.window_seconds
        return sum(1 for ts in self._ledger if ts > cutoff)

    def get_stats(self) -> SchedulerStats:
        """Snapshot of the scheduler; does not modify the ledger."""
        return SchedulerStats(
            active_requests=self._active_count,
            queued_requests=self.queue_size,
            backing_off_requests=len(self._backing_off),
            requests_last_minute=self._requests_in_window(),
            max_requests_per_minute=self._config.max_requests_per_minute,
            max_concurrent_requests=self._config.max_concurrent_requests,
            total_submitted=self._total_submitted,
            total_completed=self._total_completed,
            total_failed=self._total_failed,
            total_retries=self._total_retries,
            is_processing=self._processing,
        )


def scheduled(
    scheduler: RequestScheduler,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator routing every call of an async function through ``scheduler``.

    Usage:
        @scheduled(dataverse_scheduler)
        async def get_account(account_id: str) -> dict[str, Any]:
            ...
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return await scheduler.execute(lambda: func(*args, **kwargs))

        return wrapper

    return decorator

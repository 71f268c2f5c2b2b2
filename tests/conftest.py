"""Pytest configuration and shared fixtures.

Usage Guide:
- For scheduler tests: use the make_scheduler factory, which defaults to
  millisecond backoffs so retry paths run quickly
- For anything reading Settings: the settings cache is cleared around each test
"""

from collections.abc import Callable, Generator
from typing import Any

import pytest

from call_scheduler.config import SchedulerConfig, get_settings
from call_scheduler.pacing import RequestScheduler

# -----------------------------------------------------------------------------
# Fast defaults
#
# Generous window and concurrency, short backoffs. Tests override only the
# knobs they exercise.
# -----------------------------------------------------------------------------
FAST_SCHEDULER_DEFAULTS: dict[str, Any] = {
    "max_requests_per_minute": 1000,
    "max_concurrent_requests": 5,
    "retry_attempts": 3,
    "initial_backoff_ms": 10,
    "max_backoff_ms": 100,
    "backoff_multiplier": 2.0,
}


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Generator[None, None, None]:
    """Make every test read settings fresh."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def make_config() -> Callable[..., SchedulerConfig]:
    """Factory for SchedulerConfig with fast test defaults."""

    def _make(**overrides: Any) -> SchedulerConfig:
        return SchedulerConfig(**{**FAST_SCHEDULER_DEFAULTS, **overrides})

    return _make


@pytest.fixture
def make_scheduler(
    make_config: Callable[..., SchedulerConfig],
) -> Callable[..., RequestScheduler]:
    """Factory for RequestScheduler with fast test defaults."""

    def _make(*, is_retryable: Any = None, **overrides: Any) -> RequestScheduler:
        return RequestScheduler(make_config(**overrides), is_retryable=is_retryable, name="test")

    return _make

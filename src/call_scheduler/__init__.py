"""Admission and retry scheduling for calls to rate-limited backends."""

from .classifiers import (
    RetryClassifier,
    error_from_response,
    is_throttling_error,
    raise_for_backend_status,
    retry_after_seconds,
    status_code_classifier,
)
from .config import SchedulerConfig, Settings, get_settings
from .enums import RetryPolicy
from .exceptions import (
    BackendCallError,
    BatchAggregateError,
    QueueClearedError,
    RetriesExhaustedError,
    SchedulerError,
    TerminalError,
    ThrottlingError,
)
from .pacing import (
    BatchResult,
    BatchRunner,
    ProgressTracker,
    RequestScheduler,
    SchedulerStats,
    run_batch,
    scheduled,
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Scheduling
    "BatchResult",
    "BatchRunner",
    "ProgressTracker",
    "RequestScheduler",
    "SchedulerStats",
    "run_batch",
    "scheduled",
    # Configuration
    "RetryPolicy",
    "SchedulerConfig",
    "Settings",
    "get_settings",
    # Classification
    "RetryClassifier",
    "error_from_response",
    "is_throttling_error",
    "raise_for_backend_status",
    "retry_after_seconds",
    "status_code_classifier",
    # Exceptions
    "BackendCallError",
    "BatchAggregateError",
    "QueueClearedError",
    "RetriesExhaustedError",
    "SchedulerError",
    "TerminalError",
    "ThrottlingError",
]

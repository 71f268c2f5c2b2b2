"""Admission, retry and batch execution for rate-limited backends.

Components:
- RequestScheduler: Sliding-window and concurrency gate with throttling retries
- BatchRunner: Sequential submission of independent calls
- ProgressTracker: Observable progress reporting
"""

from .batch import BatchResult, BatchRunner, batch_summary, run_batch
from .progress import ProgressCallback, ProgressState, ProgressTracker, ProgressUpdate
from .scheduler import (
    CallState,
    RequestScheduler,
    ScheduledCall,
    SchedulerStats,
    Work,
    scheduled,
)

__all__ = [
    # Batch execution
    "BatchResult",
    "BatchRunner",
    "batch_summary",
    "run_batch",
    # Progress tracking
    "ProgressCallback",
    "ProgressState",
    "ProgressTracker",
    "ProgressUpdate",
    # Scheduling
    "CallState",
    "RequestScheduler",
    "ScheduledCall",
    "SchedulerStats",
    "Work",
    "scheduled",
]

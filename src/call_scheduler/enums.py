"""Enums shared by the scheduler configuration and the CLI."""

from enum import Enum


class RetryPolicy(str, Enum):
    """Where a throttled call is placed when it is requeued for retry."""

    HEAD = "head"
    """Front of the queue, ahead of calls that have not started yet."""

    TAIL = "tail"
    """Back of the queue, behind everything already waiting."""

    FAIR = "fair"
    """Separate retry queue, served alternately with first attempts."""


class OutputFormat(str, Enum):
    """Output format for CLI commands."""

    TEXT = "text"
    """Human-readable text output."""

    JSON = "json"
    """Machine-readable JSON output."""

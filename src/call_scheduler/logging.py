"""Loguru configuration for the scheduler and its CLI.

Scheduler code logs through loggers bound with a ``name`` (and, where it
applies, a ``backend`` and ``call``). Standard library loggers, httpx and
httpcore among them, are routed into the same sinks by InterceptHandler.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from types import FrameType
from typing import TYPE_CHECKING, Any, Literal

from loguru import logger

if TYPE_CHECKING:
    from contextlib import AbstractContextManager

    from loguru import Logger, Record

LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

_configured = False

# Stdlib loggers that stay at WARNING unless we are debugging ourselves
_TRANSPORT_LOGGERS = ("httpx", "httpcore")
_ALWAYS_QUIET_LOGGERS = ("asyncio",)


class InterceptHandler(logging.Handler):
    """Forward stdlib log records to loguru, keeping the original caller."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame: FrameType | None = logging.currentframe()
        depth = 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _console_format(record: Record) -> str:
    # Intercepted stdlib records carry no bound name; fall back to the module
    source = "{extra[name]}" if "name" in record["extra"] else "{name}"
    return (
        "<dim>{time:HH:mm:ss}</dim> | "
        "<level>{level: <8}</level> | "
        f"<cyan>{source}</cyan> - "
        "<level>{message}</level>\n{exception}"
    )


def _file_format(record: Record) -> str:
    source = "{extra[name]}" if "name" in record["extra"] else "{name}"
    return (
        "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
        f"{source}:{{function}}:{{line}} | {{extra}} | {{message}}\n{{exception}}"
    )


def _resolve_level(level: LogLevel, verbose: bool, quiet: bool) -> LogLevel:
    if verbose:
        return "DEBUG"
    if quiet:
        return "WARNING"
    return level


def setup_logging(
    level: LogLevel = "INFO",
    *,
    verbose: bool = False,
    quiet: bool = False,
    log_file: Path | None = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
    serialize: bool = False,
) -> Logger:
    """Install the console sink (and optionally a rotating file sink).

    Args:
        level: Level from settings
        verbose: Force DEBUG; wins over ``quiet``
        quiet: Force WARNING
        log_file: Path of a file sink that always records DEBUG and above
        rotation: Loguru rotation rule for the file sink
        retention: Loguru retention rule for the file sink
        serialize: Write the file sink as JSON lines

    Returns:
        The configured loguru logger
    """
    global _configured

    effective_level = _resolve_level(level, verbose, quiet)

    logger.remove()
    logger.add(
        sys.stderr,
        level=effective_level,
        format=_console_format,
        colorize=True,
        backtrace=True,
        diagnose=True,
    )

    if log_file:
        logger.add(
            log_file,
            level="DEBUG",
            format=_file_format,
            rotation=rotation,
            retention=retention,
            compression="gz",
            serialize=serialize,
        )

    _route_stdlib_logging(effective_level)

    _configured = True
    return logger


def _route_stdlib_logging(level: LogLevel) -> None:
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    transport_level = logging.DEBUG if level in ("TRACE", "DEBUG") else logging.WARNING
    for name in _TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(transport_level)
    for name in _ALWAYS_QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> Logger:
    """Logger bound to a module name; use ``{}`` placeholders in messages."""
    return logger.bind(name=name)


def bind_backend(backend: str) -> Logger:
    """Logger for a scheduler serving ``backend``."""
    return logger.bind(name="scheduler", backend=backend)


def bind_call(backend: str, call_id: str) -> Logger:
    """Logger for one scheduled call on ``backend``."""
    return logger.bind(name="scheduler", backend=backend, call=call_id)


class LogContext:
    """Attach extra context to every record logged inside a ``with`` block.

    Context propagates to asyncio tasks created inside the block, so runner
    tasks started by a scheduler inherit it.

    Usage:
        with LogContext(backend="crm", batch="nightly"):
            await runner.execute(works)
    """

    def __init__(self, **context: Any) -> None:
        self._context = context
        self._active: AbstractContextManager[None] | None = None

    def __enter__(self) -> Logger:
        self._active = logger.contextualize(**self._context)
        self._active.__enter__()
        return logger

    def __exit__(self, *exc_info: Any) -> None:
        if self._active is not None:
            self._active.__exit__(*exc_info)
            self._active = None


def is_configured() -> bool:
    return _configured


def reset_logging() -> None:
    """Remove every sink and forget the configuration (used by tests)."""
    global _configured
    logger.remove()
    _configured = False

"""Tests for loguru setup and the scheduler's context-bound loggers."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest
from loguru import logger

from call_scheduler.logging import (
    LogContext,
    _console_format,
    _resolve_level,
    bind_backend,
    bind_call,
    get_logger,
    is_configured,
    reset_logging,
    setup_logging,
)

if TYPE_CHECKING:
    from collections.abc import Generator


@pytest.fixture(autouse=True)
def _fresh_loguru() -> Generator[None, None, None]:
    reset_logging()
    yield
    reset_logging()


def _collect(records: list[str], fmt: str = "{extra} | {message}") -> int:
    """Add an in-memory DEBUG sink; returns its handler id."""
    return logger.add(lambda msg: records.append(str(msg)), level="DEBUG", format=fmt)


class TestLevelResolution:
    """verbose/quiet flags against the configured level."""

    @pytest.mark.parametrize(
        ("level", "verbose", "quiet", "expected"),
        [
            ("INFO", False, False, "INFO"),
            ("ERROR", False, False, "ERROR"),
            ("WARNING", True, False, "DEBUG"),
            ("DEBUG", False, True, "WARNING"),
            ("INFO", True, True, "DEBUG"),
        ],
    )
    def test_resolve(self, level: Any, verbose: bool, quiet: bool, expected: str) -> None:
        """verbose wins, then quiet, then the configured level."""
        assert _resolve_level(level, verbose, quiet) == expected

    def test_quiet_console_hides_info(self, capsys: pytest.CaptureFixture[str]) -> None:
        """A quiet console drops INFO but keeps warnings."""
        setup_logging(quiet=True)

        get_logger("cli").info("routine detail")
        get_logger("cli").warning("backend throttling")

        err = capsys.readouterr().err
        assert "routine detail" not in err
        assert "backend throttling" in err


class TestSetupLogging:
    """Sinks installed by setup_logging."""

    def test_marks_configured(self) -> None:
        """setup_logging flips is_configured and reset_logging flips it back."""
        assert not is_configured()
        setup_logging()
        assert is_configured()

        reset_logging()
        assert not is_configured()

    def test_file_sink_records_debug_with_context(self, tmp_path: Path) -> None:
        """The file sink keeps DEBUG records and their bound context."""
        log_file = tmp_path / "calls.log"
        setup_logging(level="WARNING", log_file=log_file)

        bind_backend("crm").debug("Admitted call")
        logger.complete()

        content = log_file.read_text()
        assert "Admitted call" in content
        assert "'backend': 'crm'" in content

    def test_console_format_falls_back_to_module(self) -> None:
        """Records without a bound name show the emitting module."""
        bound = _console_format({"extra": {"name": "scheduler"}})  # type: ignore[arg-type]
        assert "{extra[name]}" in bound
        fallback = _console_format({"extra": {}})  # type: ignore[arg-type]
        assert "{extra[name]}" not in fallback
        assert "{name}" in fallback


class TestStdlibRouting:
    """Standard library loggers flow into loguru."""

    def test_stdlib_records_reach_loguru(self) -> None:
        """A stdlib warning arrives at loguru sinks."""
        setup_logging(level="DEBUG")
        records: list[str] = []
        handler_id = _collect(records, fmt="{message}")
        try:
            logging.getLogger("some.library").warning("pool exhausted")
        finally:
            logger.remove(handler_id)

        assert any("pool exhausted" in r for r in records)

    def test_transport_loggers_quiet_by_default(self) -> None:
        """httpx and httpcore stay at WARNING outside debugging."""
        setup_logging(level="INFO")

        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING

    def test_transport_loggers_follow_verbose(self) -> None:
        """Verbose mode opens httpx up but asyncio stays quiet."""
        setup_logging(verbose=True)

        assert logging.getLogger("httpx").level == logging.DEBUG
        assert logging.getLogger("asyncio").level == logging.WARNING


class TestBoundLoggers:
    """Context carried by the binding helpers."""

    def test_get_logger_name(self) -> None:
        records: list[str] = []
        handler_id = _collect(records)
        try:
            get_logger("call_scheduler.cli").info("hello")
        finally:
            logger.remove(handler_id)

        assert "'name': 'call_scheduler.cli'" in records[0]

    def test_backend_and_call(self) -> None:
        """bind_call carries the backend and the call id."""
        records: list[str] = []
        handler_id = _collect(records)
        try:
            bind_backend("dataverse").info("queue drained")
            bind_call("dataverse", "1a2b3c4d").warning("throttled")
        finally:
            logger.remove(handler_id)

        backend_record, call_record = records
        assert "'name': 'scheduler'" in backend_record
        assert "'backend': 'dataverse'" in backend_record
        assert "'call'" not in backend_record
        assert "'call': '1a2b3c4d'" in call_record

    def test_log_context_scoped_to_block(self) -> None:
        """LogContext applies only inside its with-block."""
        records: list[str] = []
        handler_id = _collect(records)
        try:
            with LogContext(batch="nightly", seed=7):
                logger.info("inside")
            logger.info("outside")
        finally:
            logger.remove(handler_id)

        inside, outside = records
        assert "'batch': 'nightly'" in inside
        assert "'seed': 7" in inside
        assert "nightly" not in outside

    @pytest.mark.asyncio
    async def test_log_context_reaches_tasks(self) -> None:
        """Tasks created inside a LogContext inherit its values."""
        records: list[str] = []
        handler_id = _collect(records)

        async def work() -> None:
            logger.info("from task")

        try:
            with LogContext(backend="crm"):
                task = asyncio.create_task(work())
            await task
        finally:
            logger.remove(handler_id)

        assert "'backend': 'crm'" in records[0]

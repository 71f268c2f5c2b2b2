"""Pieces shared by the callsched commands."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Coroutine
from typing import Annotated, Any, TypeVar

import typer
from rich.console import Console
from rich.markup import escape

from call_scheduler.enums import OutputFormat, RetryPolicy

console = Console()

T = TypeVar("T")


def run_async_command(
    coro: Coroutine[object, object, T],
    *,
    error_prefix: str = "Error",
) -> T:
    """Run ``coro`` to completion from a synchronous typer command.

    Any exception other than typer.Exit is printed as a single red line and
    turned into exit code 1.
    """
    try:
        return asyncio.run(coro)
    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"[red]{error_prefix}:[/red] {escape(str(e))}")
        raise typer.Exit(1) from None


def print_json(data: Any) -> None:
    """Print ``data`` as indented JSON."""
    console.print_json(json.dumps(data))


OutputFormatOption = Annotated[
    OutputFormat,
    typer.Option("--format", "-f", help="Output format: text or json"),
]

RetryPolicyOption = Annotated[
    RetryPolicy | None,
    typer.Option("--policy", help="Where retried calls re-enter the queue (default: settings)"),
]

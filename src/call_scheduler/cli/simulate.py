"""Simulation command: drive a synthetic throttling backend through a scheduler."""

from __future__ import annotations

import asyncio
import random
from typing import Any

import typer
from pydantic import ValidationError
from rich.markup import escape
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn
from rich.table import Table

from call_scheduler.cli.common import (
    OutputFormatOption,
    RetryPolicyOption,
    console,
    print_json,
    run_async_command,
)
from call_scheduler.config import SchedulerConfig, get_settings
from call_scheduler.enums import OutputFormat
from call_scheduler.exceptions import TerminalError, ThrottlingError
from call_scheduler.logging import LogContext
from call_scheduler.pacing import (
    BatchRunner,
    ProgressTracker,
    ProgressUpdate,
    RequestScheduler,
    batch_summary,
)


class SimulatedBackend:
    """Backend stand-in that throttles or fails a share of its calls.

    Each call sleeps for ``latency`` seconds, then draws a number: below
    ``throttle_rate`` it raises ThrottlingError (429), below
    ``throttle_rate + failure_rate`` it raises TerminalError (500), and
    otherwise it returns its argument.
    """

    def __init__(
        self,
        throttle_rate: float = 0.2,
        failure_rate: float = 0.0,
        latency: float = 0.05,
        rng: random.Random | None = None,
    ) -> None:
        self.throttle_rate = throttle_rate
        self.failure_rate = failure_rate
        self.latency = latency
        self.calls = 0
        self._rng = rng or random.Random()

    async def call(self, item: int) -> int:
        self.calls += 1
        if self.latency:
            await asyncio.sleep(self.latency)
        roll = self._rng.random()
        if roll < self.throttle_rate:
            raise ThrottlingError(f"Simulated throttling on item {item}", status_code=429)
        if roll < self.throttle_rate + self.failure_rate:
            raise TerminalError(f"Simulated failure on item {item}", status_code=500)
        return item


def _build_config(**overrides: Any) -> SchedulerConfig:
    base = get_settings().scheduler.model_dump()
    base.update({key: value for key, value in overrides.items() if value is not None})
    return SchedulerConfig.model_validate(base)


def simulate(
    calls: int = typer.Option(20, "--calls", "-n", min=1, help="Number of calls in the batch"),
    throttle_rate: float = typer.Option(
        0.2, "--throttle-rate", min=0.0, max=1.0, help="Share of calls answered with 429"
    ),
    failure_rate: float = typer.Option(
        0.0, "--failure-rate", min=0.0, max=1.0, help="Share of calls failing terminally"
    ),
    latency_ms: int = typer.Option(50, "--latency-ms", min=0, help="Simulated call latency"),
    rpm: int | None = typer.Option(None, "--rpm", help="Max requests per minute"),
    concurrency: int | None = typer.Option(None, "--concurrency", help="Max concurrent requests"),
    retries: int | None = typer.Option(None, "--retries", help="Retry attempts per call"),
    initial_backoff_ms: int | None = typer.Option(
        None, "--initial-backoff-ms", help="Delay before the first retry"
    ),
    max_backoff_ms: int | None = typer.Option(None, "--max-backoff-ms", help="Retry delay cap"),
    policy: RetryPolicyOption = None,
    seed: int | None = typer.Option(None, "--seed", help="Random seed for repeatable runs"),
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """Run a batch against a simulated throttling backend.

    Examples:
        callsched simulate
        callsched simulate -n 100 --throttle-rate 0.4 --rpm 30 --concurrency 3
        callsched simulate --seed 7 --format json
    """
    try:
        config = _build_config(
            max_requests_per_minute=rpm,
            max_concurrent_requests=concurrency,
            retry_attempts=retries,
            initial_backoff_ms=initial_backoff_ms,
            max_backoff_ms=max_backoff_ms,
            retry_policy=policy,
        )
    except ValidationError as e:
        console.print(f"[red]Invalid scheduler options:[/red] {escape(str(e))}")
        raise typer.Exit(1) from None
    backend = SimulatedBackend(
        throttle_rate=throttle_rate,
        failure_rate=failure_rate,
        latency=latency_ms / 1000,
        rng=random.Random(seed),
    )

    async def _simulate(on_update: Any = None) -> dict[str, Any]:
        scheduler = RequestScheduler(config, name="simulated")
        tracker = ProgressTracker(total=calls, name="simulation")
        if on_update:
            tracker.on_progress(on_update)

        runner = BatchRunner(scheduler, progress=tracker)
        works = [lambda item=item: backend.call(item) for item in range(calls)]
        with LogContext(backend=scheduler.name, seed=seed):
            try:
                result = await runner.execute(works)
                stats = scheduler.get_stats()
            finally:
                await scheduler.shutdown(wait=False)

        return {
            "batch": batch_summary(result),
            "backend_calls": backend.calls,
            "stats": stats.model_dump(),
        }

    if output_format == OutputFormat.JSON:
        summary = run_async_command(_simulate(), error_prefix="Simulation failed")
        print_json(summary)
        return

    console.print(
        f"[dim]Simulating {calls} calls "
        f"(throttle={throttle_rate:.0%}, failure={failure_rate:.0%}, "
        f"rpm={config.max_requests_per_minute}, "
        f"concurrency={config.max_concurrent_requests}, "
        f"policy={config.retry_policy.value})[/dim]"
    )

    with Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("calls", total=calls)

        def _advance(update: ProgressUpdate) -> None:
            progress.update(task, completed=update.processed)

        summary = run_async_command(_simulate(_advance), error_prefix="Simulation failed")

    _print_summary(summary)


def _print_summary(summary: dict[str, Any]) -> None:
    batch = summary["batch"]
    stats = summary["stats"]

    console.print(
        f"[green]{batch['succeeded']} succeeded[/green], "
        f"[red]{batch['failed']} failed[/red] "
        f"after {summary['backend_calls']} backend calls"
    )

    table = Table(title="Scheduler stats")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    for key in (
        "requests_last_minute",
        "utilization_percentage",
        "total_retries",
        "total_completed",
        "total_failed",
    ):
        value = stats[key]
        table.add_row(key, f"{value:.1f}" if isinstance(value, float) else str(value))
    console.print(table)

    for failure in batch["failures"]:
        console.print(f"  [red]#{failure['index']}[/red] {failure['error']}: {failure['message']}")

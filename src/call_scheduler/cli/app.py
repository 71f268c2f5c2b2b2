"""Main CLI application for the call scheduler."""

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from call_scheduler import __version__
from call_scheduler.cli import simulate as simulate_cmd
from call_scheduler.cli.common import OutputFormatOption, console, print_json
from call_scheduler.config import get_settings
from call_scheduler.enums import OutputFormat
from call_scheduler.logging import setup_logging

app = typer.Typer(
    name="callsched",
    help="Admission and retry scheduler for rate-limited backend calls.",
    add_completion=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"callsched version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable debug logging.",
        ),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option(
            "--quiet",
            "-q",
            help="Suppress non-error output (WARNING level).",
        ),
    ] = False,
) -> None:
    """Call scheduler - inspect settings and simulate throttled backends."""
    settings = get_settings()
    log_config = settings.logging

    setup_logging(
        level=settings.log_level,
        verbose=verbose,
        quiet=quiet,
        log_file=Path(log_config.log_file) if log_config.log_file else None,
        rotation=log_config.rotation,
        retention=log_config.retention,
        serialize=log_config.serialize,
    )


@app.command("config")
def show_config(output_format: OutputFormatOption = OutputFormat.TEXT) -> None:
    """Show the effective scheduler settings.

    Examples:
        callsched config
        SCHEDULER__MAX_CONCURRENT_REQUESTS=4 callsched config --format json
    """
    scheduler_config = get_settings().scheduler

    if output_format == OutputFormat.JSON:
        print_json(scheduler_config.model_dump(mode="json"))
        return

    table = Table(title="Scheduler settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in scheduler_config.model_dump(mode="json").items():
        table.add_row(key, str(value))
    console.print(table)


app.command("simulate")(simulate_cmd.simulate)


if __name__ == "__main__":
    app()

"""
CLI: ``backplane sweeper`` — reclaim stuck agent tasks and settle jobs.
"""

from __future__ import annotations

import signal

import typer

from backplane.cli.utils import DatabaseOption, JsonOption, cli_context, console, make_context, output
from backplane.core.logging import configure_logging
from backplane.core.scheduling import create_sweeper

app = typer.Typer(no_args_is_help=True)


@app.command("start")
def start(
    database: str | None = DatabaseOption,
    interval: float | None = typer.Option(None, "--interval", "-i", help="Seconds between sweeps"),
) -> None:
    """Sweep periodically until interrupted."""
    ctx = make_context(database)
    settings = ctx.settings
    configure_logging(settings.log_level, settings.log_json, service="backplane-sweeper")

    sweeper = create_sweeper(
        ctx.dispatcher,
        ctx.queue,
        interval_seconds=interval or settings.sweeper_interval_seconds,
        assigned_grace_seconds=settings.assigned_grace_seconds,
    )
    signal.signal(signal.SIGTERM, lambda *_: sweeper.stop())
    console.print(f"[bold green]Starting sweeper[/bold green] (interval={sweeper.interval}s)")
    sweeper.start()
    try:
        sweeper.backend.wait()
    except KeyboardInterrupt:
        console.print("\n[yellow]Sweeper stopped by user[/yellow]")
    finally:
        sweeper.stop()
        ctx.close()


@app.command("run")
def run(database: str | None = DatabaseOption, json_out: bool = JsonOption) -> None:
    """Run one sweep and print what changed."""
    with cli_context(database) as ctx:
        sweeper = create_sweeper(
            ctx.dispatcher,
            ctx.queue,
            assigned_grace_seconds=ctx.settings.assigned_grace_seconds,
        )
        result = sweeper.tick()
    output(result, as_json=json_out, title="Sweep")

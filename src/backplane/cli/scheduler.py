"""
CLI: ``backplane scheduler`` — run the scheduler loop.
"""

from __future__ import annotations

import signal

import typer

from backplane.cli.utils import DatabaseOption, JsonOption, cli_context, console, make_context, output
from backplane.core.logging import configure_logging
from backplane.core.scheduling import create_scheduler

app = typer.Typer(no_args_is_help=True)


@app.command("start")
def start(
    database: str | None = DatabaseOption,
    interval: float | None = typer.Option(None, "--interval", "-i", help="Seconds between ticks"),
) -> None:
    """Tick the scheduler loop until interrupted.

    Several instances may run against the same database; each due
    instant fires once.
    """
    ctx = make_context(database)
    settings = ctx.settings
    configure_logging(settings.log_level, settings.log_json, service="backplane-scheduler")

    scheduler = create_scheduler(
        ctx.conn,
        ctx.queue,
        interval_seconds=interval or settings.scheduler_interval_seconds,
        queue_name=settings.default_queue,
    )
    signal.signal(signal.SIGTERM, lambda *_: scheduler.stop())
    console.print(f"[bold green]Starting scheduler[/bold green] (interval={scheduler.interval}s)")
    scheduler.start()
    try:
        scheduler.backend.wait()
    except KeyboardInterrupt:
        console.print("\n[yellow]Scheduler stopped by user[/yellow]")
    finally:
        scheduler.stop()
        ctx.close()


@app.command("tick")
def tick(database: str | None = DatabaseOption, json_out: bool = JsonOption) -> None:
    """Run one evaluation pass (e.g. from system cron) and print what it did."""
    with cli_context(database) as ctx:
        scheduler = create_scheduler(ctx.conn, ctx.queue, queue_name=ctx.settings.default_queue)
        result = scheduler.tick()
    output(result, as_json=json_out, title="Scheduler Tick")

"""
CLI: ``backplane worker`` — run the job worker.
"""

from __future__ import annotations

import typer

from backplane.cli.utils import DatabaseOption, console, handle_errors, make_context
from backplane.core.logging import configure_logging

app = typer.Typer(no_args_is_help=True)


@app.command("start")
def start(
    database: str | None = DatabaseOption,
    queue: str | None = typer.Option(None, "--queue", "-q", help="Queue to poll (default: settings)"),
    poll_interval: float | None = typer.Option(None, "--poll-interval", help="Seconds between poll cycles"),
    batch_size: int | None = typer.Option(None, "--batch-size", help="Max jobs to run per poll"),
    worker_id: str | None = typer.Option(None, "--id", help="Custom worker identifier"),
) -> None:
    """Poll a queue and run claimed jobs with the registered handlers.

    ``backup_run`` jobs are turned into agent tasks; the sweeper settles
    them once the agents report back.

    Example::

        backplane worker start --queue default --poll-interval 2
    """
    from backplane.execution.handlers import register_builtin_handlers
    from backplane.execution.registry import HandlerRegistry
    from backplane.execution.worker import JobWorker

    ctx = make_context(database)
    settings = ctx.settings
    configure_logging(settings.log_level, settings.log_json, service="backplane-worker")

    registry = register_builtin_handlers(HandlerRegistry(), ctx.dispatcher)
    worker = JobWorker(
        ctx.queue,
        registry,
        queue_name=queue or settings.default_queue,
        poll_interval=poll_interval or settings.worker_poll_interval,
        batch_size=batch_size or settings.worker_batch_size,
        worker_id=worker_id,
    )
    console.print(
        f"[bold green]Starting worker[/bold green] {worker.worker_id} "
        f"(queue={worker.queue_name}, poll={worker.poll_interval}s, batch={worker.batch_size})"
    )
    try:
        with handle_errors():
            worker.start()
    except KeyboardInterrupt:
        console.print("\n[yellow]Worker stopped by user[/yellow]")
    finally:
        ctx.close()

"""
CLI: ``backplane jobs`` — inspect and control queued jobs.
"""

from __future__ import annotations

import typer

from backplane.cli.utils import (
    DatabaseOption,
    JsonOption,
    cli_context,
    console,
    output,
    parse_json_option,
)

app = typer.Typer(no_args_is_help=True)

_LIST_COLUMNS = ["id", "type", "queue", "status", "progress", "attempts", "max_attempts", "created_at"]


@app.command("list")
def list_jobs(
    status: str | None = typer.Option(None, "--status", "-s", help="Filter by status"),
    queue: str | None = typer.Option(None, "--queue", "-q", help="Filter by queue"),
    limit: int = typer.Option(50, "--limit", "-n"),
    offset: int = typer.Option(0, "--offset"),
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """List jobs, newest first."""
    with cli_context(database) as ctx:
        jobs = ctx.queue.list_jobs(status=status, queue=queue, limit=limit, offset=offset)
        total = ctx.queue.count_jobs(status=status, queue=queue)
    output(jobs, as_json=json_out, title="Jobs", columns=_LIST_COLUMNS)
    if not json_out and jobs:
        console.print(f"\n[dim]Showing {len(jobs)} of {total} (offset {offset})[/dim]")


@app.command("show")
def show(
    job_id: str = typer.Argument(..., help="Job id"),
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Show one job, including its log."""
    with cli_context(database) as ctx:
        job = ctx.queue.get_job(job_id)
    output(job, as_json=json_out, title=f"Job {job_id}")


@app.command("push")
def push(
    job_type: str = typer.Argument(..., help="Handler name, e.g. backup_run"),
    payload: str | None = typer.Option(None, "--payload", "-p", help="JSON object payload"),
    queue: str | None = typer.Option(None, "--queue", "-q"),
    max_attempts: int = typer.Option(3, "--max-attempts", min=1),
    database: str | None = DatabaseOption,
) -> None:
    """Push a job onto a queue.

    Example::

        backplane jobs push backup_run --payload '{"backup_job_id": "bj-1", "agent_id": "agent-7"}'
    """
    data = parse_json_option(payload)
    with cli_context(database) as ctx:
        job_id = ctx.queue.push(
            job_type,
            data,
            queue=queue or ctx.settings.default_queue,
            max_attempts=max_attempts,
            created_by="cli",
        )
    console.print(f"[green]Pushed[/green] {job_id}")


@app.command("cancel")
def cancel(
    job_id: str = typer.Argument(..., help="Job id"),
    database: str | None = DatabaseOption,
) -> None:
    """Cancel a pending or running job."""
    with cli_context(database) as ctx:
        ctx.queue.cancel(job_id)
    console.print(f"[yellow]Cancelled[/yellow] {job_id}")


@app.command("retry")
def retry(
    job_id: str = typer.Argument(..., help="Job id"),
    database: str | None = DatabaseOption,
) -> None:
    """Requeue a failed job while it has attempts left."""
    with cli_context(database) as ctx:
        job = ctx.queue.retry(job_id)
    console.print(f"[green]Requeued[/green] {job_id} (attempt {job.attempts + 1}/{job.max_attempts})")


@app.command("stats")
def stats(
    queue: str | None = typer.Option(None, "--queue", "-q"),
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Job counts per status."""
    with cli_context(database) as ctx:
        counts = ctx.queue.get_stats(queue)
    output(counts, as_json=json_out, title="Job Stats")

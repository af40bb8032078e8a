"""
CLI: ``backplane db`` — database management commands.
"""

from __future__ import annotations

import typer

from backplane.cli.utils import DatabaseOption, JsonOption, cli_context, console, output

app = typer.Typer(no_args_is_help=True)


@app.command()
def init(database: str | None = DatabaseOption) -> None:
    """Initialise the database schema (idempotent)."""
    with cli_context(database):
        console.print("[green]Schema applied[/green]")


@app.command()
def purge(
    older_than_days: int = typer.Option(30, "--days", help="Delete finished rows older than N days"),
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Delete finished jobs and agent tasks older than N days."""
    with cli_context(database) as ctx:
        result = {
            "jobs_deleted": ctx.queue.delete_old_completed(older_than_days),
            "tasks_deleted": ctx.dispatcher.delete_old_tasks(older_than_days),
        }
    output(result, as_json=json_out, title="Purge")

"""
Root Typer application for the backplane CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from backplane import __version__

app = Typer(
    name="backplane",
    help="backplane: job queue, agent task dispatch and backup scheduling.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"backplane {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """backplane CLI: run services, inspect jobs, tasks and schedules."""


# ── Sub-command registration ─────────────────────────────────────────────

from backplane.cli.db import app as db_app  # noqa: E402
from backplane.cli.jobs import app as jobs_app  # noqa: E402
from backplane.cli.schedule import app as schedule_app  # noqa: E402
from backplane.cli.scheduler import app as scheduler_app  # noqa: E402
from backplane.cli.serve import serve  # noqa: E402
from backplane.cli.sweeper import app as sweeper_app  # noqa: E402
from backplane.cli.tasks import app as tasks_app  # noqa: E402
from backplane.cli.worker import app as worker_app  # noqa: E402

app.add_typer(db_app, name="db", help="Database operations.")
app.add_typer(jobs_app, name="jobs", help="Job queue inspection and control.")
app.add_typer(tasks_app, name="tasks", help="Agent task inspection.")
app.add_typer(schedule_app, name="schedule", help="Backup schedules.")
app.add_typer(worker_app, name="worker", help="Job worker.")
app.add_typer(scheduler_app, name="scheduler", help="Scheduler loop.")
app.add_typer(sweeper_app, name="sweeper", help="Stuck task reclamation and job settlement.")
app.command("serve", help="Start the API server.")(serve)

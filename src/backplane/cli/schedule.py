"""
CLI: ``backplane schedule`` — backup schedules and next-run previews.
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
from backplane.core.scheduling.engine import (
    describe,
    monthdays_bitmap,
    upcoming_runs,
    weekdays_bitmap,
)
from backplane.core.scheduling.models import ScheduleType
from backplane.core.scheduling.repository import ScheduleCreate
from backplane.core.scheduling.service import SchedulerService
from backplane.core.timestamps import utc_now

app = typer.Typer(no_args_is_help=True)

_LIST_COLUMNS = ["job_id", "type", "enabled", "next_run_at", "last_run_status", "consecutive_failures"]


def _split(value: str | None) -> list[str]:
    return [p.strip() for p in value.split(",") if p.strip()] if value else []


def _blackouts(values: list[str]) -> list[dict[str, str]]:
    periods = []
    for value in values:
        start, sep, end = value.partition("/")
        if not sep:
            raise typer.BadParameter(f"expected START/END, got {value!r}", param_hint="--blackout")
        periods.append({"start": start.strip(), "end": end.strip()})
    return periods


@app.command("list")
def list_schedules(database: str | None = DatabaseOption, json_out: bool = JsonOption) -> None:
    """List schedules."""
    with cli_context(database) as ctx:
        schedules = ctx.schedules.list_all()
    output(schedules, as_json=json_out, title="Schedules", columns=_LIST_COLUMNS)


@app.command("add")
def add(
    job_id: str = typer.Argument(..., help="Backup job id"),
    schedule_type: ScheduleType = typer.Option(ScheduleType.DAILY, "--type", "-t"),
    at: str = typer.Option("00:00:00", "--time", help="Time of day, HH:MM[:SS]"),
    timezone: str = typer.Option("UTC", "--timezone", "--tz"),
    weekdays: str | None = typer.Option(None, "--weekdays", help="e.g. mon,wed,fri"),
    monthdays: str | None = typer.Option(None, "--monthdays", help="e.g. 1,15,31"),
    interval_hours: int | None = typer.Option(None, "--interval-hours", min=1),
    cron: str | None = typer.Option(None, "--cron", help="5-field cron expression"),
    window_start: str | None = typer.Option(None, "--window-start", help="HH:MM"),
    window_end: str | None = typer.Option(None, "--window-end", help="HH:MM"),
    blackout: list[str] = typer.Option([], "--blackout", help="START/END, HH:MM or ISO; repeatable"),
    max_runtime: int = typer.Option(14400, "--max-runtime", min=1, help="Seconds"),
    max_retries: int = typer.Option(3, "--max-retries", min=0),
    retry_delay: int = typer.Option(30, "--retry-delay", min=0, help="Minutes"),
    no_retry: bool = typer.Option(False, "--no-retry", help="Do not retry failed runs"),
    database: str | None = DatabaseOption,
) -> None:
    """Create the schedule of a backup job.

    Example::

        backplane schedule add bj-1 --type weekly --weekdays mon,thu --time 02:30 --tz Europe/Paris
    """
    with cli_context(database) as ctx:
        spec = ScheduleCreate(
            job_id=job_id,
            type=schedule_type,
            time=at,
            timezone=timezone,
            weekdays=weekdays_bitmap(_split(weekdays)) if weekdays else None,
            monthdays=monthdays_bitmap(int(d) for d in _split(monthdays)) if monthdays else None,
            interval_hours=interval_hours,
            cron_expression=cron,
            window_start=window_start,
            window_end=window_end,
            max_runtime=max_runtime,
            blackout_periods=_blackouts(blackout),
            retry_on_failure=not no_retry,
            max_retries=max_retries,
            retry_delay_minutes=retry_delay,
        )
        schedule = ctx.schedules.create(spec)
    console.print(f"[green]Scheduled[/green] {job_id}: {describe(schedule)}")


@app.command("next")
def next_runs(
    job_id: str = typer.Argument(..., help="Backup job id"),
    count: int = typer.Option(5, "--count", "-n", min=1, max=100),
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Preview the next eligible runs of a schedule."""
    with cli_context(database) as ctx:
        schedule = ctx.schedules.require_by_job(job_id)
        runs = upcoming_runs(schedule, utc_now(), count=count)
    if json_out:
        output({"job_id": job_id, "runs": [r.isoformat() for r in runs]}, as_json=True)
        return
    console.print(f"[bold]{describe(schedule)}[/bold]")
    if not runs:
        console.print("[dim]No upcoming runs.[/dim]")
    for r in runs:
        console.print(f"  {r.isoformat()}")


@app.command("pause")
def pause(job_id: str = typer.Argument(...), database: str | None = DatabaseOption) -> None:
    """Disable a schedule."""
    with cli_context(database) as ctx:
        service = SchedulerService(None, ctx.schedules, ctx.queue)
        if not service.pause(job_id):
            console.print(f"[red]No schedule for {job_id}[/red]")
            raise typer.Exit(code=1)
    console.print(f"[yellow]Paused[/yellow] {job_id}")


@app.command("resume")
def resume(job_id: str = typer.Argument(...), database: str | None = DatabaseOption) -> None:
    """Re-enable a schedule from now on."""
    with cli_context(database) as ctx:
        service = SchedulerService(None, ctx.schedules, ctx.queue)
        if not service.resume(job_id):
            console.print(f"[red]No schedule for {job_id}[/red]")
            raise typer.Exit(code=1)
    console.print(f"[green]Resumed[/green] {job_id}")


@app.command("trigger")
def trigger(
    job_id: str = typer.Argument(...),
    payload: str | None = typer.Option(None, "--payload", "-p", help="Extra JSON payload"),
    database: str | None = DatabaseOption,
) -> None:
    """Queue a backup run now, outside the recurrence."""
    extra = parse_json_option(payload)
    with cli_context(database) as ctx:
        service = SchedulerService(None, ctx.schedules, ctx.queue, queue_name=ctx.settings.default_queue)
        queue_job_id = service.trigger(job_id, extra)
    console.print(f"[green]Queued[/green] {queue_job_id}")

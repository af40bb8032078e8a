"""
CLI: ``backplane tasks`` — inspect and create agent tasks.
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
from backplane.execution.models import TaskPriority

app = typer.Typer(no_args_is_help=True)

_LIST_COLUMNS = ["id", "agent_id", "type", "priority", "status", "progress", "attempts", "job_id"]


@app.command("list")
def list_tasks(
    agent: str | None = typer.Option(None, "--agent", "-a", help="Filter by agent id"),
    status: str | None = typer.Option(None, "--status", "-s"),
    limit: int = typer.Option(50, "--limit", "-n"),
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """List agent tasks, newest first."""
    with cli_context(database) as ctx:
        tasks = ctx.dispatcher.list_tasks(agent_id=agent, status=status, limit=limit)
    output(tasks, as_json=json_out, title="Agent Tasks", columns=_LIST_COLUMNS)


@app.command("create")
def create(
    agent: str = typer.Argument(..., help="Target agent id"),
    task_type: str = typer.Argument(..., help="Task type, e.g. backup"),
    payload: str | None = typer.Option(None, "--payload", "-p", help="JSON object payload"),
    priority: TaskPriority = typer.Option(TaskPriority.NORMAL, "--priority"),
    timeout: int = typer.Option(3600, "--timeout", min=1, help="Seconds before the sweeper reclaims it"),
    max_attempts: int = typer.Option(3, "--max-attempts", min=1),
    database: str | None = DatabaseOption,
) -> None:
    """Create a task for one agent."""
    data = parse_json_option(payload)
    with cli_context(database) as ctx:
        task = ctx.dispatcher.create(
            agent,
            task_type,
            data,
            priority=priority,
            timeout_seconds=timeout,
            max_attempts=max_attempts,
            created_by="cli",
        )
    console.print(f"[green]Created[/green] {task.id} for {agent}")


@app.command("cancel-agent")
def cancel_agent(
    agent: str = typer.Argument(..., help="Agent id"),
    database: str | None = DatabaseOption,
) -> None:
    """Cancel every pending or assigned task of an agent."""
    with cli_context(database) as ctx:
        count = ctx.dispatcher.cancel_all_pending_for_agent(agent)
    console.print(f"Cancelled {count} task(s) for {agent}")

"""
CLI utility helpers: output formatting and service wiring.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from backplane.core.cache import CacheBackend, create_cache
from backplane.core.connection import create_connection
from backplane.core.errors import BackplaneError
from backplane.core.scheduling.repository import BackupScheduleRepository
from backplane.core.settings import BackplaneSettings
from backplane.execution.dispatcher import AgentTaskDispatcher
from backplane.execution.queue import JobQueue

console = Console()
err_console = Console(stderr=True)

DatabaseOption = typer.Option(None, "--database", "-d", help="Database URL or path (default: settings)")
JsonOption = typer.Option(False, "--json", help="JSON output")


# ── Service wiring ───────────────────────────────────────────────────────


@dataclass
class CliContext:
    """Connection plus the services built on it, for one CLI command."""

    settings: BackplaneSettings
    conn: Any
    cache: CacheBackend
    queue: JobQueue
    dispatcher: AgentTaskDispatcher
    schedules: BackupScheduleRepository

    def close(self) -> None:
        if hasattr(self.conn, "close"):
            self.conn.close()


def make_context(database: str | None = None, *, init_schema: bool = True) -> CliContext:
    """Open a connection from settings (``--database`` overrides the URL)."""
    settings = BackplaneSettings()
    conn, _info = create_connection(
        database or settings.database_url,
        init_schema=init_schema,
        data_dir=settings.data_dir,
    )
    cache = create_cache(settings.cache_url, default_ttl_seconds=settings.cache_ttl_seconds)
    queue = JobQueue(conn, cache=cache, cache_ttl_seconds=settings.cache_ttl_seconds)
    return CliContext(
        settings=settings,
        conn=conn,
        cache=cache,
        queue=queue,
        dispatcher=AgentTaskDispatcher(conn, job_queue=queue),
        schedules=BackupScheduleRepository(conn),
    )


@contextmanager
def cli_context(database: str | None = None) -> Iterator[CliContext]:
    """``make_context`` that closes the connection and turns core errors into exit 1."""
    ctx = make_context(database)
    try:
        with handle_errors():
            yield ctx
    finally:
        ctx.close()


@contextmanager
def handle_errors() -> Iterator[None]:
    try:
        yield
    except BackplaneError as e:
        err_console.print(f"[bold red]Error[/bold red] ({e.category.value}): {e.message}")
        raise typer.Exit(code=1) from e
    except ValueError as e:
        # Unknown enum values (status, schedule type) given on the command line.
        err_console.print(f"[bold red]Error[/bold red] (VALIDATION): {e}")
        raise typer.Exit(code=1) from e


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert dataclass / model / dict to plain dict."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def output(data: Any, *, as_json: bool = False, title: str = "", columns: list[str] | None = None) -> None:
    """Render one item or a list to the terminal."""
    if as_json:
        payload = [_to_dict(d) for d in data] if isinstance(data, list | tuple) else _to_dict(data)
        console.print_json(json.dumps(payload, default=str))
        return

    if isinstance(data, list | tuple):
        if not data:
            console.print("[dim]No items.[/dim]")
            return
        print_table(list(data), title=title, columns=columns)
    else:
        print_dict(_to_dict(data), title=title)


def print_table(items: list, *, title: str = "", columns: list[str] | None = None) -> None:
    """Render a list of records as a Rich table."""
    rows = [_to_dict(i) for i in items]
    columns = columns or list(rows[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in columns:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*("" if row.get(c) is None else str(row.get(c)) for c in columns))
    console.print(table)


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")


def parse_json_option(value: str | None, name: str = "--payload") -> dict[str, Any]:
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"invalid JSON: {e.msg}", param_hint=name) from e
    if not isinstance(parsed, dict):
        raise typer.BadParameter("expected a JSON object", param_hint=name)
    return parsed

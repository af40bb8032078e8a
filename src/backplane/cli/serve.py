"""
CLI: ``backplane serve`` — start the API server.
"""

from __future__ import annotations

import typer
import uvicorn

from backplane.cli.utils import console


def serve(
    host: str | None = typer.Option(None, "--host", "-h", help="Bind address (default: settings)"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port (default: settings)"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on changes"),
    workers: int = typer.Option(1, "--workers", "-w", help="Number of worker processes"),
    log_level: str = typer.Option("info", "--log-level"),
) -> None:
    """Start the backplane REST API server."""
    from backplane.api.deps import get_settings
    from backplane.core.logging import configure_logging

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json, service="backplane-api")
    host = host or settings.host
    port = port or settings.port

    console.print(f"[bold green]Starting backplane API[/bold green] on {host}:{port}")
    uvicorn.run(
        "backplane.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        workers=workers,
        log_level=log_level,
    )

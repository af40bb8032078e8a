"""
CLI layer for backplane.

Provides a Typer application whose sub-commands wire the core services
(job queue, dispatcher, scheduler loop, sweeper) from settings. This
package handles only terminal transport: argument parsing, coloured
output, and table formatting.

Entry point::

    backplane --help
"""

from backplane.cli.app import app

__all__ = ["app"]

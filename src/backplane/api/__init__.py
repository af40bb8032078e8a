"""
REST API layer for backplane.

Provides a FastAPI application factory. The agent router implements the
pull protocol; the jobs router is the producer interface to the job queue.
This package handles only HTTP transport concerns: serialisation, error
mapping, agent identity and request context.

Quick start::

    from backplane.api import create_app

    app = create_app()  # ready for uvicorn
"""

from backplane.api.app import create_app

__all__ = ["create_app"]

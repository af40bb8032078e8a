"""
backplane: orchestration core for fleet backups.

A durable job queue, a pull protocol that hands agent tasks to
intermittently connected agents, and a schedule engine that decides when
each backup job is due. Everything coordinates through one relational
store; a cache only speeds up progress reads.

Packages:
    backplane.core        storage, errors, logging, settings, scheduling
    backplane.execution   job queue, agent task dispatcher, job worker
    backplane.api         FastAPI surface (agent protocol, jobs, health)
    backplane.cli         typer CLI
"""

__version__ = "0.1.0"

"""
Shared pytest fixtures for backplane tests.

This module provides:
- An in-memory SQLite connection with the schema applied
- A controllable clock injected into every service
- Job queue, dispatcher and schedule repository wired to both

Usage:
    def test_something(queue, dispatcher, clock):
        job_id = queue.push("backup_run", {...})
        clock.advance(minutes=5)
        ...
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from backplane.core.cache import InMemoryCache
from backplane.core.scheduling.repository import BackupScheduleRepository
from backplane.core.schema import apply_schema
from backplane.core.sqlite_conn import SqliteConnection
from backplane.execution.dispatcher import AgentTaskDispatcher
from backplane.execution.queue import JobQueue

T0 = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)  # a Monday


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> datetime:
        self.now = value
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def conn():
    """In-memory SQLite connection with all tables created."""
    connection = SqliteConnection(":memory:")
    apply_schema(connection)
    yield connection
    connection.close()


@pytest.fixture
def cache() -> InMemoryCache:
    return InMemoryCache(max_size=1000, default_ttl_seconds=300)


@pytest.fixture
def queue(conn, cache, clock) -> JobQueue:
    return JobQueue(conn, cache=cache, clock=clock)


@pytest.fixture
def dispatcher(conn, queue, clock) -> AgentTaskDispatcher:
    return AgentTaskDispatcher(conn, job_queue=queue, clock=clock)


@pytest.fixture
def schedules(conn) -> BackupScheduleRepository:
    return BackupScheduleRepository(conn)


@pytest.fixture
def db_path(tmp_path):
    """File-backed SQLite database with the schema applied; returns its path."""
    path = tmp_path / "backplane.db"
    connection = SqliteConnection(str(path))
    apply_schema(connection)
    connection.close()
    return path

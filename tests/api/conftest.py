"""Fixtures for API tests: an app on a file-backed database plus direct store access."""

from __future__ import annotations

from dataclasses import dataclass

import pytest
from fastapi.testclient import TestClient

from backplane.api.app import create_app
from backplane.api.settings import BackplaneAPISettings
from backplane.core.sqlite_conn import SqliteConnection
from backplane.execution.dispatcher import AgentTaskDispatcher
from backplane.execution.queue import JobQueue


@dataclass
class Store:
    """Direct access to the database the app serves."""

    queue: JobQueue
    dispatcher: AgentTaskDispatcher


@pytest.fixture
def settings(db_path, tmp_path) -> BackplaneAPISettings:
    return BackplaneAPISettings(
        database_url=f"sqlite:///{db_path}",
        data_dir=tmp_path,
        cache_url="memory",
        log_json=False,
    )


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings=settings)) as test_client:
        yield test_client


@pytest.fixture
def store(db_path):
    conn = SqliteConnection(str(db_path))
    queue = JobQueue(conn)
    yield Store(queue=queue, dispatcher=AgentTaskDispatcher(conn, job_queue=queue))
    conn.close()


"""Tests for the backplane CLI."""

import json

import pytest
from typer.testing import CliRunner

from backplane import __version__
from backplane.cli import app
from backplane.core.sqlite_conn import SqliteConnection
from backplane.core.scheduling.repository import BackupScheduleRepository
from backplane.execution.dispatcher import AgentTaskDispatcher
from backplane.execution.queue import JobQueue

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("BACKPLANE_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("BACKPLANE_CACHE_URL", "memory")


@pytest.fixture
def db(db_path):
    return str(db_path)


@pytest.fixture
def store(db):
    conn = SqliteConnection(db)
    yield conn
    conn.close()


def invoke(*args):
    return runner.invoke(app, list(args))


class TestRoot:
    def test_version(self):
        result = invoke("--version")
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_db_init(self, tmp_path):
        path = tmp_path / "fresh.db"
        result = invoke("db", "init", "--database", str(path))
        assert result.exit_code == 0
        assert "Schema applied" in result.output
        assert path.exists()


class TestJobs:
    """``backplane jobs``."""

    def test_push_then_show(self, db, store):
        result = invoke("jobs", "push", "backup_run", "--payload", '{"backup_job_id": "bj-1"}', "-d", db)
        assert result.exit_code == 0, result.output

        [job] = JobQueue(store).list_jobs()
        assert job.payload == {"backup_job_id": "bj-1"}
        assert job.created_by == "cli"
        assert job.queue == "default"

        shown = invoke("jobs", "show", job.id, "-d", db)
        assert shown.exit_code == 0
        assert "backup_run" in shown.output

    def test_push_rejects_non_object_payload(self, db):
        result = invoke("jobs", "push", "backup_run", "--payload", "[1, 2]", "-d", db)
        assert result.exit_code != 0

    def test_stats_json(self, db, store):
        JobQueue(store).push("backup_run", {})
        result = invoke("jobs", "stats", "--json", "-d", db)
        assert result.exit_code == 0
        stats = json.loads(result.output)
        assert stats["pending"] == 1
        assert stats["total"] == 1

    def test_list_empty(self, db):
        result = invoke("jobs", "list", "-d", db)
        assert result.exit_code == 0
        assert "No items." in result.output

    def test_cancel_twice(self, db, store):
        job_id = JobQueue(store).push("backup_run", {})
        assert invoke("jobs", "cancel", job_id, "-d", db).exit_code == 0

        result = invoke("jobs", "cancel", job_id, "-d", db)
        assert result.exit_code == 1
        assert "CONFLICT" in result.output

    def test_show_unknown(self, db):
        result = invoke("jobs", "show", "missing", "-d", db)
        assert result.exit_code == 1
        assert "NOT_FOUND" in result.output

    def test_list_bad_status(self, db):
        result = invoke("jobs", "list", "--status", "exploded", "-d", db)
        assert result.exit_code == 1
        assert "VALIDATION" in result.output


class TestTasks:
    """``backplane tasks``."""

    def test_create_and_cancel_agent(self, db, store):
        result = invoke("tasks", "create", "agent-7", "backup", "--priority", "high", "-d", db)
        assert result.exit_code == 0, result.output

        [task] = AgentTaskDispatcher(store).list_tasks(agent_id="agent-7")
        assert task.priority.value == "high"
        assert task.created_by == "cli"

        result = invoke("tasks", "cancel-agent", "agent-7", "-d", db)
        assert "Cancelled 1 task(s)" in result.output
        assert AgentTaskDispatcher(store).get_task(task.id).status.value == "cancelled"


class TestSchedule:
    """``backplane schedule``."""

    def test_add_and_next(self, db):
        result = invoke(
            "schedule", "add", "bj-1",
            "--type", "weekly", "--weekdays", "mon,thu", "--time", "02:30", "--tz", "Europe/Paris",
            "-d", db,
        )
        assert result.exit_code == 0, result.output

        preview = invoke("schedule", "next", "bj-1", "--count", "3", "--json", "-d", db)
        assert preview.exit_code == 0
        runs = json.loads(preview.output)["runs"]
        assert len(runs) == 3

    def test_add_invalid_cron(self, db, store):
        result = invoke("schedule", "add", "bj-1", "--type", "cron", "--cron", "not a cron", "-d", db)
        assert result.exit_code == 1
        assert BackupScheduleRepository(store).get_by_job("bj-1") is None

    def test_pause_resume(self, db):
        invoke("schedule", "add", "bj-1", "-d", db)
        assert invoke("schedule", "pause", "bj-1", "-d", db).exit_code == 0
        assert invoke("schedule", "resume", "bj-1", "-d", db).exit_code == 0
        assert invoke("schedule", "pause", "bj-2", "-d", db).exit_code == 1

    def test_trigger(self, db, store):
        invoke("schedule", "add", "bj-1", "-d", db)
        result = invoke("schedule", "trigger", "bj-1", "-d", db)
        assert result.exit_code == 0, result.output

        [job] = JobQueue(store).list_jobs()
        assert job.type == "backup_run"
        assert job.payload["backup_job_id"] == "bj-1"

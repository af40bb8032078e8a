"""Tests for create_connection, the schema and BaseRepository."""

import pytest

from backplane.core.connection import _parse_url, create_connection
from backplane.core.errors import ConfigError, DatabaseError
from backplane.core.orm import BackplaneSession, SAConnectionBridge, create_backplane_engine
from backplane.core.repository import BaseRepository
from backplane.core.schema import AGENT_TASKS_TABLE, JOBS_TABLE, SCHEDULES_TABLE, apply_schema
from backplane.execution.models import JobStatus
from backplane.execution.queue import JobQueue


class TestParseUrl:
    """URL → (scheme, target)."""

    @pytest.mark.parametrize("url", [None, "", "memory", ":memory:", "sqlite://", "sqlite:///:memory:"])
    def test_memory(self, url):
        assert _parse_url(url) == ("memory", ":memory:")

    def test_sqlite_file(self):
        assert _parse_url("sqlite:///data/bp.db") == ("sqlite", "data/bp.db")

    def test_postgres(self):
        assert _parse_url("postgresql://u:p@h/db")[0] == "postgresql"
        assert _parse_url("postgresql+psycopg2://u:p@h/db")[0] == "postgresql"

    def test_bare_path(self):
        assert _parse_url("./bp.db") == ("file", "./bp.db")

    def test_unknown_scheme(self):
        with pytest.raises(ConfigError):
            _parse_url("mysql://localhost/db")


class TestCreateConnection:
    """Factory behaviour."""

    def test_memory_with_schema(self):
        conn, info = create_connection("memory", init_schema=True)
        assert info.backend == "sqlite"
        assert not info.persistent
        for table in (JOBS_TABLE, AGENT_TASKS_TABLE, SCHEDULES_TABLE):
            conn.execute(f"SELECT COUNT(*) FROM {table}")
            assert conn.fetchone()[0] == 0
        conn.close()

    def test_relative_path_uses_data_dir(self, tmp_path):
        conn, info = create_connection("bp.db", data_dir=tmp_path)
        assert info.resolved_path == str((tmp_path / "bp.db").resolve())
        assert info.persistent
        conn.close()

    def test_schema_is_idempotent(self, conn):
        apply_schema(conn)
        apply_schema(conn)


class TestBaseRepository:
    """Driver errors surface as DatabaseError."""

    def test_wraps_driver_error(self, conn):
        repo = BaseRepository(conn)
        with pytest.raises(DatabaseError) as exc_info:
            repo.select("SELECT * FROM no_such_table")
        assert exc_info.value.retryable
        assert exc_info.value.cause is not None

    def test_update_returns_rowcount(self, conn):
        repo = BaseRepository(conn)
        conn.execute("CREATE TABLE t_demo (id INTEGER, v TEXT)")
        repo.insert("t_demo", {"id": 1, "v": "a"})
        repo.insert("t_demo", {"id": 2, "v": "a"})
        assert repo.update("UPDATE t_demo SET v = ? WHERE v = ?", ("b", "a")) == 2
        assert repo.update("UPDATE t_demo SET v = ? WHERE v = ?", ("c", "a")) == 0

    def test_json_helpers(self):
        assert BaseRepository.dumps(None) is None
        assert BaseRepository.loads(BaseRepository.dumps({"a": [1]})) == {"a": [1]}
        assert BaseRepository.loads("not json") == "not json"


class TestSAConnectionBridge:
    """The SQLAlchemy bridge serves the same repositories as sqlite3."""

    @pytest.fixture
    def bridge(self):
        engine = create_backplane_engine("sqlite://")
        bridge = SAConnectionBridge(BackplaneSession(bind=engine))
        apply_schema(bridge)
        yield bridge
        bridge.close()
        engine.dispose()

    def test_placeholders_and_rowcount(self, bridge):
        bridge.execute("CREATE TABLE t_demo (id INTEGER, v TEXT)")
        bridge.executemany("INSERT INTO t_demo (id, v) VALUES (?, ?)", [(1, "a"), (2, "a")])
        bridge.execute("UPDATE t_demo SET v = ? WHERE v = ?", ("b", "a"))
        assert bridge.rowcount == 2
        bridge.execute("SELECT v FROM t_demo WHERE id = ?", (2,))
        assert bridge.fetchone() == ("b",)

    def test_queue_over_bridge(self, bridge):
        queue = JobQueue(bridge)
        job_id = queue.push("backup_run", {"backup_job_id": "bj-1"})
        job = queue.claim()
        assert job.id == job_id
        assert queue.claim() is None
        queue.complete(job_id, {"ok": True})
        assert queue.get_job(job_id).status == JobStatus.COMPLETED

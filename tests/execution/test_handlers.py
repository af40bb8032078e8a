"""Tests for the built-in backup_run handler."""

import pytest

from backplane.core.errors import ValidationError
from backplane.execution.handlers import (
    AWAIT_TASKS,
    BACKUP_RUN,
    BackupRunHandler,
    BackupTarget,
    BackupTargetResolver,
    PayloadTargetResolver,
    register_builtin_handlers,
)
from backplane.execution.models import TaskPriority, TaskStatus
from backplane.execution.registry import HandlerRegistry


def _backup_job(queue, **payload):
    queue.push(BACKUP_RUN, {"backup_job_id": "bj-42", "agent_id": "agent-7", **payload})
    return queue.claim()


class TestPayloadTargetResolver:
    """Target taken from the job payload."""

    def test_resolve(self):
        target = PayloadTargetResolver().resolve(
            "bj-1", {"agent_id": "agent-1", "task_type": "restic_backup", "priority": "high"}
        )
        assert target.agent_id == "agent-1"
        assert target.task_type == "restic_backup"
        assert target.priority == "high"
        assert target.payload == {"backup_job_id": "bj-1"}

    def test_missing_agent(self):
        with pytest.raises(ValidationError):
            PayloadTargetResolver().resolve("bj-1", {})

    def test_is_a_resolver(self):
        assert isinstance(PayloadTargetResolver(), BackupTargetResolver)


class TestBackupRunHandler:
    """backup_run → one agent task bound to the job."""

    def test_creates_bound_task(self, queue, dispatcher):
        job = _backup_job(queue, schedule_id="daily-db", scheduled_for="2026-03-02T02:00:00+00:00",
                          max_runtime=7200, triggered_by="scheduler")

        assert BackupRunHandler(dispatcher)(job) is AWAIT_TASKS

        [task] = dispatcher.find_by_job(job.id)
        assert task.agent_id == "agent-7"
        assert task.type == "backup"
        assert task.status == TaskStatus.PENDING
        assert task.timeout_seconds == 7200
        assert task.max_attempts == 1
        assert task.created_by == "scheduler"
        assert task.payload["backup_job_id"] == "bj-42"
        assert task.payload["schedule_id"] == "daily-db"
        assert task.payload["scheduled_for"] == "2026-03-02T02:00:00+00:00"

    def test_default_runtime(self, queue, dispatcher):
        job = _backup_job(queue)
        BackupRunHandler(dispatcher)(job)
        assert dispatcher.find_by_job(job.id)[0].timeout_seconds == 14400

    def test_custom_resolver(self, queue, dispatcher):
        class Inventory:
            def resolve(self, backup_job_id, payload):
                return BackupTarget(agent_id="nas-01", task_type="rsync", priority=TaskPriority.CRITICAL,
                                    payload={"source": "/srv"})

        job = _backup_job(queue)
        BackupRunHandler(dispatcher, Inventory())(job)
        [task] = dispatcher.find_by_job(job.id)
        assert task.agent_id == "nas-01"
        assert task.type == "rsync"
        assert task.priority == TaskPriority.CRITICAL
        assert task.payload["source"] == "/srv"

    def test_missing_backup_job_id(self, queue, dispatcher):
        queue.push(BACKUP_RUN, {"agent_id": "agent-7"})
        job = queue.claim()
        with pytest.raises(ValidationError):
            BackupRunHandler(dispatcher)(job)


def test_register_builtin_handlers(dispatcher):
    registry = register_builtin_handlers(HandlerRegistry(), dispatcher)
    assert registry.has(BACKUP_RUN)
    assert isinstance(registry.get(BACKUP_RUN), BackupRunHandler)

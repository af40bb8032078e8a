"""
Tests for AgentTaskDispatcher.

Covers polling order and the retry gate, the assign race, the agent
protocol (claim, progress, complete, fail), retry backoff and the
recovery operations the sweeper drives.
"""

import threading
from datetime import timedelta

import pytest

from backplane.core.errors import AuthError, InvalidTransitionError, TaskNotFoundError
from backplane.core.sqlite_conn import SqliteConnection
from backplane.execution.dispatcher import AgentTaskDispatcher
from backplane.execution.models import JobStatus, TaskPriority, TaskStatus
from backplane.execution.retry import TaskRetryPolicy


class TestPolling:
    """list_pending ordering and eligibility."""

    def test_priority_then_age(self, dispatcher, clock):
        low = dispatcher.create("agent-1", "backup", priority=TaskPriority.LOW)
        clock.advance(seconds=1)
        normal_old = dispatcher.create("agent-1", "backup")
        clock.advance(seconds=1)
        critical = dispatcher.create("agent-1", "backup", priority="critical")
        clock.advance(seconds=1)
        normal_new = dispatcher.create("agent-1", "backup")

        ids = [t.id for t in dispatcher.list_pending("agent-1", limit=10)]
        assert ids == [critical.id, normal_old.id, normal_new.id, low.id]

    def test_limit(self, dispatcher, clock):
        for _ in range(7):
            dispatcher.create("agent-1", "backup")
            clock.advance(seconds=1)
        assert len(dispatcher.list_pending("agent-1")) == 5
        assert len(dispatcher.list_pending("agent-1", limit=2)) == 2

    def test_only_own_tasks(self, dispatcher):
        dispatcher.create("agent-1", "backup")
        assert dispatcher.list_pending("agent-2") == []

    def test_retry_after_gates_eligibility(self, dispatcher, clock):
        task = dispatcher.create("agent-1", "backup")
        dispatcher.claim(task.id, "agent-1")
        outcome = dispatcher.fail(task.id, "exit 2")
        assert outcome.requeued

        assert dispatcher.list_pending("agent-1") == []
        clock.advance(seconds=299)
        assert dispatcher.list_pending("agent-1") == []
        clock.advance(seconds=1)
        assert [t.id for t in dispatcher.list_pending("agent-1")] == [task.id]


class TestAssign:
    """pending → assigned is won by exactly one caller."""

    def test_second_assign_loses(self, dispatcher):
        task = dispatcher.create("agent-1", "backup")
        assert dispatcher.assign(task.id) is True
        assert dispatcher.assign(task.id) is False
        assert dispatcher.get_task(task.id).status == TaskStatus.ASSIGNED

    def test_concurrent_assign_has_one_winner(self, db_path):
        setup = SqliteConnection(str(db_path))
        task = AgentTaskDispatcher(setup).create("agent-1", "backup")
        setup.close()

        workers = 8
        barrier = threading.Barrier(workers)
        results: list[bool] = []
        lock = threading.Lock()

        def contend():
            conn = SqliteConnection(str(db_path))
            try:
                barrier.wait()
                won = AgentTaskDispatcher(conn).assign(task.id)
                with lock:
                    results.append(won)
            finally:
                conn.close()

        threads = [threading.Thread(target=contend) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == workers
        assert results.count(True) == 1


class TestClaim:
    """Agent-side start."""

    def test_claim_runs_task(self, dispatcher, clock):
        task = dispatcher.create("agent-1", "backup")
        started = dispatcher.claim(task.id, "agent-1")
        assert started.status == TaskStatus.RUNNING
        assert started.assigned_at == clock()
        assert started.started_at == clock()
        assert started.progress == 0

    def test_claim_unknown_task(self, dispatcher):
        with pytest.raises(TaskNotFoundError):
            dispatcher.claim("missing", "agent-1")

    def test_claim_other_agents_task(self, dispatcher):
        task = dispatcher.create("agent-1", "backup")
        with pytest.raises(AuthError):
            dispatcher.claim(task.id, "agent-2")
        assert dispatcher.get_task(task.id).status == TaskStatus.PENDING

    def test_claim_twice(self, dispatcher):
        task = dispatcher.create("agent-1", "backup")
        dispatcher.claim(task.id, "agent-1")
        with pytest.raises(InvalidTransitionError):
            dispatcher.claim(task.id, "agent-1")

    def test_start_requires_assigned(self, dispatcher):
        task = dispatcher.create("agent-1", "backup")
        with pytest.raises(InvalidTransitionError):
            dispatcher.start(task.id)


class TestProgressAndCompletion:
    """Progress reports and completion."""

    def test_progress_on_running_task(self, dispatcher):
        task = dispatcher.create("agent-1", "backup")
        dispatcher.claim(task.id, "agent-1")
        assert dispatcher.report_progress(task.id, 120, "almost") is True
        stored = dispatcher.get_task(task.id)
        assert stored.progress == 99
        assert stored.progress_message == "almost"

    def test_progress_on_pending_task_is_ignored(self, dispatcher):
        task = dispatcher.create("agent-1", "backup")
        assert dispatcher.report_progress(task.id, 50) is False
        assert dispatcher.get_task(task.id).progress == 0

    def test_progress_forwarded_to_job(self, dispatcher, queue):
        job_id = queue.push("backup_run", {})
        queue.claim()
        task = dispatcher.create("agent-1", "backup", job_id=job_id)
        dispatcher.claim(task.id, "agent-1")

        dispatcher.report_progress(task.id, 45, "copied 45 files", {"bytes_processed": 1024})

        job = queue.get_job(job_id)
        assert job.progress == 45
        assert job.log == "copied 45 files"
        assert queue.get_progress_info(job_id)["metrics"] == {"bytes_processed": 1024}

    def test_progress_not_forwarded_to_finished_job(self, dispatcher, queue):
        job_id = queue.push("backup_run", {})
        queue.cancel(job_id)
        task = dispatcher.create("agent-1", "backup", job_id=job_id)
        dispatcher.claim(task.id, "agent-1")
        assert dispatcher.report_progress(task.id, 45) is True
        assert queue.get_job(job_id).status == JobStatus.CANCELLED

    def test_complete(self, dispatcher):
        task = dispatcher.create("agent-1", "backup")
        dispatcher.claim(task.id, "agent-1")
        done = dispatcher.complete(task.id, {"snapshot": "abc"}, exit_code=0)
        assert done.status == TaskStatus.COMPLETED
        assert done.progress == 100
        assert done.result == {"snapshot": "abc"}
        assert done.exit_code == 0

    def test_complete_requires_running(self, dispatcher):
        task = dispatcher.create("agent-1", "backup")
        with pytest.raises(InvalidTransitionError):
            dispatcher.complete(task.id)


class TestFailure:
    """Failure, requeue and backoff."""

    def test_policy_delays(self):
        policy = TaskRetryPolicy()
        assert [policy.next_delay(n) for n in range(8)] == [300, 600, 900, 1200, 1500, 1800, 1800, 1800]
        assert policy.should_retry(0, 3)
        assert policy.should_retry(1, 3)
        assert not policy.should_retry(2, 3)

    def test_backoff_through_dispatcher(self, dispatcher, clock):
        task = dispatcher.create("agent-1", "backup", max_attempts=10)
        delays = []
        for _ in range(7):
            dispatcher.claim(task.id, "agent-1")
            outcome = dispatcher.fail(task.id, "exit 1", exit_code=1)
            assert outcome.requeued
            delays.append(int((outcome.retry_after - clock()).total_seconds()))
            clock.set(outcome.retry_after)
        assert delays == [300, 600, 900, 1200, 1500, 1800, 1800]
        assert dispatcher.get_task(task.id).attempts == 7

    def test_requeue_keeps_error(self, dispatcher):
        task = dispatcher.create("agent-1", "backup")
        dispatcher.claim(task.id, "agent-1")
        outcome = dispatcher.fail(task.id, "permission denied", exit_code=13)
        assert outcome.task.status == TaskStatus.PENDING
        assert outcome.task.error == "permission denied"
        assert outcome.task.exit_code == 13
        assert outcome.task.attempts == 1

    def test_terminal_when_budget_spent(self, dispatcher):
        task = dispatcher.create("agent-1", "backup", max_attempts=1)
        dispatcher.claim(task.id, "agent-1")
        outcome = dispatcher.fail(task.id, "exit 2")
        assert not outcome.requeued
        assert outcome.retry_after is None
        assert outcome.task.status == TaskStatus.FAILED
        assert outcome.task.attempts == 1
        assert outcome.task.completed_at is not None

    def test_fail_from_assigned(self, dispatcher):
        task = dispatcher.create("agent-1", "backup", max_attempts=1)
        dispatcher.assign(task.id)
        assert dispatcher.fail(task.id, "agent crashed").task.status == TaskStatus.FAILED

    def test_fail_requires_active_task(self, dispatcher):
        task = dispatcher.create("agent-1", "backup")
        with pytest.raises(InvalidTransitionError):
            dispatcher.fail(task.id, "nope")

    def test_stale_snapshot_counts_once(self, dispatcher, clock):
        task = dispatcher.create("agent-1", "backup")
        running = dispatcher.claim(task.id, "agent-1")
        retry_after = clock() + timedelta(seconds=300)
        repo = dispatcher.repository
        assert repo.requeue_failed(running, "first", None, retry_after, clock()) is True
        assert repo.requeue_failed(running, "second", None, retry_after, clock()) is False
        assert dispatcher.get_task(task.id).attempts == 1

    def test_default_error_message(self, dispatcher):
        task = dispatcher.create("agent-1", "backup", max_attempts=1)
        dispatcher.claim(task.id, "agent-1")
        assert dispatcher.fail(task.id, "").task.error == "Unknown error"


class TestCancel:
    """Cancellation of tasks that have not started."""

    def test_cancel_pending_and_assigned(self, dispatcher, clock):
        pending = dispatcher.create("agent-1", "backup")
        assigned = dispatcher.create("agent-1", "backup")
        dispatcher.assign(assigned.id)
        assert dispatcher.cancel(pending.id).status == TaskStatus.CANCELLED
        assert dispatcher.cancel(assigned.id).status == TaskStatus.CANCELLED

    def test_cannot_cancel_running(self, dispatcher):
        task = dispatcher.create("agent-1", "backup")
        dispatcher.claim(task.id, "agent-1")
        with pytest.raises(InvalidTransitionError):
            dispatcher.cancel(task.id)

    def test_cancel_all_for_agent(self, dispatcher):
        dispatcher.create("agent-1", "backup")
        dispatcher.create("agent-1", "backup")
        running = dispatcher.create("agent-1", "backup")
        dispatcher.claim(running.id, "agent-1")
        dispatcher.create("agent-2", "backup")
        assert dispatcher.cancel_all_pending_for_agent("agent-1") == 2
        assert dispatcher.get_stats_for_agent("agent-1")["running"] == 1
        assert dispatcher.get_stats_for_agent("agent-2")["pending"] == 1
        assert [t.id for t in dispatcher.find_running_for_agent("agent-1")] == [running.id]
        assert dispatcher.find_running_for_agent("agent-2") == []


class TestRecovery:
    """Operations driven by the sweeper."""

    def test_reset_stale_assigned(self, dispatcher, clock):
        task = dispatcher.create("agent-1", "backup")
        dispatcher.assign(task.id)
        clock.advance(seconds=30)
        assert dispatcher.reset_stale_assigned(grace_seconds=60) == 0
        clock.advance(seconds=31)
        assert dispatcher.reset_stale_assigned(grace_seconds=60) == 1
        reset = dispatcher.get_task(task.id)
        assert reset.status == TaskStatus.PENDING
        assert reset.assigned_at is None

    def test_timed_out_task_reclaimed_once(self, dispatcher, clock):
        task = dispatcher.create("agent-1", "backup", timeout_seconds=600)
        dispatcher.claim(task.id, "agent-1")

        clock.advance(seconds=600)
        assert dispatcher.fail_timed_out() == []

        clock.advance(seconds=1)
        outcomes = dispatcher.fail_timed_out()
        assert len(outcomes) == 1
        assert outcomes[0].requeued
        assert outcomes[0].task.error == "Task timed out after 600s"
        assert dispatcher.fail_timed_out() == []
        assert dispatcher.get_task(task.id).attempts == 1

    def test_timed_out_without_budget_fails(self, dispatcher, clock):
        task = dispatcher.create("agent-1", "backup", timeout_seconds=60, max_attempts=1)
        dispatcher.claim(task.id, "agent-1")
        clock.advance(minutes=5)
        [outcome] = dispatcher.fail_timed_out()
        assert not outcome.requeued
        assert dispatcher.get_task(task.id).status == TaskStatus.FAILED

    def test_delete_old_tasks(self, dispatcher, clock):
        task = dispatcher.create("agent-1", "backup")
        dispatcher.cancel(task.id)
        dispatcher.create("agent-1", "backup")
        clock.advance(days=31)
        assert dispatcher.delete_old_tasks(days=30) == 1
        assert dispatcher.find_task(task.id) is None

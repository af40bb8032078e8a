"""
Durable schema: jobs, agent tasks and backup schedules.

The DDL sticks to types both SQLite and PostgreSQL accept (TEXT, INTEGER,
REAL), stores timestamps as fixed-precision ISO 8601 text and booleans as
0/1 integers. Every statement is idempotent.
"""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)

JOBS_TABLE = "core_jobs"
AGENT_TASKS_TABLE = "core_agent_tasks"
SCHEDULES_TABLE = "core_backup_schedules"

SCHEMA_STATEMENTS: list[str] = [
    f"""
    CREATE TABLE IF NOT EXISTS {JOBS_TABLE} (
        id TEXT PRIMARY KEY,
        queue TEXT NOT NULL DEFAULT 'default',
        type TEXT NOT NULL,
        payload TEXT NOT NULL DEFAULT '{{}}',
        status TEXT NOT NULL DEFAULT 'pending',
        progress INTEGER NOT NULL DEFAULT 0,
        attempts INTEGER NOT NULL DEFAULT 0,
        max_attempts INTEGER NOT NULL DEFAULT 3,
        log TEXT,
        result TEXT,
        error TEXT,
        started_at TEXT,
        completed_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        created_by TEXT
    )
    """,
    f"CREATE INDEX IF NOT EXISTS idx_{JOBS_TABLE}_claim ON {JOBS_TABLE} (queue, status, created_at)",
    f"CREATE INDEX IF NOT EXISTS idx_{JOBS_TABLE}_status ON {JOBS_TABLE} (status)",
    f"""
    CREATE TABLE IF NOT EXISTS {AGENT_TASKS_TABLE} (
        id TEXT PRIMARY KEY,
        agent_id TEXT NOT NULL,
        job_id TEXT,
        type TEXT NOT NULL,
        priority TEXT NOT NULL DEFAULT 'normal',
        priority_rank INTEGER NOT NULL DEFAULT 2,
        payload TEXT NOT NULL DEFAULT '{{}}',
        status TEXT NOT NULL DEFAULT 'pending',
        progress INTEGER NOT NULL DEFAULT 0,
        progress_message TEXT,
        result TEXT,
        exit_code INTEGER,
        error TEXT,
        attempts INTEGER NOT NULL DEFAULT 0,
        max_attempts INTEGER NOT NULL DEFAULT 3,
        retry_after TEXT,
        timeout_seconds INTEGER NOT NULL DEFAULT 3600,
        created_at TEXT NOT NULL,
        assigned_at TEXT,
        started_at TEXT,
        completed_at TEXT,
        updated_at TEXT NOT NULL,
        created_by TEXT
    )
    """,
    f"""CREATE INDEX IF NOT EXISTS idx_{AGENT_TASKS_TABLE}_poll
        ON {AGENT_TASKS_TABLE} (agent_id, status, priority_rank, created_at)""",
    f"CREATE INDEX IF NOT EXISTS idx_{AGENT_TASKS_TABLE}_job ON {AGENT_TASKS_TABLE} (job_id)",
    f"CREATE INDEX IF NOT EXISTS idx_{AGENT_TASKS_TABLE}_status ON {AGENT_TASKS_TABLE} (status)",
    f"""
    CREATE TABLE IF NOT EXISTS {SCHEDULES_TABLE} (
        id TEXT PRIMARY KEY,
        job_id TEXT NOT NULL UNIQUE,
        type TEXT NOT NULL DEFAULT 'daily',
        time TEXT NOT NULL DEFAULT '00:00:00',
        timezone TEXT NOT NULL DEFAULT 'UTC',
        weekdays INTEGER,
        monthdays INTEGER,
        interval_hours INTEGER,
        cron_expression TEXT,
        window_start TEXT,
        window_end TEXT,
        max_runtime INTEGER NOT NULL DEFAULT 14400,
        blackout_periods TEXT,
        retry_on_failure INTEGER NOT NULL DEFAULT 1,
        max_retries INTEGER NOT NULL DEFAULT 3,
        retry_delay_minutes INTEGER NOT NULL DEFAULT 30,
        enabled INTEGER NOT NULL DEFAULT 1,
        next_run_at TEXT,
        last_run_at TEXT,
        last_run_status TEXT,
        last_queue_job_id TEXT,
        consecutive_failures INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    f"CREATE INDEX IF NOT EXISTS idx_{SCHEDULES_TABLE}_due ON {SCHEDULES_TABLE} (enabled, next_run_at)",
]


def apply_schema(conn: Any) -> None:
    """Create all backplane tables and indexes (idempotent)."""
    for statement in SCHEMA_STATEMENTS:
        conn.execute(statement)
    conn.commit()
    logger.debug("Applied %d schema statements", len(SCHEMA_STATEMENTS))


__all__ = [
    "AGENT_TASKS_TABLE",
    "JOBS_TABLE",
    "SCHEDULES_TABLE",
    "SCHEMA_STATEMENTS",
    "apply_schema",
]

"""
Backplane core: storage, errors, logging, settings and scheduling.

MODULE MAP
──────────
  errors.py        ─ BackplaneError hierarchy
  timestamps.py    ─ utc_now, ULIDs, ISO 8601 helpers
  settings.py      ─ BackplaneSettings (pydantic-settings)
  logging.py       ─ structlog configuration
  protocols.py     ─ Connection protocol
  sqlite_conn.py   ─ SQLite adapter
  orm/             ─ SQLAlchemy bridge for PostgreSQL
  connection.py    ─ create_connection(url)
  schema.py        ─ DDL for jobs, agent tasks and schedules
  repository.py    ─ BaseRepository
  cache.py         ─ progress cache (memory / redis)
  scheduling/      ─ schedule engine, scheduler loop, sweeper
"""

from backplane.core.connection import ConnectionInfo, create_connection
from backplane.core.errors import BackplaneError, ErrorCategory
from backplane.core.timestamps import generate_ulid, utc_now

__all__ = [
    "BackplaneError",
    "ConnectionInfo",
    "ErrorCategory",
    "create_connection",
    "generate_ulid",
    "utc_now",
]

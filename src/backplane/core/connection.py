"""Open the backplane store from a URL.

All processes share one store: the API opens a connection per request,
while the job worker, the scheduler loop and the sweeper each hold one for
their lifetime. SQLite serves single-host deployments and tests; PostgreSQL
(through :mod:`backplane.core.orm`) serves several hosts polling one queue.

Accepted values::

    None | "" | "memory" | ":memory:"      in-memory SQLite
    "sqlite:///var/lib/backplane.db"       SQLite file
    "backplane.db"                         SQLite file, relative to data_dir
    "postgresql://bp:pw@db:5432/backplane" PostgreSQL (also postgres://, +driver)

Example:
    >>> conn, info = create_connection("backplane.db", data_dir="~/.backplane", init_schema=True)
    >>> info
    ConnectionInfo(backend='sqlite', persistent=True, path='/home/ops/.backplane/backplane.db')
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from backplane.core.errors import ConfigError, DatabaseError
from backplane.core.sqlite_conn import SqliteConnection

logger = logging.getLogger(__name__)

_MEMORY_ALIASES = (None, "", "memory", ":memory:")
_POSTGRES_PREFIXES = ("postgresql://", "postgres://", "postgresql+", "postgres+")


@dataclass(frozen=True)
class ConnectionInfo:
    """What :func:`create_connection` opened."""

    backend: str
    persistent: bool
    url: str
    resolved_path: str | None = None

    def __repr__(self) -> str:
        where = f"path={self.resolved_path!r}" if self.resolved_path else f"url={self.url!r}"
        return f"ConnectionInfo(backend={self.backend!r}, persistent={self.persistent}, {where})"


def _parse_url(db: str | None) -> tuple[str, str]:
    """Split *db* into ``(scheme, target)``; scheme is memory, sqlite, file or postgresql."""
    if db in _MEMORY_ALIASES:
        return "memory", ":memory:"
    if db.startswith("sqlite://"):
        path = db.removeprefix("sqlite://").removeprefix("/")
        if path in ("", ":memory:"):
            return "memory", ":memory:"
        return "sqlite", path
    if db.startswith(_POSTGRES_PREFIXES):
        return "postgresql", db
    if "://" in db:
        raise ConfigError(f"Unsupported database URL scheme: {db.split('://', 1)[0]!r}")
    return "file", db


def _open_sqlite_file(target: str, data_dir: str | Path | None) -> tuple[SqliteConnection, ConnectionInfo]:
    path = Path(target).expanduser()
    if data_dir and not path.is_absolute():
        path = Path(data_dir).expanduser() / path
    path.parent.mkdir(parents=True, exist_ok=True)
    resolved = str(path.resolve())
    try:
        conn = SqliteConnection(resolved)
    except sqlite3.Error as e:
        raise DatabaseError(f"Cannot open SQLite database at {resolved}", cause=e) from e
    return conn, ConnectionInfo("sqlite", persistent=True, url=target, resolved_path=resolved)


def _open_postgresql(url: str) -> tuple[Any, ConnectionInfo]:
    from sqlalchemy.exc import SQLAlchemyError

    from backplane.core.orm.session import BackplaneSession, SAConnectionBridge, create_backplane_engine

    try:
        session = BackplaneSession(bind=create_backplane_engine(url))
        session.connection()
    except SQLAlchemyError as e:
        raise DatabaseError("Cannot connect to PostgreSQL", cause=e) from e
    return SAConnectionBridge(session), ConnectionInfo("postgresql", persistent=True, url=url)


def create_connection(
    db: str | None = None,
    *,
    init_schema: bool = False,
    data_dir: str | Path | None = None,
) -> tuple[Any, ConnectionInfo]:
    """Open a connection and describe it.

    Args:
        db: URL, bare path or memory alias (see module docstring).
        init_schema: Apply the idempotent backplane schema before returning.
        data_dir: Base directory for relative SQLite paths.

    Raises:
        ConfigError: Unsupported URL scheme.
        DatabaseError: The store could not be opened.
    """
    scheme, target = _parse_url(db)
    if scheme == "memory":
        conn, info = SqliteConnection(":memory:"), ConnectionInfo("sqlite", persistent=False, url=":memory:")
    elif scheme == "postgresql":
        conn, info = _open_postgresql(target)
    else:
        conn, info = _open_sqlite_file(target, data_dir)

    if init_schema:
        from backplane.core.schema import apply_schema

        apply_schema(conn)

    logger.debug("Opened %r", info)
    return conn, info

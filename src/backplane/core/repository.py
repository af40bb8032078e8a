"""Base repository for the durable store.

Provides :class:`BaseRepository`: a :class:`~backplane.core.protocols.Connection`
plus the helpers every backplane repository needs: driver errors wrapped in
:class:`~backplane.core.errors.DatabaseError`, conditional updates that
report how many rows they touched, and JSON column encoding.

Architecture::

    BaseRepository
      conn: Connection
      execute(sql, params)      → cursor        (DatabaseError on driver failure)
      update(sql, params)       → int rowcount  (commits)
      insert(table, data)       → None          (commits)
      select(columns, sql, ...) → list[row]
      dumps(value) / loads(text)

Conditional updates are the only way backplane moves a row between states.
``update()`` returns the rowcount so callers can distinguish "I won" (1)
from "someone else already moved it" (0).
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from backplane.core.errors import DatabaseError
from backplane.core.protocols import Connection

logger = logging.getLogger(__name__)

_DRIVER_ERRORS: tuple[type[Exception], ...] = (sqlite3.Error, SQLAlchemyError)


class BaseRepository:
    """Base class for data-access repositories.

    Parameters:
        conn: Any object satisfying the :class:`Connection` protocol.
    """

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    # -- Statement helpers -------------------------------------------------

    def execute(self, sql: str, params: tuple = ()) -> Any:
        """Execute a statement and return the raw cursor/result."""
        try:
            return self.conn.execute(sql, params)
        except _DRIVER_ERRORS as e:
            self._safe_rollback()
            raise DatabaseError(f"Statement failed: {e}", cause=e) from e

    def update(self, sql: str, params: tuple = ()) -> int:
        """Execute an UPDATE/DELETE, commit, and return the affected rowcount."""
        cursor = self.execute(sql, params)
        rowcount = cursor.rowcount
        self.commit()
        return rowcount

    def insert(self, table: str, data: dict[str, Any]) -> None:
        """Insert a single row from a dict and commit."""
        columns = list(data.keys())
        placeholders = ", ".join("?" for _ in columns)
        self.execute(
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
            tuple(data.values()),
        )
        self.commit()

    def select(self, sql: str, params: tuple = ()) -> list[Any]:
        """Execute a SELECT and return all rows."""
        self.execute(sql, params)
        try:
            return list(self.conn.fetchall())
        except _DRIVER_ERRORS as e:
            raise DatabaseError(f"Fetch failed: {e}", cause=e) from e

    def select_one(self, sql: str, params: tuple = ()) -> Any | None:
        """Execute a SELECT and return the first row (or ``None``)."""
        self.execute(sql, params)
        try:
            return self.conn.fetchone()
        except _DRIVER_ERRORS as e:
            raise DatabaseError(f"Fetch failed: {e}", cause=e) from e

    def commit(self) -> None:
        try:
            self.conn.commit()
        except _DRIVER_ERRORS as e:
            self._safe_rollback()
            raise DatabaseError(f"Commit failed: {e}", cause=e) from e

    def _safe_rollback(self) -> None:
        try:
            self.conn.rollback()
        except _DRIVER_ERRORS:
            logger.warning("Rollback after failed statement also failed", exc_info=True)

    # -- JSON columns ------------------------------------------------------

    @staticmethod
    def dumps(value: Any) -> str | None:
        if value is None:
            return None
        return json.dumps(value, default=str)

    @staticmethod
    def loads(raw: Any) -> Any:
        if raw is None or raw == "":
            return None
        if isinstance(raw, (dict, list)):
            return raw
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            return raw

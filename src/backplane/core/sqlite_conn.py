"""SQLite adapter for the :class:`~backplane.core.protocols.Connection` protocol.

File databases are switched to WAL so API requests can read while a
worker or the sweeper holds the write lock; writers wait up to
``timeout`` seconds for that lock instead of failing a claim outright.
"""

from __future__ import annotations

import sqlite3
from typing import Any


class SqliteConnection:
    """One ``sqlite3`` connection with a single shared cursor.

    ``execute`` returns the cursor, whose ``rowcount`` tells a conditional
    update whether it matched. Open one adapter per thread of work; the
    connection is created with ``check_same_thread=False`` only so an API
    request can be served on a different threadpool thread than the one
    that opened it.
    """

    def __init__(self, path: str = ":memory:", *, timeout: float = 30.0) -> None:
        self.path = path
        self._conn = sqlite3.connect(path, timeout=timeout, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        if path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(f"PRAGMA busy_timeout={int(timeout * 1000)}")
        self._cursor = self._conn.cursor()

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        return self._cursor.execute(sql, params)

    def executemany(self, sql: str, params: list[tuple]) -> sqlite3.Cursor:
        return self._cursor.executemany(sql, params)

    def fetchone(self) -> Any:
        return self._cursor.fetchone()

    def fetchall(self) -> list[Any]:
        return self._cursor.fetchall()

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()

    def __repr__(self) -> str:
        return f"SqliteConnection({self.path!r})"

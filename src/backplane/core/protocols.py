"""
Connection protocol shared by every repository in backplane.

Repositories depend on this shape only, so the same SQL runs on the SQLite
adapter and on the SQLAlchemy bridge used for PostgreSQL. Statements are
written with ``?`` placeholders; ``execute`` returns an object exposing
``rowcount`` so conditional updates can tell whether they won.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Connection(Protocol):
    """Minimal synchronous database connection.

    Satisfied by :class:`~backplane.core.sqlite_conn.SqliteConnection` and
    :class:`~backplane.core.orm.session.SAConnectionBridge`.
    """

    def execute(self, sql: str, params: tuple = ()) -> Any:
        """Execute a statement; the return value exposes ``rowcount``."""
        ...

    def executemany(self, sql: str, params: list[tuple]) -> Any:
        """Execute a statement once per parameter tuple."""
        ...

    def fetchone(self) -> Any:
        """Fetch one row from the last statement (or ``None``)."""
        ...

    def fetchall(self) -> list[Any]:
        """Fetch all remaining rows from the last statement."""
        ...

    def commit(self) -> None:
        """Commit the current transaction."""
        ...

    def rollback(self) -> None:
        """Roll back the current transaction."""
        ...

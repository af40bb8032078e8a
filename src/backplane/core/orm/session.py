"""SQLAlchemy access to the store.

Repositories speak plain SQL with ``?`` placeholders through the
:class:`~backplane.core.protocols.Connection` protocol. On PostgreSQL that
protocol is served by :class:`SAConnectionBridge`, which rewrites the
placeholders into SQLAlchemy named parameters and reports ``rowcount`` of
the last statement so conditional claims keep working unchanged.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

_PLACEHOLDER = re.compile(r"\?")


def create_backplane_engine(url: str, *, echo: bool = False, **kwargs: Any) -> Engine:
    """Engine for *url*; pooled connections are pinged before reuse.

    ``sqlite://`` URLs are accepted so the bridge can be exercised without a
    server.
    """
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        kwargs.setdefault("pool_pre_ping", True)
    return create_engine(url, echo=echo, **kwargs)


class BackplaneSession(Session):
    """Session that keeps loaded attributes after commit."""

    def __init__(self, bind: Engine | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("expire_on_commit", False)
        super().__init__(bind=bind, **kwargs)


def _named(sql: str, params: Sequence[Any]) -> tuple[str, dict[str, Any]]:
    counter = iter(range(len(params)))
    named_sql = _PLACEHOLDER.sub(lambda _m: f":p{next(counter)}", sql)
    return named_sql, {f"p{i}": value for i, value in enumerate(params)}


class SAConnectionBridge:
    """``Connection`` protocol on top of a SQLAlchemy ``Session``."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self._result: Any = None

    def execute(self, sql: str, params: Sequence[Any] = ()) -> SAConnectionBridge:
        if params:
            named_sql, bound = _named(sql, params)
            self._result = self.session.execute(text(named_sql), bound)
        else:
            self._result = self.session.execute(text(sql))
        return self

    def executemany(self, sql: str, params: Sequence[Sequence[Any]]) -> SAConnectionBridge:
        for row in params:
            self.execute(sql, row)
        return self

    def fetchone(self) -> tuple[Any, ...] | None:
        row = self._result.fetchone() if self._result is not None else None
        return tuple(row) if row is not None else None

    def fetchall(self) -> list[tuple[Any, ...]]:
        if self._result is None:
            return []
        return [tuple(row) for row in self._result.fetchall()]

    @property
    def rowcount(self) -> int:
        return self._result.rowcount if self._result is not None else 0

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    def close(self) -> None:
        self.session.close()

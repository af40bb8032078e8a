"""
FastAPI dependency injection: shared singletons and per-request factories.

Usage in routers::

    from backplane.api.deps import AgentId, Dispatcher

    @router.get("/tasks")
    def poll(agent_id: AgentId, dispatcher: Dispatcher):
        ...

Manifesto:
    Dependency injection keeps routers thin. Singletons (settings, the
    progress cache) are created once; per-request objects (connection,
    queue, dispatcher, agent identity) live for one request.
"""

from __future__ import annotations

from collections.abc import Generator
from functools import lru_cache
from typing import Annotated, Any

from fastapi import Depends, Header, HTTPException, Query

from backplane.api.settings import BackplaneAPISettings
from backplane.core.cache import CacheBackend, create_cache
from backplane.core.connection import create_connection
from backplane.core.errors import AuthError
from backplane.execution.dispatcher import AgentTaskDispatcher
from backplane.execution.queue import JobQueue

# ── Settings (singleton) ─────────────────────────────────────────────────


@lru_cache(maxsize=1)
def get_settings() -> BackplaneAPISettings:
    """Cached settings, loaded once per process."""
    return BackplaneAPISettings()


# ── Progress cache (singleton per settings) ──────────────────────────────

_caches: dict[tuple[str, int], CacheBackend] = {}


def get_cache(
    settings: Annotated[BackplaneAPISettings, Depends(get_settings)],
) -> CacheBackend:
    """Process-wide cache; an in-memory cache must outlive single requests."""
    key = (settings.cache_url, settings.cache_ttl_seconds)
    if key not in _caches:
        _caches[key] = create_cache(settings.cache_url, default_ttl_seconds=settings.cache_ttl_seconds)
    return _caches[key]


# ── Database connection (per-request) ────────────────────────────────────


def get_connection(
    settings: Annotated[BackplaneAPISettings, Depends(get_settings)],
) -> Generator[Any, None, None]:
    """Yield a database connection for the request lifespan."""
    conn, _info = create_connection(
        settings.database_url,
        data_dir=settings.data_dir,
    )
    try:
        yield conn
    finally:
        if hasattr(conn, "close"):
            conn.close()


# ── Services (per-request) ───────────────────────────────────────────────


def get_queue(
    conn: Annotated[Any, Depends(get_connection)],
    cache: Annotated[CacheBackend, Depends(get_cache)],
    settings: Annotated[BackplaneAPISettings, Depends(get_settings)],
) -> JobQueue:
    return JobQueue(conn, cache=cache, cache_ttl_seconds=settings.cache_ttl_seconds)


def get_dispatcher(
    conn: Annotated[Any, Depends(get_connection)],
    queue: Annotated[JobQueue, Depends(get_queue)],
) -> AgentTaskDispatcher:
    return AgentTaskDispatcher(conn, job_queue=queue)


# ── Agent identity (per-request) ─────────────────────────────────────────


def get_agent_id(
    x_agent_id: Annotated[str | None, Header(description="Agent id set by the identity boundary")] = None,
    agent: Annotated[str | None, Query(description="Agent id (poll call only)")] = None,
) -> str:
    """Resolve the calling agent.

    The header is set by the mTLS/identity boundary in front of the API;
    the ``agent`` query parameter is accepted for the poll call. Both
    present and different → 403; neither → 401.
    """
    if x_agent_id and agent and x_agent_id != agent:
        raise AuthError(f"Agent {agent} does not match authenticated identity").with_context(
            agent_id=x_agent_id
        )
    agent_id = x_agent_id or agent
    if not agent_id:
        raise HTTPException(status_code=401, detail="Agent identity required")
    return agent_id


# ── Convenience type aliases ─────────────────────────────────────────────

Settings = Annotated[BackplaneAPISettings, Depends(get_settings)]
Conn = Annotated[Any, Depends(get_connection)]
Queue = Annotated[JobQueue, Depends(get_queue)]
Dispatcher = Annotated[AgentTaskDispatcher, Depends(get_dispatcher)]
AgentId = Annotated[str, Depends(get_agent_id)]

"""
Low-latency cache for job progress projections.

Agents report progress far more often than anyone needs a durable record
of it, and callers poll progress far more often than the store should be
hit. The job queue therefore writes a short-lived projection of each job to
a cache on every mutation and serves ``get_progress_info`` from it.

The cache is advisory: the durable row is authoritative, entries expire,
and losing the cache only makes a progress read stale until the next
mutation or the next durable fallback.

Architecture:
    ::

        CacheBackend (Protocol)
        ├── InMemoryCache  — single process, bounded LRU with TTL
        └── RedisCache     — shared across workers, API and agents' gateway

        API: get(key) → value | None
             set(key, value, ttl_seconds=None)
             delete(key)

        create_cache("memory" | "redis://host:6379/0", default_ttl_seconds)

Examples:
    >>> from backplane.core.cache import InMemoryCache
    >>> cache = InMemoryCache(max_size=100, default_ttl_seconds=60)
    >>> cache.set("backplane:job:01HX:progress", {"progress": 40})
    >>> cache.get("backplane:job:01HX:progress")
    {'progress': 40}

Tags:
    cache, redis, in-memory, ttl, backplane, protocol
"""

from __future__ import annotations

import json
import threading
import time
from collections import OrderedDict
from typing import Any, Protocol

import redis


class CacheBackend(Protocol):
    """Protocol for cache backend implementations.

    Keys are strings, values are JSON-serializable.
    """

    def get(self, key: str) -> Any | None:
        """Cached value, or ``None`` if missing or expired."""
        ...

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        """Store a value; ``ttl_seconds=None`` uses the backend default."""
        ...

    def delete(self, key: str) -> None:
        """Remove a key (no-op when absent)."""
        ...


# ------------------------------------------------------------------ #
# In-Memory Cache
# ------------------------------------------------------------------ #


class InMemoryCache:
    """Bounded in-memory cache with TTL support.

    Uses LRU eviction when ``max_size`` is reached. Thread-safe within one
    process; not shared between processes.
    """

    def __init__(
        self,
        *,
        max_size: int = 10_000,
        default_ttl_seconds: int | None = 300,
    ):
        self._store: OrderedDict[str, tuple[Any, float | None]] = OrderedDict()
        self._max_size = max_size
        self._default_ttl = default_ttl_seconds
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and time.time() > expires_at:
                del self._store[key]
                return None
            self._store.move_to_end(key)
            return value

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        expires_at = (time.time() + ttl) if ttl else None
        with self._lock:
            if key not in self._store and len(self._store) >= self._max_size:
                self._store.popitem(last=False)
            self._store[key] = (value, expires_at)
            self._store.move_to_end(key)

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)


# ------------------------------------------------------------------ #
# Redis Cache
# ------------------------------------------------------------------ #


class RedisCache:
    """Redis-backed cache shared by every backplane process.

    Values are stored as JSON.

    Example:
        cache = RedisCache("redis://localhost:6379/0", default_ttl_seconds=300)
        cache.set("backplane:job:01HX:progress", {"progress": 10})
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        *,
        default_ttl_seconds: int | None = 300,
        client: Any | None = None,
    ):
        self._client = client if client is not None else redis.from_url(url, decode_responses=False)
        self._default_ttl = default_ttl_seconds

    def get(self, key: str) -> Any | None:
        raw = self._client.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        serialized = json.dumps(value, default=str)
        if ttl:
            self._client.setex(key, ttl, serialized)
        else:
            self._client.set(key, serialized)

    def delete(self, key: str) -> None:
        self._client.delete(key)


def create_cache(url: str | None = "memory", *, default_ttl_seconds: int | None = 300) -> CacheBackend:
    """Build a cache from a URL: ``memory`` (or empty) or ``redis://...``."""
    if not url or url == "memory":
        return InMemoryCache(default_ttl_seconds=default_ttl_seconds)
    if url.startswith(("redis://", "rediss://", "unix://")):
        return RedisCache(url, default_ttl_seconds=default_ttl_seconds)
    from backplane.core.errors import ConfigError

    raise ConfigError(f"Unsupported cache URL: {url!r}")


__all__ = [
    "CacheBackend",
    "InMemoryCache",
    "RedisCache",
    "create_cache",
]

"""Handler Registry: job type → handler lookup.

Manifesto:
The job worker claims a job and must resolve its ``type`` (e.g.
``"backup_run"``) to a callable. The registry decouples registration (at
startup) from resolution (at claim time) and supports both a global
singleton and injectable instances for testing.

ARCHITECTURE
────────────
::

    HandlerRegistry
      ├── .register(job_type, handler)  ─ store handler
      ├── .get(job_type)                ─ lookup (HandlerNotFoundError)
      ├── .has(job_type)                ─ existence check
      └── .list_handlers()              ─ registered types with descriptions

    register_handler(job_type)   ─ decorator on the global registry
    get_default_registry()       ─ module-level singleton
    reset_default_registry()     ─ clear for testing

A handler is ``Callable[[Job], Any]``. Its return value becomes the job
result, except for :data:`~backplane.execution.handlers.AWAIT_TASKS`,
which leaves the job running until the sweeper settles it.

Tags:
    backplane, execution, registry, handler-registry, lookup
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from backplane.core.errors import HandlerNotFoundError

JobHandler = Callable[[Any], Any]


class HandlerRegistry:
    """Injectable handler registry.

    Example:
        >>> registry = HandlerRegistry()
        >>>
        >>> @register_handler("prune_snapshots", registry=registry)
        ... def prune(job):
        ...     return {"pruned": 3}
        >>>
        >>> registry.get("prune_snapshots")(job)
        {'pruned': 3}
    """

    def __init__(self):
        self._handlers: dict[str, JobHandler] = {}
        self._descriptions: dict[str, str | None] = {}

    def register(self, job_type: str, handler: JobHandler, description: str | None = None) -> None:
        """Register *handler* for *job_type*, replacing any previous one."""
        self._handlers[job_type] = handler
        self._descriptions[job_type] = description

    def get(self, job_type: str) -> JobHandler:
        """Get the handler for *job_type*.

        Raises:
            HandlerNotFoundError: If nothing is registered for it.
        """
        if job_type not in self._handlers:
            available = sorted(self._handlers)
            raise HandlerNotFoundError(
                f"No handler registered for job type {job_type!r}. Available: {available or 'none'}"
            )
        return self._handlers[job_type]

    def has(self, job_type: str) -> bool:
        return job_type in self._handlers

    def list_handlers(self) -> list[dict[str, Any]]:
        return [
            {"type": job_type, "description": self._descriptions.get(job_type)}
            for job_type in sorted(self._handlers)
        ]

    def unregister(self, job_type: str) -> bool:
        if job_type in self._handlers:
            del self._handlers[job_type]
            self._descriptions.pop(job_type, None)
            return True
        return False

    def clear(self) -> None:
        """Clear all handlers (for testing)."""
        self._handlers.clear()
        self._descriptions.clear()


# === GLOBAL DEFAULT REGISTRY ===

_default_registry: HandlerRegistry | None = None


def get_default_registry() -> HandlerRegistry:
    """Get the global default registry.

    Creates it lazily on first access.
    """
    global _default_registry
    if _default_registry is None:
        _default_registry = HandlerRegistry()
    return _default_registry


def reset_default_registry() -> None:
    """Reset the global registry (for testing)."""
    global _default_registry
    _default_registry = None


def register_handler(
    job_type: str,
    registry: HandlerRegistry | None = None,
    description: str | None = None,
):
    """Decorator to register a job handler.

    Example:
        >>> @register_handler("verify_archive")
        ... def verify_archive(job):
        ...     return {"verified": True}
    """
    target = registry or get_default_registry()

    def decorator(func: JobHandler) -> JobHandler:
        target.register(job_type, func, description=description or func.__doc__)
        return func

    return decorator

"""
Structured logging for backplane processes.

Library modules log through ``logging.getLogger(__name__)``; the API and
CLI log through :func:`get_logger`. :func:`configure_logging` installs a
single root handler whose ``ProcessorFormatter`` renders both kinds of
records with the same processors, so a worker's stdlib ``logger.info`` and
an API ``log.info("request_failed", ...)`` land in one stream with the same
fields.

Processors::

    merge_contextvars     ← log_context(job_id=..., request_id=...)
    add_log_level
    add_logger_name
    TimeStamper(iso, utc)
    _add_service          ← service="backplane-worker" etc.
    JSONRenderer | ConsoleRenderer   (JSON when stdout is not a tty)

Example:
    >>> configure_logging("DEBUG", json_format=False, service="backplane-sweeper")
    >>> with log_context(job_id="01HX..."):
    ...     logging.getLogger("backplane.execution.worker").info("claimed")
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import EventDict, Processor

_service = "backplane"


def _add_service(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", _service)
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_service,
    ]


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "backplane",
) -> None:
    """Route structlog and stdlib logging through one formatter.

    Args:
        level: Root log level name.
        json_format: ``None`` picks JSON unless stdout is a terminal.
        service: Value of the ``service`` field on every event.
    """
    global _service
    _service = service

    if json_format is None:
        json_format = not sys.stdout.isatty()

    renderer: Processor
    if json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            *_shared_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    tail: list[Processor] = [structlog.stdlib.ProcessorFormatter.remove_processors_meta]
    if json_format:
        tail.append(structlog.processors.format_exc_info)
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_processors(),
        processors=[*tail, renderer],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level.upper())


def get_logger(name: str | None = None) -> Any:
    """A structlog logger bound to *name*."""
    return structlog.get_logger(name)


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Add *fields* to every event logged inside the block, stdlib ones included."""
    tokens = structlog.contextvars.bind_contextvars(**fields)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)


__all__ = ["configure_logging", "get_logger", "log_context"]

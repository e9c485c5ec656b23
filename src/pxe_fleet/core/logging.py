"""
Structured logging for pxe-fleet.

One structlog configuration shared by the API server, the scheduler thread
and the CLI, so scheduler ticks, claims and broadcast drops all land in the
same stream with the same field names.

Architecture:
    ::

        configure_logging(level, json_format, service, instance_id)
            │
            ▼
        structlog processor chain:
          1. TimeStamper(iso, utc)
          2. merge_contextvars       (deployment_id, connection_id, ...)
          3. add_log_level
          4. _stamp_service          (service.name, service.instance.id)
          5. _to_ecs_fields          (JSON only: @timestamp, log.level, log.logger)
          6. JSONRenderer | ConsoleRenderer

        stdlib loggers (scheduler, repository, simulator) are routed to the
        same stdout stream at the same level.

Examples:
    >>> from pxe_fleet.core.logging import configure_logging, get_logger
    >>> configure_logging(level="INFO", json_format=True, instance_id="sched-a")
    >>> log = get_logger(__name__)
    >>> log.info("observer_connected", connection_id="conn_1")

    Scoped context:

    >>> async with LogContext(connection_id="conn_1"):
    ...     log.info("observer_client_left")
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_service: dict[str, str] = {"service.name": "pxe-fleet"}

# Keys renamed for Elasticsearch / ECS ingestion
_ECS_FIELDS = {
    "timestamp": "@timestamp",
    "level": "log.level",
    "logger_name": "log.logger",
}


def _stamp_service(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    for key, value in _service.items():
        event_dict.setdefault(key, value)
    return event_dict


def _to_ecs_fields(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    for key, ecs_key in _ECS_FIELDS.items():
        if key in event_dict:
            event_dict[ecs_key] = event_dict.pop(key)
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "pxe-fleet",
    instance_id: str | None = None,
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON lines, False for console, None to pick
            JSON whenever stdout is not a terminal
        service: Value of ``service.name`` on every line
        instance_id: Scheduler instance, stamped as ``service.instance.id``
    """
    _service.clear()
    _service["service.name"] = service
    if instance_id:
        _service["service.instance.id"] = instance_id

    if json_format is None:
        json_format = not sys.stdout.isatty()
    numeric_level = getattr(logging, level.upper())

    processors: list[Processor] = [
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _stamp_service,
    ]
    if json_format:
        processors += [
            structlog.processors.format_exc_info,
            _to_ecs_fields,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level, force=True)


def get_logger(name: str | None = None) -> Any:
    """Structured logger; ``name`` (usually ``__name__``) is bound as ``logger_name``."""
    # PrintLogger has no name of its own; "logger" is taken by wrap_logger
    if name:
        return structlog.get_logger(logger_name=name)
    return structlog.get_logger()


def bind_context(**kwargs: Any) -> None:
    """Bind key/values to every later structlog line in this context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Drop everything bound through :func:`bind_context` or :class:`LogContext`."""
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Bind key/values to every structlog line inside the block.

    Works as a sync or async context manager; keys are unbound on exit.
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        structlog.contextvars.bind_contextvars(**self._context)
        return self

    def __exit__(self, *args: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self._context)

    async def __aenter__(self) -> LogContext:
        return self.__enter__()

    async def __aexit__(self, *args: Any) -> None:
        self.__exit__(*args)


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]

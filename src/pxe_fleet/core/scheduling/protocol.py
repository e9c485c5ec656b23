"""Timing backends for the deployment scheduler.

A backend only decides *when* ``DeploymentScheduler.tick`` runs; the
scheduler decides what a tick does (list due rows, claim, signal, publish)::

    ThreadSchedulerBackend ──every N s──► tick()
    test double            ──by hand────► tick()

The progress simulator is paced by a backend of the same kind.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from pxe_fleet.core.timestamps import to_iso8601

TickCallback = Callable[[], Any]


@runtime_checkable
class SchedulerBackend(Protocol):
    name: str

    def start(self, tick_callback: TickCallback, interval_seconds: float = 60.0) -> None:
        """Call ``tick_callback`` every ``interval_seconds`` off the request path."""
        ...

    def stop(self) -> None:
        """Stop ticking; an in-flight tick is allowed to finish."""
        ...

    def health(self) -> dict[str, Any]:
        """At least ``healthy`` and ``backend``; see :class:`BackendHealth`."""
        ...


@dataclass
class BackendHealth:
    healthy: bool
    backend: str
    interval_seconds: float
    tick_count: int = 0
    failed_ticks: int = 0
    last_tick: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "interval_seconds": self.interval_seconds,
            "tick_count": self.tick_count,
            "failed_ticks": self.failed_ticks,
            "last_tick": to_iso8601(self.last_tick),
            "last_error": self.last_error,
        }

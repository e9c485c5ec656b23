"""Deployment scheduling package for pxe-fleet.

Manifesto:
    Re-imaging a lab every night at 02:00 needs more than ``time.sleep()``
    in a loop. Two dashboard instances must not both fire the same
    deployment, a scheduler that was down over midnight must fire the
    missed run exactly once (not once per missed night), and a cancel
    racing a tick must win or lose cleanly. The scheduling package
    provides all three with a pluggable timing backend and one atomic
    claim in the store.

┌──────────────────────────────────────────────────────────────────────────────┐
│  PXE-FLEET SCHEDULER                                                          │
│                                                                               │
│  Quick Start:                                                                 │
│  ┌──────────────────────────────────────────────────────────────────────┐   │
│  │   from pxe_fleet.core.scheduling import create_scheduler             │   │
│  │   from pxe_fleet.core.models import DeploymentRequest, ScheduleType  │   │
│  │                                                                      │   │
│  │   scheduler = create_scheduler(conn, broadcaster, launcher)          │   │
│  │   scheduler.recover()                                                │   │
│  │   scheduler.start()                                                  │   │
│  │                                                                      │   │
│  │   scheduler.schedule(DeploymentRequest(                              │   │
│  │       device_id="lab-pc-07",                                         │   │
│  │       image_id="win11-23h2",                                         │   │
│  │       schedule_type=ScheduleType.RECURRING,                          │   │
│  │       recurring_pattern="0 2 * * *",                                 │   │
│  │   ))                                                                 │   │
│  └──────────────────────────────────────────────────────────────────────┘   │
│                                                                               │
│  Modules:                                                                     │
│  - cron            croniter wrapper: validate, next_occurrences             │
│  - state_machine   transition tables and guards                             │
│  - repository      SQLite store, atomic claim, compare-and-set              │
│  - service         DeploymentScheduler (tick / schedule / cancel / recover) │
│  - protocol        SchedulerBackend protocol                                │
│  - thread_backend  daemon-thread timing backend                             │
└──────────────────────────────────────────────────────────────────────────────┘

Guardrails:
    ❌ Firing a deployment after reading it, without a conditional write
    ✅ ``DeploymentRepository.claim()`` keyed on ``(status, next_run_at)``
    ❌ Computing the next occurrence from a stale ``next_run_at``
    ✅ Next occurrence strictly after ``max(last_run_at, now)``
    ❌ Constructing scheduler components individually
    ✅ ``create_scheduler(conn, broadcaster, launcher)`` factory function

Tags:
    pxe-fleet, scheduling, cron, claim, beat-as-poller, thread

Doc-Types:
    package-overview, architecture-map, module-index
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pxe_fleet.core.protocols import Connection, ExecutionLauncher

from .cron import CronValidation, next_occurrence, next_occurrences, validate

# Protocol
from .protocol import BackendHealth, SchedulerBackend

# Repository
from .repository import DeploymentRepository

# Service
from .service import DeploymentScheduler, SchedulerHealth, SchedulerStats, TickResult

# Backends
from .thread_backend import ThreadSchedulerBackend

if TYPE_CHECKING:
    from pxe_fleet.core.events.broadcaster import EventBroadcaster

__all__ = [
    # Cron
    "CronValidation",
    "validate",
    "next_occurrences",
    "next_occurrence",
    # Protocol
    "SchedulerBackend",
    "BackendHealth",
    # Backends
    "ThreadSchedulerBackend",
    # Repository
    "DeploymentRepository",
    # Service
    "DeploymentScheduler",
    "SchedulerStats",
    "SchedulerHealth",
    "TickResult",
    "create_scheduler",
]


def create_scheduler(
    conn: Connection,
    broadcaster: EventBroadcaster | None = None,
    launcher: ExecutionLauncher | None = None,
    interval_seconds: float = 60.0,
    instance_id: str | None = None,
) -> DeploymentScheduler:
    """Factory function to create a complete deployment scheduler.

    Args:
        conn: Database connection (schema already initialised)
        broadcaster: EventBroadcaster for dashboard events (optional)
        launcher: Execution signal receiver (optional)
        interval_seconds: Tick interval (default: 60s)
        instance_id: Identity of this scheduler instance

    Returns:
        Configured DeploymentScheduler

    Example:
        >>> scheduler = create_scheduler(conn, broadcaster, LoggingLauncher())
        >>> scheduler.start()
    """
    return DeploymentScheduler(
        backend=ThreadSchedulerBackend(),
        repository=DeploymentRepository(conn),
        broadcaster=broadcaster,
        launcher=launcher,
        interval_seconds=interval_seconds,
        instance_id=instance_id,
    )

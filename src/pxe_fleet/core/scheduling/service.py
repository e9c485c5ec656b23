"""Deployment scheduler - main orchestrator.

Manifesto:
    The DeploymentScheduler turns deployment requests into time-triggered
    executions and is the only writer of lifecycle transitions. It combines
    a timing backend, the deployment repository, the execution launcher and
    the event broadcaster. Scheduler instances share nothing but the store:
    the repository's atomic claim decides which instance fires a due
    deployment, and the loser skips it silently.

Tags:
    pxe-fleet, scheduling, orchestrator, beat-as-poller, claim, re-arm

Doc-Types:
    api-reference, architecture-diagram


┌──────────────────────────────────────────────────────────────────────────────┐
│  DEPLOYMENT SCHEDULER                                                         │
│                                                                               │
│   ┌─────────────────┐  ┌─────────────────┐  ┌──────────────┐  ┌───────────┐  │
│   │  Backend        │  │  Repository     │  │  Launcher    │  │ Broadcast │  │
│   │  (timing)       │  │  (data, claim)  │  │  (execution) │  │ (events)  │  │
│   └────────┬────────┘  └────────┬────────┘  └──────┬───────┘  └─────┬─────┘  │
│            ▼                    ▼                  ▼                ▼        │
│   ┌────────────────────────────────────────────────────────────────────────┐ │
│   │ tick(now)                                                              │ │
│   │   1. list_due(now)           scheduled AND next_run_at ≤ now          │ │
│   │   2. for each due deployment:                                         │ │
│   │      ├── next = next occurrence after max(last_run_at, now)  (cron)   │ │
│   │      ├── claim(id, next_run_at) ─► pending, progress 0, last_run_at   │ │
│   │      │     lost?  skip silently                                       │ │
│   │      ├── launcher.begin_execution(deployment)                         │ │
│   │      │     raised?  fail, or back to scheduled if recurring           │ │
│   │      └── activity log + publish                                       │ │
│   └────────────────────────────────────────────────────────────────────────┘ │
│                                                                               │
│   Requests:   schedule(request) · cancel(id) · recover()                      │
│   Callbacks:  start_execution · report_progress · finish_imaging ·           │
│               complete · fail   (+ task-run equivalents)                      │
│   Lifecycle:  start · stop · health · get_stats · reset_stats · status       │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from pxe_fleet.core.errors import (
    DeploymentNotFound,
    InvalidSchedule,
    InvalidTransition,
    StoreUnavailable,
    TaskRunNotFound,
)
from pxe_fleet.core.events import (
    ActivityEvent,
    DeploymentProgress,
    FleetEvent,
    PostDeploymentUpdate,
)
from pxe_fleet.core.models import (
    ActivityLog,
    ActivityType,
    Deployment,
    DeploymentRequest,
    DeploymentStatus,
    ScheduleType,
    TaskRun,
    TaskRunStatus,
    TaskType,
)
from pxe_fleet.core.protocols import ExecutionLauncher
from pxe_fleet.core.timestamps import ensure_utc, to_iso8601, utc_now

from . import cron, state_machine
from .protocol import BackendHealth, SchedulerBackend
from .repository import DeploymentRepository

if TYPE_CHECKING:
    from pxe_fleet.core.events.broadcaster import EventBroadcaster

logger = logging.getLogger(__name__)


@dataclass
class SchedulerStats:
    """Statistics for the scheduler service."""

    tick_count: int = 0
    schedules_processed: int = 0
    schedules_skipped: int = 0
    schedules_failed: int = 0
    ticks_aborted: int = 0
    last_tick: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick_count": self.tick_count,
            "schedules_processed": self.schedules_processed,
            "schedules_skipped": self.schedules_skipped,
            "schedules_failed": self.schedules_failed,
            "ticks_aborted": self.ticks_aborted,
            "last_tick": to_iso8601(self.last_tick),
            "last_error": self.last_error,
        }


@dataclass
class SchedulerHealth:
    """Health status for the scheduler service."""

    healthy: bool
    backend: BackendHealth | dict
    instance_id: str
    scheduled_count: int = 0
    active_count: int = 0
    last_tick: datetime | None = None
    stats: SchedulerStats = field(default_factory=SchedulerStats)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "healthy": self.healthy,
            "backend": self.backend.to_dict() if isinstance(self.backend, BackendHealth) else self.backend,
            "instance_id": self.instance_id,
            "scheduled_count": self.scheduled_count,
            "active_count": self.active_count,
            "last_tick": to_iso8601(self.last_tick),
            "stats": self.stats.to_dict(),
        }


@dataclass
class TickResult:
    """Outcome of one :meth:`DeploymentScheduler.tick`."""

    now: datetime
    due: int = 0
    fired: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    aborted: bool = False
    busy: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "now": to_iso8601(self.now),
            "due": self.due,
            "fired": list(self.fired),
            "skipped": list(self.skipped),
            "failed": list(self.failed),
            "aborted": self.aborted,
            "busy": self.busy,
            "error": self.error,
        }


class DeploymentScheduler:
    """Deployment lifecycle scheduler — beat-as-poller.

    Example:
        >>> scheduler = DeploymentScheduler(
        ...     backend=ThreadSchedulerBackend(),
        ...     repository=DeploymentRepository(conn),
        ...     broadcaster=EventBroadcaster(),
        ...     launcher=LoggingLauncher(),
        ... )
        >>> scheduler.schedule(DeploymentRequest(
        ...     device_id="dev-1",
        ...     image_id="img-win11",
        ...     schedule_type=ScheduleType.RECURRING,
        ...     recurring_pattern="0 2 * * *",
        ... ))
        >>> scheduler.start()
    """

    def __init__(
        self,
        backend: SchedulerBackend,
        repository: DeploymentRepository,
        broadcaster: EventBroadcaster | None = None,
        launcher: ExecutionLauncher | None = None,
        interval_seconds: float = 60.0,
        instance_id: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize scheduler service.

        Args:
            backend: Timing backend
            repository: Deployment store
            broadcaster: Event fan-out (optional for testing)
            launcher: Execution subsystem signal (optional; PXE clients
                      otherwise pick pending jobs up on boot)
            interval_seconds: Tick interval (default: 60s)
            instance_id: Identity of this scheduler instance in logs
            clock: Source of "now" (defaults to UTC wall clock)
        """
        self.backend = backend
        self.repository = repository
        self.broadcaster = broadcaster
        self.launcher = launcher
        self.interval = interval_seconds
        self.instance_id = instance_id or f"sched-{uuid.uuid4().hex[:8]}"
        self._clock = clock or utc_now

        self._stats = SchedulerStats()
        self._running = False
        self._tick_lock = threading.Lock()

    # === Lifecycle ===

    def start(self) -> None:
        """Start the backend tick loop."""
        if self._running:
            logger.warning("DeploymentScheduler already running")
            return

        logger.info(
            f"Starting DeploymentScheduler {self.instance_id} with {self.backend.name} backend "
            f"(interval={self.interval}s)"
        )
        self.backend.start(self.tick, self.interval)
        self._running = True

    def stop(self) -> None:
        """Stop the tick loop, waiting for an in-flight tick."""
        if not self._running:
            return

        logger.info("Stopping DeploymentScheduler...")
        self.backend.stop()
        self._running = False
        logger.info("DeploymentScheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if service is running."""
        return self._running

    @property
    def is_processing(self) -> bool:
        """True while a tick is in progress."""
        return self._tick_lock.locked()

    # === Scheduling requests ===

    def schedule(self, request: DeploymentRequest, now: datetime | None = None) -> Deployment:
        """Validate and persist a deployment request.

        Delayed and recurring requests are stored as ``scheduled`` with their
        first ``next_run_at``. Immediate requests are stored as ``pending``
        and the execution subsystem is signalled right away.

        Raises:
            InvalidSchedule: Missing ids, bad cron pattern, past
                ``scheduled_for`` or fields that do not fit the schedule type
        """
        now = self._now(now)
        schedule_type = self._validate_request(request, now)

        status = DeploymentStatus.SCHEDULED
        scheduled_for = ensure_utc(request.scheduled_for) if request.scheduled_for else None
        next_run_at: datetime | None = None
        last_run_at: datetime | None = None

        if schedule_type == ScheduleType.DELAYED:
            next_run_at = scheduled_for
        elif schedule_type == ScheduleType.RECURRING:
            next_run_at = cron.next_occurrence(request.recurring_pattern, now)  # type: ignore[arg-type]
            if next_run_at is None:
                raise InvalidSchedule(
                    "Cron pattern has no upcoming occurrence",
                    field="recurring_pattern",
                    value=request.recurring_pattern,
                )
        else:
            status = DeploymentStatus.PENDING
            last_run_at = now

        deployment = self.repository.create(
            Deployment(
                id=str(uuid.uuid4()),
                device_id=request.device_id,
                image_id=request.image_id,
                status=status,
                schedule_type=schedule_type,
                scheduled_for=scheduled_for,
                recurring_pattern=request.recurring_pattern if schedule_type == ScheduleType.RECURRING else None,
                last_run_at=last_run_at,
                next_run_at=next_run_at,
                created_by=request.created_by,
                created_at=now,
                updated_at=now,
            )
        )

        if schedule_type == ScheduleType.IMMEDIATE:
            logger.info(f"Deployment {deployment.id} created for immediate execution")
            self._record(
                deployment,
                ActivityType.DEPLOYMENT,
                f"Deployment started: device {deployment.device_id} - image {deployment.image_id}",
                now,
            )
            self._publish_progress(deployment)
            if not self._signal(deployment, now):
                deployment = self._require(deployment.id)
        else:
            logger.info(
                f"Deployment {deployment.id} scheduled ({schedule_type.value}), "
                f"next run at {to_iso8601(next_run_at)}"
            )
            self._record(
                deployment,
                ActivityType.INFO,
                f"Deployment scheduled for {to_iso8601(next_run_at)}",
                now,
            )
            self._publish_progress(deployment)
        return deployment

    def _validate_request(self, request: DeploymentRequest, now: datetime) -> ScheduleType:
        if not request.device_id:
            raise InvalidSchedule("device_id is required", field="device_id")
        if not request.image_id:
            raise InvalidSchedule("image_id is required", field="image_id")

        try:
            schedule_type = ScheduleType(request.schedule_type)
        except ValueError:
            raise InvalidSchedule(
                f"Unknown schedule type: {request.schedule_type}",
                field="schedule_type",
                value=request.schedule_type,
            ) from None

        if schedule_type == ScheduleType.DELAYED:
            if request.scheduled_for is None:
                raise InvalidSchedule("Delayed deployments require scheduled_for", field="scheduled_for")
            if request.recurring_pattern:
                raise InvalidSchedule(
                    "Delayed deployments cannot have a recurring pattern",
                    field="recurring_pattern",
                )
            if ensure_utc(request.scheduled_for) <= now:
                raise InvalidSchedule(
                    "scheduled_for must be in the future",
                    field="scheduled_for",
                    value=to_iso8601(request.scheduled_for),
                )

        elif schedule_type == ScheduleType.RECURRING:
            check = cron.validate(request.recurring_pattern)
            if not check.valid:
                raise InvalidSchedule(
                    f"Invalid cron pattern: {check.error}",
                    field="recurring_pattern",
                    value=request.recurring_pattern,
                )
            if request.scheduled_for is not None:
                raise InvalidSchedule(
                    "Recurring deployments are timed by their pattern, not scheduled_for",
                    field="scheduled_for",
                )

        elif request.scheduled_for is not None or request.recurring_pattern:
            raise InvalidSchedule("Immediate deployments take no schedule fields", field="schedule_type")

        return schedule_type

    def cancel(self, deployment_id: str, now: datetime | None = None) -> Deployment:
        """Cancel a non-terminal deployment.

        Idempotent: an already terminal deployment is returned unchanged.

        Raises:
            DeploymentNotFound: Unknown id
        """
        now = self._now(now)
        deployment = self._require(deployment_id)
        if deployment.status.is_terminal:
            logger.debug(f"Deployment {deployment_id} already {deployment.status.value}; cancel is a no-op")
            return deployment

        if self.repository.cancel(deployment_id, now):
            cancelled_tasks = self.repository.cancel_open_task_runs(deployment_id, now)
            deployment = self._require(deployment_id)
            logger.info(f"Cancelled deployment {deployment_id} ({cancelled_tasks} task run(s))")
            self._record(deployment, ActivityType.INFO, "Deployment cancelled", now)
            self._publish_progress(deployment)
            return deployment

        # Another writer finished or cancelled it between the read and the update
        return self._require(deployment_id)

    def recover(self, now: datetime | None = None) -> int:
        """Repair recurring schedules after a restart.

        A scheduled recurring row whose ``next_run_at`` is missing, not after
        its ``last_run_at``, or not an occurrence of its pattern gets the next
        occurrence after ``max(last_run_at, now)``. Rows that are merely due
        are left alone so the missed run fires once on the next tick.

        Returns:
            Number of deployments repaired
        """
        now = self._now(now)
        repaired = 0
        for deployment in self.repository.list_recurring_scheduled():
            pattern = deployment.recurring_pattern or ""
            current = deployment.next_run_at
            stale = (
                current is None
                or (deployment.last_run_at is not None and current <= deployment.last_run_at)
                or not cron.is_occurrence(pattern, current)
            )
            if not stale:
                continue

            reference = max(deployment.last_run_at or deployment.created_at, now)
            next_run_at = cron.next_occurrence(pattern, reference)
            if self.repository.update_next_run_at(deployment.id, current, next_run_at, now):
                repaired += 1
                logger.info(
                    f"Recovered deployment {deployment.id}: next run "
                    f"{to_iso8601(current)} -> {to_iso8601(next_run_at)}"
                )

        if repaired:
            logger.info(f"Recovery repaired {repaired} recurring deployment(s)")
        return repaired

    # === Tick Processing ===

    def tick(self, now: datetime | None = None) -> TickResult:
        """Single scheduler tick — claim and fire due deployments.

        Called by the backend at each interval (and directly by tests, the
        CLI and the API). Overlapping ticks on one instance are skipped.
        """
        now = self._now(now)
        result = TickResult(now=now)

        if not self._tick_lock.acquire(blocking=False):
            logger.info("Tick already in progress, skipping")
            result.busy = True
            return result

        try:
            self._stats.tick_count += 1
            self._stats.last_tick = now

            try:
                due = self.repository.list_due(now)
                result.due = len(due)
                if due:
                    logger.info(f"Found {len(due)} due deployment(s)")
                else:
                    logger.debug("No deployments due")

                for deployment in due:
                    self._fire(deployment, now, result)

            except StoreUnavailable as e:
                result.aborted = True
                result.error = str(e)
                self._stats.ticks_aborted += 1
                self._stats.last_error = str(e)
                logger.warning(f"Tick aborted, store unavailable: {e}")

            return result
        finally:
            self._tick_lock.release()

    def _fire(self, deployment: Deployment, now: datetime, result: TickResult) -> None:
        """Claim one due deployment and signal its execution."""
        next_run_at = None
        if deployment.is_recurring and deployment.recurring_pattern:
            reference = max(deployment.last_run_at or deployment.created_at, now)
            next_run_at = cron.next_occurrence(deployment.recurring_pattern, reference)

        won = self.repository.claim(
            deployment.id,
            deployment.next_run_at,
            fired_at=now,
            next_run_at=next_run_at,
        )
        if not won:
            logger.debug(f"Deployment {deployment.id} claimed elsewhere, skipping")
            self._stats.schedules_skipped += 1
            result.skipped.append(deployment.id)
            return

        claimed = self._require(deployment.id)
        self._stats.schedules_processed += 1
        result.fired.append(claimed.id)

        missed = (now - deployment.next_run_at).total_seconds() if deployment.next_run_at else 0.0
        logger.info(
            f"Fired deployment {claimed.id} for device {claimed.device_id} "
            f"(due {to_iso8601(deployment.next_run_at)}, late {missed:.0f}s)"
        )
        self._record(
            claimed,
            ActivityType.DEPLOYMENT,
            f"Scheduled deployment started: device {claimed.device_id} - image {claimed.image_id}",
            now,
        )
        if next_run_at is not None:
            self._record(claimed, ActivityType.INFO, f"Next recurring deployment scheduled for {to_iso8601(next_run_at)}", now)
        self._publish_progress(claimed)

        if not self._signal(claimed, now):
            result.failed.append(claimed.id)

    def _signal(self, deployment: Deployment, now: datetime) -> bool:
        """Tell the execution subsystem to begin. False if the launcher raised."""
        if self.launcher is None:
            logger.debug(f"No launcher configured; {deployment.id} waits for PXE boot")
            return True

        try:
            self.launcher.begin_execution(deployment)
            return True
        except Exception as e:
            logger.exception(f"Execution signal failed for deployment {deployment.id}: {e}")
            self._stats.schedules_failed += 1
            self._stats.last_error = str(e)
            changes = state_machine.signal_failed_changes(deployment, now, f"Execution signal failed: {e}")
            self._record(
                deployment,
                ActivityType.ERROR,
                f"Failed to start deployment execution: {e}",
                now,
            )
            # A cancel may have landed since the claim; it wins
            if self.repository.compare_and_set(deployment.id, DeploymentStatus.PENDING, **changes):
                updated = self._require(deployment.id)
                self._publish_progress(updated)
                if updated.status == DeploymentStatus.SCHEDULED:
                    logger.info(f"Recurring deployment {deployment.id} re-armed for {to_iso8601(updated.next_run_at)}")
            return False

    # === Execution callbacks ===

    def start_execution(self, deployment_id: str, now: datetime | None = None) -> Deployment:
        """pending → deploying."""
        now = self._now(now)
        deployment = self._require(deployment_id)
        state_machine.check_transition(deployment, DeploymentStatus.DEPLOYING)
        updated = self._apply(
            deployment,
            status=DeploymentStatus.DEPLOYING,
            started_at=now,
            error_message=None,
            updated_at=now,
        )
        self._record(updated, ActivityType.DEPLOYMENT, "Deployment imaging started", now)
        self._publish_progress(updated)
        return updated

    def report_progress(
        self,
        deployment_id: str,
        progress: int,
        message: str | None = None,
        now: datetime | None = None,
    ) -> Deployment:
        """Raise progress of a deploying deployment (never lowers it)."""
        now = self._now(now)
        deployment = self._require(deployment_id)
        state_machine.check_progress(deployment, progress)
        if not self.repository.update_progress(deployment_id, progress, now):
            current = self._require(deployment_id)
            raise InvalidTransition(
                f"Progress {progress} rejected (deployment is {current.status.value} at {current.progress})",
                current=current.status.value,
            ).with_context(deployment_id=deployment_id)

        updated = self._require(deployment_id)
        self._publish_progress(updated, message)
        return updated

    def finish_imaging(self, deployment_id: str, now: datetime | None = None) -> Deployment:
        """deploying → post_processing."""
        now = self._now(now)
        deployment = self._require(deployment_id)
        state_machine.check_transition(deployment, DeploymentStatus.POST_PROCESSING)
        updated = self._apply(deployment, status=DeploymentStatus.POST_PROCESSING, updated_at=now)
        self._record(updated, ActivityType.DEPLOYMENT, "Imaging finished, post-processing", now)
        self._publish_progress(updated)
        return updated

    def complete(self, deployment_id: str, now: datetime | None = None) -> Deployment:
        """post_processing → completed (recurring: back to scheduled)."""
        return self._finish(deployment_id, DeploymentStatus.COMPLETED, None, now)

    def fail(self, deployment_id: str, error: str | None = None, now: datetime | None = None) -> Deployment:
        """deploying | post_processing → failed (recurring: back to scheduled)."""
        return self._finish(deployment_id, DeploymentStatus.FAILED, error, now)

    def _finish(
        self,
        deployment_id: str,
        outcome: DeploymentStatus,
        error: str | None,
        now: datetime | None,
    ) -> Deployment:
        now = self._now(now)
        deployment = self._require(deployment_id)
        changes = state_machine.finish_changes(deployment, outcome, now, error)
        updated = self._apply(deployment, updated_at=now, **changes)

        if outcome == DeploymentStatus.COMPLETED:
            self._record(updated, ActivityType.DEPLOYMENT, "Deployment completed", now)
        else:
            self._record(updated, ActivityType.ERROR, f"Deployment failed: {updated.error_message}", now)

        if updated.status == DeploymentStatus.SCHEDULED:
            logger.info(f"Re-armed recurring deployment {updated.id} for {to_iso8601(updated.next_run_at)}")
        self._publish_progress(updated)
        return updated

    # === Task runs ===

    def add_task_run(
        self,
        deployment_id: str,
        task_type: TaskType | str,
        now: datetime | None = None,
    ) -> TaskRun:
        """Attach a pending post-deployment task run to a deployment."""
        now = self._now(now)
        deployment = self._require(deployment_id)
        if deployment.status.is_terminal:
            raise InvalidTransition(
                f"Cannot add tasks to a {deployment.status.value} deployment",
                current=deployment.status.value,
            ).with_context(deployment_id=deployment_id)
        try:
            kind = TaskType(task_type)
        except ValueError:
            raise InvalidSchedule(f"Unknown task type: {task_type}", field="task_type", value=task_type) from None

        task_run = self.repository.create_task_run(
            TaskRun(
                id=str(uuid.uuid4()),
                deployment_id=deployment_id,
                task_type=kind,
                status=TaskRunStatus.PENDING,
                created_at=now,
            )
        )
        self._publish_task(task_run)
        return task_run

    def start_task_run(self, task_run_id: str, now: datetime | None = None) -> TaskRun:
        now = self._now(now)
        task_run = self._require_task(task_run_id)
        state_machine.check_task_transition(task_run, TaskRunStatus.RUNNING)
        return self._apply_task(task_run, status=TaskRunStatus.RUNNING, started_at=now)

    def report_task_progress(self, task_run_id: str, progress: int) -> TaskRun:
        task_run = self._require_task(task_run_id)
        state_machine.check_task_progress(task_run, progress)
        if not self.repository.update_task_progress(task_run_id, progress):
            raise InvalidTransition(
                f"Task progress {progress} rejected", current=task_run.status.value
            ).with_context(task_run_id=task_run_id)
        updated = self._require_task(task_run_id)
        self._publish_task(updated)
        return updated

    def complete_task_run(self, task_run_id: str, now: datetime | None = None) -> TaskRun:
        now = self._now(now)
        task_run = self._require_task(task_run_id)
        state_machine.check_task_transition(task_run, TaskRunStatus.COMPLETED)
        return self._apply_task(task_run, status=TaskRunStatus.COMPLETED, completed_at=now)

    def fail_task_run(self, task_run_id: str, error: str | None = None, now: datetime | None = None) -> TaskRun:
        now = self._now(now)
        task_run = self._require_task(task_run_id)
        state_machine.check_task_transition(task_run, TaskRunStatus.FAILED)
        return self._apply_task(
            task_run,
            status=TaskRunStatus.FAILED,
            completed_at=now,
            error_message=error or "Task failed",
        )

    def list_task_runs(self, deployment_id: str) -> list[TaskRun]:
        self._require(deployment_id)
        return self.repository.list_task_runs(deployment_id)

    # === Health & Stats ===

    def health(self) -> SchedulerHealth:
        """Get scheduler health status."""
        backend_health = self.backend.health()
        return SchedulerHealth(
            healthy=self._running and backend_health.get("healthy", False),
            backend=backend_health,
            instance_id=self.instance_id,
            scheduled_count=self.repository.count(DeploymentStatus.SCHEDULED),
            active_count=len(self.repository.list_active()),
            last_tick=self._stats.last_tick,
            stats=self._stats,
        )

    def status(self) -> dict[str, Any]:
        """Lightweight status snapshot (running, processing, interval)."""
        return {
            "instance_id": self.instance_id,
            "is_running": self._running,
            "is_processing": self.is_processing,
            "interval_seconds": self.interval,
        }

    def get_stats(self) -> SchedulerStats:
        """Get scheduler statistics."""
        return self._stats

    def reset_stats(self) -> None:
        """Reset scheduler statistics."""
        self._stats = SchedulerStats()

    # === Private Helpers ===

    def _now(self, now: datetime | None) -> datetime:
        return ensure_utc(now) if now is not None else ensure_utc(self._clock())

    def _require(self, deployment_id: str) -> Deployment:
        deployment = self.repository.get(deployment_id)
        if deployment is None:
            raise DeploymentNotFound(deployment_id)
        return deployment

    def _require_task(self, task_run_id: str) -> TaskRun:
        task_run = self.repository.get_task_run(task_run_id)
        if task_run is None:
            raise TaskRunNotFound(task_run_id)
        return task_run

    def _apply(self, deployment: Deployment, **changes: Any) -> Deployment:
        """Compare-and-set against the status that was checked."""
        if not self.repository.compare_and_set(deployment.id, deployment.status, **changes):
            current = self._require(deployment.id)
            target = changes.get("status")
            raise InvalidTransition(
                f"Deployment changed concurrently (now {current.status.value})",
                current=current.status.value,
                target=target.value if target is not None else None,
            ).with_context(deployment_id=deployment.id)
        return self._require(deployment.id)

    def _apply_task(self, task_run: TaskRun, **changes: Any) -> TaskRun:
        if not self.repository.task_compare_and_set(task_run.id, task_run.status, **changes):
            current = self._require_task(task_run.id)
            raise InvalidTransition(
                f"Task run changed concurrently (now {current.status.value})",
                current=current.status.value,
            ).with_context(task_run_id=task_run.id)
        updated = self._require_task(task_run.id)
        self._publish_task(updated)
        return updated

    def _record(self, deployment: Deployment, kind: ActivityType, message: str, now: datetime) -> None:
        entry = self.repository.add_activity(
            ActivityLog(
                id=str(uuid.uuid4()),
                type=kind,
                message=message,
                timestamp=now,
                device_id=deployment.device_id,
                deployment_id=deployment.id,
            )
        )
        self._publish(
            ActivityEvent(
                message=entry.message,
                type=entry.type.value,
                device_id=entry.device_id,
                deployment_id=entry.deployment_id,
                activity_id=entry.id,
                timestamp=now,
            )
        )

    def _publish_progress(self, deployment: Deployment, message: str | None = None) -> None:
        self._publish(
            DeploymentProgress(
                deployment_id=deployment.id,
                progress=deployment.progress,
                status=deployment.status.value,
                device_id=deployment.device_id,
                message=message,
            )
        )

    def _publish_task(self, task_run: TaskRun) -> None:
        self._publish(
            PostDeploymentUpdate(
                deployment_id=task_run.deployment_id,
                task_run_id=task_run.id,
                task_type=task_run.task_type.value,
                status=task_run.status.value,
                progress=task_run.progress,
                error_message=task_run.error_message,
            )
        )

    def _publish(self, event: FleetEvent) -> None:
        if self.broadcaster is not None:
            self.broadcaster.publish(event)

"""Deployment and task-run state machines.

Manifesto:
    Every status change in the system is checked here before it is
    persisted. The repository then applies it as a compare-and-set on the
    status that was checked, so a concurrent writer can never slip an
    illegal move past the table below.

Deployment transitions::

    scheduled ──► pending ──► deploying ──► post_processing ──► completed
        │            │            │                │
        │            │            └──► failed ◄────┘
        └────────────┴────────────┴────────────────┴──► cancelled

    Recurring re-arm: completed / failed on a recurring deployment is
    persisted as ``scheduled`` with a recomputed ``next_run_at``. Only
    ``cancelled`` ends a recurring schedule.

    Signal failure: a pending deployment whose execution could not be
    started is failed, or put back to ``scheduled`` if it recurs.

Guards:
    - entering ``deploying`` requires progress == 0
    - entering ``completed`` requires progress == 100
    - progress only moves forward, and only while ``deploying``

Task runs::

    pending ──► running ──► completed | failed
       └───────────┴──► cancelled

Tags:
    pxe-fleet, scheduling, state-machine, transitions

Doc-Types:
    api-reference, architecture-diagram
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pxe_fleet.core.errors import InvalidTransition
from pxe_fleet.core.models import (
    TERMINAL_STATUSES,
    Deployment,
    DeploymentStatus,
    TaskRun,
    TaskRunStatus,
)

from . import cron

_D = DeploymentStatus

DEPLOYMENT_TRANSITIONS: dict[DeploymentStatus, frozenset[DeploymentStatus]] = {
    _D.SCHEDULED: frozenset({_D.PENDING, _D.CANCELLED}),
    _D.PENDING: frozenset({_D.DEPLOYING, _D.CANCELLED}),
    _D.DEPLOYING: frozenset({_D.POST_PROCESSING, _D.FAILED, _D.CANCELLED}),
    _D.POST_PROCESSING: frozenset({_D.COMPLETED, _D.FAILED, _D.CANCELLED}),
    _D.COMPLETED: frozenset(),
    _D.FAILED: frozenset(),
    _D.CANCELLED: frozenset(),
}

_T = TaskRunStatus

TASK_RUN_TRANSITIONS: dict[TaskRunStatus, frozenset[TaskRunStatus]] = {
    _T.PENDING: frozenset({_T.RUNNING, _T.CANCELLED}),
    _T.RUNNING: frozenset({_T.COMPLETED, _T.FAILED, _T.CANCELLED}),
    _T.COMPLETED: frozenset(),
    _T.FAILED: frozenset(),
    _T.CANCELLED: frozenset(),
}

NON_TERMINAL_STATUSES = frozenset(DeploymentStatus) - TERMINAL_STATUSES


def can_transition(current: DeploymentStatus, target: DeploymentStatus) -> bool:
    """True when ``current -> target`` is in the deployment transition table."""
    return target in DEPLOYMENT_TRANSITIONS[current]


def check_transition(deployment: Deployment, target: DeploymentStatus) -> None:
    """Raise :class:`InvalidTransition` unless ``deployment`` may enter ``target``."""
    current = deployment.status
    if not can_transition(current, target):
        raise InvalidTransition(
            f"Cannot move deployment from {current.value} to {target.value}",
            current=current.value,
            target=target.value,
        ).with_context(deployment_id=deployment.id, device_id=deployment.device_id)

    if target == _D.DEPLOYING and deployment.progress != 0:
        raise InvalidTransition(
            f"Deployment must be at progress 0 to start deploying (at {deployment.progress})",
            current=current.value,
            target=target.value,
        ).with_context(deployment_id=deployment.id)

    if target == _D.COMPLETED and deployment.progress != 100:
        raise InvalidTransition(
            f"Deployment must be at progress 100 to complete (at {deployment.progress})",
            current=current.value,
            target=target.value,
        ).with_context(deployment_id=deployment.id)


def check_progress(deployment: Deployment, progress: int) -> None:
    """Progress may only be reported while deploying and never decreases."""
    if deployment.status != _D.DEPLOYING:
        raise InvalidTransition(
            f"Progress can only be reported while deploying (status is {deployment.status.value})",
            current=deployment.status.value,
        ).with_context(deployment_id=deployment.id)
    if not 0 <= progress <= 100:
        raise InvalidTransition(
            f"Progress must be between 0 and 100, got {progress}",
            current=deployment.status.value,
        ).with_context(deployment_id=deployment.id)
    if progress < deployment.progress:
        raise InvalidTransition(
            f"Progress cannot go backwards ({deployment.progress} -> {progress})",
            current=deployment.status.value,
        ).with_context(deployment_id=deployment.id)


def finish_changes(
    deployment: Deployment,
    outcome: DeploymentStatus,
    now: datetime,
    error_message: str | None = None,
) -> dict[str, Any]:
    """Column changes that record ``outcome`` (completed or failed).

    Non-recurring deployments simply enter ``outcome``. A recurring one
    re-arms in the same write: it returns to ``scheduled`` with the next
    occurrence after its last fire. If that occurrence is already in the
    past it stays due, so the missed run fires once on the next tick.
    """
    check_transition(deployment, outcome)

    changes: dict[str, Any] = {"completed_at": now, "status": outcome}
    if outcome == _D.FAILED:
        changes["error_message"] = error_message or "Deployment failed"

    if deployment.is_recurring and deployment.recurring_pattern:
        reference = deployment.last_run_at or now
        next_run_at = cron.next_occurrence(deployment.recurring_pattern, reference)
        if next_run_at is not None:
            changes["status"] = _D.SCHEDULED
            changes["next_run_at"] = next_run_at

    return changes


def signal_failed_changes(deployment: Deployment, now: datetime, error_message: str) -> dict[str, Any]:
    """Column changes for a pending deployment whose execution never began.

    A one-time deployment fails. A recurring one goes back to ``scheduled``
    and keeps the ``next_run_at`` its claim already wrote, so later
    occurrences still fire.
    """
    if deployment.status != _D.PENDING:
        raise InvalidTransition(
            f"Only a pending deployment can fail to start (status is {deployment.status.value})",
            current=deployment.status.value,
            target=_D.FAILED.value,
        ).with_context(deployment_id=deployment.id)

    changes: dict[str, Any] = {"error_message": error_message, "updated_at": now}
    if deployment.is_recurring and deployment.next_run_at is not None:
        changes["status"] = _D.SCHEDULED
    else:
        changes["status"] = _D.FAILED
        changes["completed_at"] = now
    return changes


def check_task_transition(task_run: TaskRun, target: TaskRunStatus) -> None:
    """Raise :class:`InvalidTransition` unless ``task_run`` may enter ``target``."""
    current = task_run.status
    if target not in TASK_RUN_TRANSITIONS[current]:
        raise InvalidTransition(
            f"Cannot move task run from {current.value} to {target.value}",
            current=current.value,
            target=target.value,
        ).with_context(task_run_id=task_run.id, deployment_id=task_run.deployment_id)

    if target == _T.RUNNING and task_run.progress != 0:
        raise InvalidTransition(
            "Task run must be at progress 0 to start",
            current=current.value,
            target=target.value,
        ).with_context(task_run_id=task_run.id)

    if target == _T.COMPLETED and task_run.progress != 100:
        raise InvalidTransition(
            f"Task run must be at progress 100 to complete (at {task_run.progress})",
            current=current.value,
            target=target.value,
        ).with_context(task_run_id=task_run.id)


def check_task_progress(task_run: TaskRun, progress: int) -> None:
    if task_run.status != _T.RUNNING:
        raise InvalidTransition(
            f"Progress can only be reported while running (status is {task_run.status.value})",
            current=task_run.status.value,
        ).with_context(task_run_id=task_run.id)
    if not task_run.progress <= progress <= 100:
        raise InvalidTransition(
            f"Invalid task progress {task_run.progress} -> {progress}",
            current=task_run.status.value,
        ).with_context(task_run_id=task_run.id)


__all__ = [
    "DEPLOYMENT_TRANSITIONS",
    "TASK_RUN_TRANSITIONS",
    "NON_TERMINAL_STATUSES",
    "can_transition",
    "check_transition",
    "check_progress",
    "finish_changes",
    "signal_failed_changes",
    "check_task_transition",
    "check_task_progress",
]

"""Deployment repository - CRUD plus the atomic claim.

Manifesto:
    Deployment persistence is a pure data concern. The only cross-instance
    synchronisation point in the whole system lives here: the *claim*, a
    conditional UPDATE keyed on ``(status, next_run_at)`` whose rowcount
    says whether this instance won the right to fire a due deployment.
    Every other status write is a compare-and-set on the expected status,
    so a concurrent cancel always wins or loses cleanly.

Tags:
    pxe-fleet, scheduling, repository, CRUD, compare-and-set, claim

Doc-Types:
    api-reference, architecture-diagram


┌──────────────────────────────────────────────────────────────────────────────┐
│  DEPLOYMENT REPOSITORY                                                        │
│                                                                               │
│   Deployments:                                                                │
│   ├── create(deployment) → Deployment                                        │
│   ├── get(id) → Deployment | None                                            │
│   ├── list(status, device_id, limit, offset) → list[Deployment]              │
│   ├── count(status) → int                                                    │
│   ├── delete(id) → bool                                                      │
│   ├── list_due(now) → list[Deployment]       scheduled AND next_run_at ≤ now │
│   ├── list_recurring_scheduled() → list[Deployment]                          │
│   ├── claim(id, expected_next_run_at, ...) → bool      ◄── race resolution   │
│   ├── compare_and_set(id, expected_status, **changes) → bool                 │
│   ├── update_progress(id, progress, now) → bool       monotonic, deploying   │
│   ├── update_next_run_at(id, expected, new, now) → bool                      │
│   └── cancel(id, now) → bool                          non-terminal only      │
│                                                                               │
│   Task runs:                                                                  │
│   ├── create_task_run / get_task_run / list_task_runs                        │
│   ├── task_compare_and_set / update_task_progress                            │
│   └── cancel_open_task_runs(deployment_id, now) → int                        │
│                                                                               │
│   Activity:                                                                   │
│   └── add_activity(log) / list_activity(limit)                               │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import datetime
from enum import Enum
from typing import Any

from pxe_fleet.core.errors import ClaimConflict, StoreUnavailable
from pxe_fleet.core.models import (
    TERMINAL_STATUSES,
    ActivityLog,
    ActivityType,
    Deployment,
    DeploymentStatus,
    ScheduleType,
    TaskRun,
    TaskRunStatus,
    TaskType,
)
from pxe_fleet.core.protocols import Connection
from pxe_fleet.core.timestamps import from_iso8601, to_iso8601

logger = logging.getLogger(__name__)

DEPLOYMENT_COLUMNS = (
    "id",
    "device_id",
    "image_id",
    "status",
    "progress",
    "schedule_type",
    "scheduled_for",
    "recurring_pattern",
    "last_run_at",
    "next_run_at",
    "started_at",
    "completed_at",
    "error_message",
    "created_by",
    "created_at",
    "updated_at",
)

TASK_RUN_COLUMNS = (
    "id",
    "deployment_id",
    "task_type",
    "status",
    "progress",
    "error_message",
    "started_at",
    "completed_at",
    "created_at",
)

ACTIVITY_COLUMNS = ("id", "type", "message", "device_id", "deployment_id", "timestamp")

_DEPLOYMENT_TIME_COLUMNS = frozenset(
    {
        "scheduled_for",
        "last_run_at",
        "next_run_at",
        "started_at",
        "completed_at",
        "created_at",
        "updated_at",
    }
)

# Columns a compare-and-set may touch. Identity and schedule definition are immutable.
_MUTABLE_DEPLOYMENT_COLUMNS = frozenset(
    {
        "status",
        "progress",
        "last_run_at",
        "next_run_at",
        "started_at",
        "completed_at",
        "error_message",
        "updated_at",
    }
)

_MUTABLE_TASK_RUN_COLUMNS = frozenset(
    {"status", "progress", "error_message", "started_at", "completed_at"}
)

_TERMINAL_VALUES = tuple(s.value for s in TERMINAL_STATUSES)
_OPEN_TASK_VALUES = (TaskRunStatus.PENDING.value, TaskRunStatus.RUNNING.value)


def _to_db(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_iso8601(value)
    if isinstance(value, Enum):
        return value.value
    return value


def _placeholders(count: int) -> str:
    return ", ".join("?" * count)


class DeploymentRepository:
    """Repository for deployments, their task runs and the activity feed.

    A re-entrant lock serialises each statement with its commit, so one
    connection can be shared by the API threads and the scheduler thread.

    Example:
        >>> repo = DeploymentRepository(conn)
        >>> due = repo.list_due(utc_now())
        >>> for deployment in due:
        ...     if repo.claim(deployment.id, deployment.next_run_at, fired_at=now):
        ...         print(f"Won {deployment.id}")
    """

    def __init__(self, conn: Connection) -> None:
        """Initialize repository with database connection.

        Args:
            conn: Database connection (any object satisfying Connection protocol)
        """
        self.conn = conn
        self._lock = threading.RLock()

    # === Low-level ===

    def _execute(self, sql: str, params: tuple | list = (), *, commit: bool = False) -> Any:
        """Run one statement (and optionally commit), mapping driver failures."""
        with self._lock:
            try:
                cursor = self.conn.execute(sql, tuple(params))
                if commit:
                    self.conn.commit()
                return cursor
            except sqlite3.IntegrityError:
                raise
            except sqlite3.DatabaseError as e:
                logger.warning(f"Deployment store unavailable: {e}")
                try:
                    self.conn.rollback()
                except sqlite3.Error as rollback_error:
                    logger.debug(f"Rollback after store failure also failed: {rollback_error}")
                raise StoreUnavailable(f"Deployment store unavailable: {e}", cause=e) from e

    def _fetchone(self, sql: str, params: tuple | list = ()) -> tuple | None:
        with self._lock:
            return self._execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: tuple | list = ()) -> list[tuple]:
        with self._lock:
            return self._execute(sql, params).fetchall()

    # === Deployments: CRUD ===

    def create(self, deployment: Deployment) -> Deployment:
        """Insert a new deployment row.

        Returns:
            The deployment as stored
        """
        values = [_to_db(getattr(deployment, c)) for c in DEPLOYMENT_COLUMNS]
        self._execute(
            f"INSERT INTO deployments ({', '.join(DEPLOYMENT_COLUMNS)}) "
            f"VALUES ({_placeholders(len(DEPLOYMENT_COLUMNS))})",
            values,
            commit=True,
        )
        logger.debug(f"Created deployment {deployment.id} ({deployment.schedule_type.value})")
        return self.get(deployment.id)  # type: ignore[return-value]

    def get(self, deployment_id: str) -> Deployment | None:
        """Get deployment by ID."""
        row = self._fetchone(
            f"SELECT {', '.join(DEPLOYMENT_COLUMNS)} FROM deployments WHERE id = ?",
            (deployment_id,),
        )
        if not row:
            return None
        return self._row_to_deployment(row)

    def list(
        self,
        status: DeploymentStatus | None = None,
        device_id: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Deployment]:
        """List deployments, newest first."""
        where, params = self._filters(status, device_id)
        rows = self._fetchall(
            f"SELECT {', '.join(DEPLOYMENT_COLUMNS)} FROM deployments{where} "
            "ORDER BY created_at DESC, id LIMIT ? OFFSET ?",
            [*params, limit, offset],
        )
        return [self._row_to_deployment(row) for row in rows]

    def count(self, status: DeploymentStatus | None = None, device_id: str | None = None) -> int:
        """Count deployments matching the filters."""
        where, params = self._filters(status, device_id)
        row = self._fetchone(f"SELECT COUNT(*) FROM deployments{where}", params)
        return row[0] if row else 0

    def list_active(self) -> list[Deployment]:
        """Deployments currently executing (pending, deploying, post-processing)."""
        active = (
            DeploymentStatus.PENDING.value,
            DeploymentStatus.DEPLOYING.value,
            DeploymentStatus.POST_PROCESSING.value,
        )
        rows = self._fetchall(
            f"SELECT {', '.join(DEPLOYMENT_COLUMNS)} FROM deployments "
            f"WHERE status IN ({_placeholders(len(active))}) ORDER BY created_at",
            active,
        )
        return [self._row_to_deployment(row) for row in rows]

    def delete(self, deployment_id: str) -> bool:
        """Delete a deployment (task runs cascade).

        Returns:
            True if deleted, False if not found
        """
        # One commit for both statements; no other writer may commit in between
        with self._lock:
            self._execute("DELETE FROM task_runs WHERE deployment_id = ?", (deployment_id,))
            cursor = self._execute(
                "DELETE FROM deployments WHERE id = ?", (deployment_id,), commit=True
            )
            return cursor.rowcount > 0

    # === Deployments: Scheduling ===

    def list_due(self, now: datetime) -> list[Deployment]:
        """Scheduled deployments whose ``next_run_at`` is at or before ``now``."""
        rows = self._fetchall(
            f"SELECT {', '.join(DEPLOYMENT_COLUMNS)} FROM deployments "
            "WHERE status = ? AND next_run_at IS NOT NULL AND next_run_at <= ? "
            "ORDER BY next_run_at, id",
            (DeploymentStatus.SCHEDULED.value, to_iso8601(now)),
        )
        return [self._row_to_deployment(row) for row in rows]

    def list_recurring_scheduled(self) -> list[Deployment]:
        """Recurring deployments waiting for their next occurrence."""
        rows = self._fetchall(
            f"SELECT {', '.join(DEPLOYMENT_COLUMNS)} FROM deployments "
            "WHERE status = ? AND schedule_type = ? ORDER BY id",
            (DeploymentStatus.SCHEDULED.value, ScheduleType.RECURRING.value),
        )
        return [self._row_to_deployment(row) for row in rows]

    def claim(
        self,
        deployment_id: str,
        expected_next_run_at: datetime | None,
        *,
        fired_at: datetime,
        next_run_at: datetime | None = None,
        strict: bool = False,
    ) -> bool:
        """Atomically claim a due deployment and move it to ``pending``.

        The UPDATE only matches while the row is still ``scheduled`` with the
        ``next_run_at`` this instance read, so exactly one concurrent caller
        sees ``rowcount == 1``. The same write resets progress, stamps
        ``last_run_at`` (the fencing value) and stores the following
        occurrence for recurring schedules.

        Args:
            deployment_id: Deployment to claim
            expected_next_run_at: ``next_run_at`` as read by list_due
            fired_at: Instant of this fire (becomes ``last_run_at``)
            next_run_at: Following occurrence (recurring) or None
            strict: Raise ClaimConflict instead of returning False

        Returns:
            True if this caller won the claim
        """
        cursor = self._execute(
            """
            UPDATE deployments
               SET status = ?, progress = 0, last_run_at = ?, next_run_at = ?,
                   started_at = NULL, completed_at = NULL, error_message = NULL,
                   updated_at = ?
             WHERE id = ? AND status = ? AND next_run_at = ?
            """,
            (
                DeploymentStatus.PENDING.value,
                to_iso8601(fired_at),
                to_iso8601(next_run_at),
                to_iso8601(fired_at),
                deployment_id,
                DeploymentStatus.SCHEDULED.value,
                to_iso8601(expected_next_run_at),
            ),
            commit=True,
        )
        won = cursor.rowcount == 1
        if not won and strict:
            raise ClaimConflict(
                f"Deployment {deployment_id} was claimed by another instance"
            ).with_context(deployment_id=deployment_id)
        return won

    def compare_and_set(
        self,
        deployment_id: str,
        expected_status: DeploymentStatus,
        **changes: Any,
    ) -> bool:
        """Apply ``changes`` only if the row is still in ``expected_status``.

        Returns:
            True if the row was updated
        """
        unknown = set(changes) - _MUTABLE_DEPLOYMENT_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update deployment columns: {sorted(unknown)}")
        if not changes:
            return False

        columns = list(changes)
        set_clause = ", ".join(f"{c} = ?" for c in columns)
        params = [_to_db(changes[c]) for c in columns]
        cursor = self._execute(
            f"UPDATE deployments SET {set_clause} WHERE id = ? AND status = ?",
            [*params, deployment_id, _to_db(expected_status)],
            commit=True,
        )
        return cursor.rowcount == 1

    def update_progress(self, deployment_id: str, progress: int, now: datetime) -> bool:
        """Raise progress while deploying. Never lowers it."""
        cursor = self._execute(
            "UPDATE deployments SET progress = ?, updated_at = ? "
            "WHERE id = ? AND status = ? AND progress <= ?",
            (progress, to_iso8601(now), deployment_id, DeploymentStatus.DEPLOYING.value, progress),
            commit=True,
        )
        return cursor.rowcount == 1

    def update_next_run_at(
        self,
        deployment_id: str,
        expected_next_run_at: datetime | None,
        next_run_at: datetime | None,
        now: datetime,
    ) -> bool:
        """Rewrite ``next_run_at`` of a scheduled row, conditional on its current value."""
        if expected_next_run_at is None:
            condition, params = "next_run_at IS NULL", []
        else:
            condition, params = "next_run_at = ?", [to_iso8601(expected_next_run_at)]
        cursor = self._execute(
            f"UPDATE deployments SET next_run_at = ?, updated_at = ? "
            f"WHERE id = ? AND status = ? AND {condition}",
            [
                to_iso8601(next_run_at),
                to_iso8601(now),
                deployment_id,
                DeploymentStatus.SCHEDULED.value,
                *params,
            ],
            commit=True,
        )
        return cursor.rowcount == 1

    def cancel(self, deployment_id: str, now: datetime) -> bool:
        """Move a non-terminal deployment to ``cancelled``.

        Returns:
            True if this call cancelled it, False if it was already terminal
        """
        cursor = self._execute(
            f"UPDATE deployments SET status = ?, completed_at = ?, updated_at = ? "
            f"WHERE id = ? AND status NOT IN ({_placeholders(len(_TERMINAL_VALUES))})",
            (
                DeploymentStatus.CANCELLED.value,
                to_iso8601(now),
                to_iso8601(now),
                deployment_id,
                *_TERMINAL_VALUES,
            ),
            commit=True,
        )
        return cursor.rowcount == 1

    # === Task runs ===

    def create_task_run(self, task_run: TaskRun) -> TaskRun:
        values = [_to_db(getattr(task_run, c)) for c in TASK_RUN_COLUMNS]
        self._execute(
            f"INSERT INTO task_runs ({', '.join(TASK_RUN_COLUMNS)}) "
            f"VALUES ({_placeholders(len(TASK_RUN_COLUMNS))})",
            values,
            commit=True,
        )
        return self.get_task_run(task_run.id)  # type: ignore[return-value]

    def get_task_run(self, task_run_id: str) -> TaskRun | None:
        row = self._fetchone(
            f"SELECT {', '.join(TASK_RUN_COLUMNS)} FROM task_runs WHERE id = ?",
            (task_run_id,),
        )
        return self._row_to_task_run(row) if row else None

    def list_task_runs(self, deployment_id: str) -> list[TaskRun]:
        rows = self._fetchall(
            f"SELECT {', '.join(TASK_RUN_COLUMNS)} FROM task_runs "
            "WHERE deployment_id = ? ORDER BY created_at, id",
            (deployment_id,),
        )
        return [self._row_to_task_run(row) for row in rows]

    def task_compare_and_set(
        self,
        task_run_id: str,
        expected_status: TaskRunStatus,
        **changes: Any,
    ) -> bool:
        """Compare-and-set for task runs (see :meth:`compare_and_set`)."""
        unknown = set(changes) - _MUTABLE_TASK_RUN_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update task run columns: {sorted(unknown)}")
        if not changes:
            return False

        columns = list(changes)
        set_clause = ", ".join(f"{c} = ?" for c in columns)
        cursor = self._execute(
            f"UPDATE task_runs SET {set_clause} WHERE id = ? AND status = ?",
            [*(_to_db(changes[c]) for c in columns), task_run_id, _to_db(expected_status)],
            commit=True,
        )
        return cursor.rowcount == 1

    def update_task_progress(self, task_run_id: str, progress: int) -> bool:
        cursor = self._execute(
            "UPDATE task_runs SET progress = ? WHERE id = ? AND status = ? AND progress <= ?",
            (progress, task_run_id, TaskRunStatus.RUNNING.value, progress),
            commit=True,
        )
        return cursor.rowcount == 1

    def cancel_open_task_runs(self, deployment_id: str, now: datetime) -> int:
        """Cancel pending and running task runs of a deployment."""
        cursor = self._execute(
            "UPDATE task_runs SET status = ?, completed_at = ? "
            f"WHERE deployment_id = ? AND status IN ({_placeholders(len(_OPEN_TASK_VALUES))})",
            (TaskRunStatus.CANCELLED.value, to_iso8601(now), deployment_id, *_OPEN_TASK_VALUES),
            commit=True,
        )
        return cursor.rowcount

    # === Activity ===

    def add_activity(self, log: ActivityLog) -> ActivityLog:
        self._execute(
            f"INSERT INTO activity_logs ({', '.join(ACTIVITY_COLUMNS)}) "
            f"VALUES ({_placeholders(len(ACTIVITY_COLUMNS))})",
            [_to_db(getattr(log, c)) for c in ACTIVITY_COLUMNS],
            commit=True,
        )
        return log

    def list_activity(self, limit: int = 50, deployment_id: str | None = None) -> list[ActivityLog]:
        """Most recent activity first."""
        if deployment_id:
            rows = self._fetchall(
                f"SELECT {', '.join(ACTIVITY_COLUMNS)} FROM activity_logs "
                "WHERE deployment_id = ? ORDER BY timestamp DESC, rowid DESC LIMIT ?",
                (deployment_id, limit),
            )
        else:
            rows = self._fetchall(
                f"SELECT {', '.join(ACTIVITY_COLUMNS)} FROM activity_logs "
                "ORDER BY timestamp DESC, rowid DESC LIMIT ?",
                (limit,),
            )
        return [self._row_to_activity(row) for row in rows]

    # === Private Helpers ===

    @staticmethod
    def _filters(
        status: DeploymentStatus | None, device_id: str | None
    ) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(_to_db(status))
        if device_id is not None:
            clauses.append("device_id = ?")
            params.append(device_id)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    def _row_to_deployment(self, row: tuple) -> Deployment:
        """Convert database row to Deployment model."""
        data = dict(zip(DEPLOYMENT_COLUMNS, row, strict=True))
        for column in _DEPLOYMENT_TIME_COLUMNS:
            data[column] = from_iso8601(data[column])
        data["status"] = DeploymentStatus(data["status"])
        data["schedule_type"] = ScheduleType(data["schedule_type"])
        return Deployment(**data)

    def _row_to_task_run(self, row: tuple) -> TaskRun:
        data = dict(zip(TASK_RUN_COLUMNS, row, strict=True))
        for column in ("started_at", "completed_at", "created_at"):
            data[column] = from_iso8601(data[column])
        data["status"] = TaskRunStatus(data["status"])
        data["task_type"] = TaskType(data["task_type"])
        return TaskRun(**data)

    def _row_to_activity(self, row: tuple) -> ActivityLog:
        data = dict(zip(ACTIVITY_COLUMNS, row, strict=True))
        data["timestamp"] = from_iso8601(data["timestamp"])
        data["type"] = ActivityType(data["type"])
        return ActivityLog(**data)

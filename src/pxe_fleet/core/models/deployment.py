"""Deployment lifecycle models (``01_deployments.sql``).

Typed dataclass representations of the ``deployments``, ``task_runs`` and
``activity_logs`` rows. Field names match SQL column names; instants are
aware UTC datetimes (the repository converts to and from stored text).

Tags:
    pxe-fleet, models, dataclasses, deployments, schema-mapping

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from enum import Enum
from typing import Any

from pxe_fleet.core.timestamps import to_iso8601


class DeploymentStatus(str, Enum):
    """Deployment lifecycle status."""

    SCHEDULED = "scheduled"
    PENDING = "pending"
    DEPLOYING = "deploying"
    POST_PROCESSING = "post_processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {DeploymentStatus.COMPLETED, DeploymentStatus.FAILED, DeploymentStatus.CANCELLED}
)


class ScheduleType(str, Enum):
    """How a deployment is triggered."""

    IMMEDIATE = "immediate"
    DELAYED = "delayed"
    RECURRING = "recurring"


class TaskRunStatus(str, Enum):
    """Post-deployment task run status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskRunStatus.COMPLETED, TaskRunStatus.FAILED, TaskRunStatus.CANCELLED)


class TaskType(str, Enum):
    """Post-deployment automation kinds."""

    SNAPIN = "snapin"
    HOSTNAME = "hostname"
    DOMAIN_JOIN = "domain_join"
    PRODUCT_KEY = "product_key"
    SCRIPT = "script"


class ActivityType(str, Enum):
    DEPLOYMENT = "deployment"
    INFO = "info"
    ERROR = "error"


def _serialize(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_iso8601(value)
    if isinstance(value, Enum):
        return value.value
    return value


class _RowModel:
    """Mixin giving row dataclasses a JSON-friendly ``to_dict``."""

    def to_dict(self) -> dict[str, Any]:
        return {f.name: _serialize(getattr(self, f.name)) for f in fields(self)}  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# deployments
# ---------------------------------------------------------------------------


@dataclass
class Deployment(_RowModel):
    """Deployment row (``deployments``)."""

    id: str
    device_id: str
    image_id: str
    status: DeploymentStatus
    schedule_type: ScheduleType
    created_at: datetime
    updated_at: datetime
    progress: int = 0
    scheduled_for: datetime | None = None
    recurring_pattern: str | None = None
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    created_by: str | None = None

    @property
    def is_recurring(self) -> bool:
        return self.schedule_type == ScheduleType.RECURRING

    @property
    def is_terminal(self) -> bool:
        """Terminal for this record. A recurring schedule only ends on cancel."""
        if self.is_recurring:
            return self.status == DeploymentStatus.CANCELLED
        return self.status.is_terminal


@dataclass
class DeploymentRequest:
    """DTO for scheduling a new deployment."""

    device_id: str
    image_id: str
    schedule_type: ScheduleType = ScheduleType.IMMEDIATE
    scheduled_for: datetime | None = None
    recurring_pattern: str | None = None
    created_by: str | None = None


# ---------------------------------------------------------------------------
# task_runs
# ---------------------------------------------------------------------------


@dataclass
class TaskRun(_RowModel):
    """Post-deployment task run row (``task_runs``)."""

    id: str
    deployment_id: str
    task_type: TaskType
    status: TaskRunStatus
    created_at: datetime
    progress: int = 0
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


# ---------------------------------------------------------------------------
# activity_logs
# ---------------------------------------------------------------------------


@dataclass
class ActivityLog(_RowModel):
    """Activity feed row (``activity_logs``)."""

    id: str
    type: ActivityType
    message: str
    timestamp: datetime
    device_id: str | None = None
    deployment_id: str | None = None

"""
Domain-specific Pydantic schemas for the API layer.

These mirror the core dataclasses as Pydantic models so they get JSON
serialisation and OpenAPI schema generation. They stay thin: the real
types live in ``pxe_fleet.core.models``.

Tags:
    pxe-fleet, api, schemas, domain-models

Doc-Types: API_REFERENCE
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from pxe_fleet.core.models import ActivityLog, Deployment, DeploymentStatus, ScheduleType, TaskRun, TaskType
from pxe_fleet.core.timestamps import format_eta, format_relative_time

# ── Status Enums (documented) ────────────────────────────────────────────

DeploymentStatusLiteral = Literal[
    "scheduled", "pending", "deploying", "post_processing", "completed", "failed", "cancelled"
]
"""
Deployment status values:

- ``scheduled``: Waiting for ``next_run_at``
- ``pending``: Claimed, waiting for the device to PXE-boot
- ``deploying``: Image is being written (progress 0-100)
- ``post_processing``: Post-deployment tasks are running
- ``completed`` / ``failed``: Finished (recurring schedules re-arm instead)
- ``cancelled``: Stopped by an operator; ends recurring schedules too
"""


# ── Requests ─────────────────────────────────────────────────────────────


class ScheduleDeploymentBody(BaseModel):
    device_id: str = Field(description="Target device")
    image_id: str = Field(description="Image to deploy")
    schedule_type: ScheduleType = ScheduleType.IMMEDIATE
    scheduled_for: datetime | None = Field(default=None, description="Fire time (delayed only)")
    recurring_pattern: str | None = Field(default=None, description="Cron pattern (recurring only)")
    created_by: str | None = None


class ProgressBody(BaseModel):
    progress: int = Field(ge=0, le=100)
    message: str | None = None


class FailBody(BaseModel):
    error: str | None = None


class TaskRunBody(BaseModel):
    task_type: TaskType


class CronValidateBody(BaseModel):
    pattern: str = ""


class DeviceStatusBody(BaseModel):
    devices: list[dict[str, Any]] = Field(default_factory=list)


# ── Responses ────────────────────────────────────────────────────────────


class DeploymentSchema(BaseModel):
    """A deployment as shown in the deployments table.

    UI Hints:
        ``eta`` is a display estimate for deploying rows only.
        ``next_run_relative`` reads like "in 3 hours".
    """

    id: str
    device_id: str
    image_id: str
    status: DeploymentStatusLiteral
    progress: int = 0
    schedule_type: str
    scheduled_for: str | None = None
    recurring_pattern: str | None = None
    last_run_at: str | None = None
    next_run_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    error_message: str | None = None
    created_by: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    eta: str | None = None
    next_run_relative: str | None = None

    @classmethod
    def from_model(cls, deployment: Deployment, now: datetime | None = None) -> DeploymentSchema:
        eta = format_eta(deployment.progress) if deployment.status == DeploymentStatus.DEPLOYING else None
        relative = (
            format_relative_time(deployment.next_run_at, now)
            if deployment.status == DeploymentStatus.SCHEDULED and deployment.next_run_at
            else None
        )
        return cls(**deployment.to_dict(), eta=eta, next_run_relative=relative)


class TaskRunSchema(BaseModel):
    id: str
    deployment_id: str
    task_type: str
    status: str
    progress: int = 0
    error_message: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    created_at: str | None = None

    @classmethod
    def from_model(cls, task_run: TaskRun) -> TaskRunSchema:
        return cls(**task_run.to_dict())


class ActivitySchema(BaseModel):
    id: str
    type: str
    message: str
    timestamp: str
    device_id: str | None = None
    deployment_id: str | None = None

    @classmethod
    def from_model(cls, log: ActivityLog) -> ActivitySchema:
        return cls(**log.to_dict())


class CronValidationSchema(BaseModel):
    valid: bool
    error: str | None = None


class CronPreviewSchema(BaseModel):
    """Next occurrences of a pattern, for the schedule dialog preview."""

    pattern: str
    valid: bool
    error: str | None = None
    occurrences: list[str] = Field(default_factory=list)
    relative: list[str] = Field(default_factory=list)


class TickResultSchema(BaseModel):
    now: str
    due: int = 0
    fired: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    aborted: bool = False
    busy: bool = False
    error: str | None = None

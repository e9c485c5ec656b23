"""Dataclass models for the pxe-fleet schema tables.

Field names match the SQL column names in ``core/schema/01_deployments.sql``.

Tags:
    pxe-fleet, models, dataclasses, schema-mapping

Doc-Types:
    package-overview, module-index
"""

from pxe_fleet.core.models.deployment import (
    TERMINAL_STATUSES,
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

__all__ = [
    "TERMINAL_STATUSES",
    "ActivityLog",
    "ActivityType",
    "Deployment",
    "DeploymentRequest",
    "DeploymentStatus",
    "ScheduleType",
    "TaskRun",
    "TaskRunStatus",
    "TaskType",
]

"""Pydantic request/response schemas for the pxe-fleet API."""

from pxe_fleet.api.schemas.common import (
    ErrorDetail,
    PagedResponse,
    PageMeta,
    ProblemDetail,
    SuccessResponse,
)
from pxe_fleet.api.schemas.domains import (
    ActivitySchema,
    CronPreviewSchema,
    CronValidationSchema,
    DeploymentSchema,
    TaskRunSchema,
    TickResultSchema,
)

__all__ = [
    "ErrorDetail",
    "PagedResponse",
    "PageMeta",
    "ProblemDetail",
    "SuccessResponse",
    "ActivitySchema",
    "CronPreviewSchema",
    "CronValidationSchema",
    "DeploymentSchema",
    "TaskRunSchema",
    "TickResultSchema",
]

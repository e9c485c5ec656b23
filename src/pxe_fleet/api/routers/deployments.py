"""
Deployments router — schedule, inspect, cancel, and execution callbacks.

GET    /deployments
GET    /deployments/active
GET    /deployments/{deployment_id}
POST   /deployments
POST   /deployments/{deployment_id}/cancel
POST   /deployments/{deployment_id}/start
POST   /deployments/{deployment_id}/progress
POST   /deployments/{deployment_id}/finish
POST   /deployments/{deployment_id}/complete
POST   /deployments/{deployment_id}/fail
GET    /deployments/{deployment_id}/tasks
POST   /deployments/{deployment_id}/tasks
POST   /tasks/{task_run_id}/start | progress | complete | fail

The callback endpoints are what the imaging scripts call from the booted
device. Domain errors propagate to the FleetError handler, which turns them
into problem responses (400 / 404 / 409 / 503).
"""

from __future__ import annotations

from fastapi import APIRouter, Path, Query

from pxe_fleet.api.deps import Pagination, Repo, Scheduler
from pxe_fleet.api.schemas.common import PagedResponse, PageMeta, SuccessResponse
from pxe_fleet.api.schemas.domains import (
    DeploymentSchema,
    DeploymentStatusLiteral,
    FailBody,
    ProgressBody,
    ScheduleDeploymentBody,
    TaskRunBody,
    TaskRunSchema,
)
from pxe_fleet.core.errors import DeploymentNotFound
from pxe_fleet.core.models import DeploymentRequest, DeploymentStatus

router = APIRouter()


@router.get("/deployments", response_model=PagedResponse[DeploymentSchema])
def list_deployments(
    repo: Repo,
    pagination: Pagination,
    status: DeploymentStatusLiteral | None = Query(None, description="Filter by status"),
    device_id: str | None = Query(None, description="Filter by device"),
):
    """List deployments, newest first.

    Example:
        GET /api/deployments?status=scheduled&page_size=20

        Response:
        {
            "data": [{"id": "d-1", "status": "scheduled", "next_run_relative": "in 3 hours", ...}],
            "page": {"total": 1, "limit": 20, "offset": 0, "has_more": false}
        }
    """
    status_filter = DeploymentStatus(status) if status else None
    items = repo.list(status_filter, device_id, limit=pagination.limit, offset=pagination.offset)
    total = repo.count(status_filter, device_id)
    return PagedResponse(
        data=[DeploymentSchema.from_model(d) for d in items],
        page=PageMeta.from_result(total, pagination.limit, pagination.offset),
    )


@router.get("/deployments/active", response_model=SuccessResponse[list[DeploymentSchema]])
def list_active_deployments(repo: Repo):
    """Pending, deploying and post-processing deployments (dashboard widget)."""
    return SuccessResponse(data=[DeploymentSchema.from_model(d) for d in repo.list_active()])


@router.get("/deployments/{deployment_id}", response_model=SuccessResponse[DeploymentSchema])
def get_deployment(repo: Repo, deployment_id: str = Path(..., description="Deployment ID")):
    deployment = repo.get(deployment_id)
    if deployment is None:
        raise DeploymentNotFound(deployment_id)
    return SuccessResponse(data=DeploymentSchema.from_model(deployment))


@router.post("/deployments", response_model=SuccessResponse[DeploymentSchema], status_code=201)
def schedule_deployment(scheduler: Scheduler, body: ScheduleDeploymentBody):
    """Schedule a deployment.

    Immediate deployments are created ``pending`` and signalled right away;
    delayed and recurring ones are created ``scheduled``.

    Raises:
        400 VALIDATION_FAILED: Bad cron pattern, past ``scheduled_for`` or
            fields that do not fit the schedule type.

    Example:
        POST /api/deployments
        {"device_id": "lab-07", "image_id": "win11", "schedule_type": "recurring",
         "recurring_pattern": "0 2 * * *"}
    """
    deployment = scheduler.schedule(
        DeploymentRequest(
            device_id=body.device_id,
            image_id=body.image_id,
            schedule_type=body.schedule_type,
            scheduled_for=body.scheduled_for,
            recurring_pattern=body.recurring_pattern,
            created_by=body.created_by,
        )
    )
    return SuccessResponse(data=DeploymentSchema.from_model(deployment))


@router.post("/deployments/{deployment_id}/cancel", response_model=SuccessResponse[DeploymentSchema])
def cancel_deployment(scheduler: Scheduler, deployment_id: str = Path(..., description="Deployment ID")):
    """Cancel a deployment. Cancelling a finished deployment is a no-op."""
    return SuccessResponse(data=DeploymentSchema.from_model(scheduler.cancel(deployment_id)))


# ── Execution callbacks ─────────────────────────────────────────────────


@router.post("/deployments/{deployment_id}/start", response_model=SuccessResponse[DeploymentSchema])
def start_deployment(scheduler: Scheduler, deployment_id: str = Path(..., description="Deployment ID")):
    return SuccessResponse(data=DeploymentSchema.from_model(scheduler.start_execution(deployment_id)))


@router.post("/deployments/{deployment_id}/progress", response_model=SuccessResponse[DeploymentSchema])
def report_progress(scheduler: Scheduler, body: ProgressBody, deployment_id: str = Path(..., description="Deployment ID")):
    deployment = scheduler.report_progress(deployment_id, body.progress, body.message)
    return SuccessResponse(data=DeploymentSchema.from_model(deployment))


@router.post("/deployments/{deployment_id}/finish", response_model=SuccessResponse[DeploymentSchema])
def finish_imaging(scheduler: Scheduler, deployment_id: str = Path(..., description="Deployment ID")):
    return SuccessResponse(data=DeploymentSchema.from_model(scheduler.finish_imaging(deployment_id)))


@router.post("/deployments/{deployment_id}/complete", response_model=SuccessResponse[DeploymentSchema])
def complete_deployment(scheduler: Scheduler, deployment_id: str = Path(..., description="Deployment ID")):
    return SuccessResponse(data=DeploymentSchema.from_model(scheduler.complete(deployment_id)))


@router.post("/deployments/{deployment_id}/fail", response_model=SuccessResponse[DeploymentSchema])
def fail_deployment(scheduler: Scheduler, body: FailBody, deployment_id: str = Path(..., description="Deployment ID")):
    return SuccessResponse(data=DeploymentSchema.from_model(scheduler.fail(deployment_id, body.error)))


# ── Post-deployment task runs ───────────────────────────────────────────


@router.get("/deployments/{deployment_id}/tasks", response_model=SuccessResponse[list[TaskRunSchema]])
def list_task_runs(scheduler: Scheduler, deployment_id: str = Path(..., description="Deployment ID")):
    runs = scheduler.list_task_runs(deployment_id)
    return SuccessResponse(data=[TaskRunSchema.from_model(t) for t in runs])


@router.post(
    "/deployments/{deployment_id}/tasks",
    response_model=SuccessResponse[TaskRunSchema],
    status_code=201,
)
def add_task_run(scheduler: Scheduler, body: TaskRunBody, deployment_id: str = Path(..., description="Deployment ID")):
    task_run = scheduler.add_task_run(deployment_id, body.task_type)
    return SuccessResponse(data=TaskRunSchema.from_model(task_run))


@router.post("/tasks/{task_run_id}/start", response_model=SuccessResponse[TaskRunSchema])
def start_task_run(scheduler: Scheduler, task_run_id: str = Path(..., description="Task run ID")):
    return SuccessResponse(data=TaskRunSchema.from_model(scheduler.start_task_run(task_run_id)))


@router.post("/tasks/{task_run_id}/progress", response_model=SuccessResponse[TaskRunSchema])
def report_task_progress(scheduler: Scheduler, body: ProgressBody, task_run_id: str = Path(..., description="Task run ID")):
    task_run = scheduler.report_task_progress(task_run_id, body.progress)
    return SuccessResponse(data=TaskRunSchema.from_model(task_run))


@router.post("/tasks/{task_run_id}/complete", response_model=SuccessResponse[TaskRunSchema])
def complete_task_run(scheduler: Scheduler, task_run_id: str = Path(..., description="Task run ID")):
    return SuccessResponse(data=TaskRunSchema.from_model(scheduler.complete_task_run(task_run_id)))


@router.post("/tasks/{task_run_id}/fail", response_model=SuccessResponse[TaskRunSchema])
def fail_task_run(scheduler: Scheduler, body: FailBody, task_run_id: str = Path(..., description="Task run ID")):
    task_run = scheduler.fail_task_run(task_run_id, body.error)
    return SuccessResponse(data=TaskRunSchema.from_model(task_run))

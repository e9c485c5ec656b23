"""
Exception handlers turning FleetError categories into problem responses.

InvalidSchedule → 400, DeploymentNotFound → 404, InvalidTransition → 409,
StoreUnavailable → 503 (with Retry-After when the error carries one).
"""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse

from pxe_fleet.api.schemas.common import ErrorDetail, ProblemDetail
from pxe_fleet.core.errors import ErrorCategory, FleetError, ValidationError
from pxe_fleet.core.logging import get_logger

log = get_logger(__name__)

CATEGORY_TO_STATUS: dict[ErrorCategory, tuple[int, str]] = {
    ErrorCategory.VALIDATION: (400, "VALIDATION_FAILED"),
    ErrorCategory.PARSE: (400, "INVALID_INPUT"),
    ErrorCategory.NOT_FOUND: (404, "NOT_FOUND"),
    ErrorCategory.ORCHESTRATION: (409, "CONFLICT"),
    ErrorCategory.DATABASE: (503, "UNAVAILABLE"),
    ErrorCategory.NETWORK: (503, "TRANSIENT"),
}


def status_for_error(error: FleetError) -> tuple[int, str]:
    """(HTTP status, problem code) for ``error``; unknown categories are 500."""
    return CATEGORY_TO_STATUS.get(error.category, (500, "INTERNAL"))


async def fleet_error_handler(request: Request, exc: FleetError) -> JSONResponse:
    status, code = status_for_error(exc)
    log.info(
        "request_rejected",
        path=request.url.path,
        status=status,
        error_type=exc.__class__.__name__,
        **exc.context.to_dict(),
    )

    problem = ProblemDetail(
        title=exc.__class__.__name__,
        status=status,
        code=code,
        detail=exc.message,
        instance=str(request.url),
    )
    if isinstance(exc, ValidationError):
        problem.errors.append(ErrorDetail(code=code, message=exc.message, field=exc.field))

    headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after else None
    return JSONResponse(status_code=status, content=problem.model_dump(), headers=headers)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: 500, with the message only when ``debug`` is on."""
    log.error("unhandled_exception", path=request.url.path, error=str(exc), exc_info=exc)
    problem = ProblemDetail(
        title="Internal Server Error",
        status=500,
        detail=str(exc) if request.app.state.settings.debug else "An unexpected error occurred.",
        instance=str(request.url),
    )
    return JSONResponse(status_code=500, content=problem.model_dump())

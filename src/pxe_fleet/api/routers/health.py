"""
Health endpoints at root level (no API prefix) for container healthchecks.

GET /health        Store reachable, scheduler loop state
GET /health/live   Liveness probe, always 200
"""

from __future__ import annotations

import time
from typing import Literal

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from pxe_fleet.core.errors import StoreUnavailable
from pxe_fleet.core.timestamps import to_iso8601, utc_now

router = APIRouter(tags=["health"])

_START_TIME = time.monotonic()


class HealthResponse(BaseModel):
    status: Literal["healthy", "degraded", "unhealthy"]
    service: str = "pxe-fleet"
    version: str = ""
    uptime_s: float = 0.0
    timestamp: str = ""
    checks: dict[str, str] = Field(default_factory=dict)


@router.get("/health", response_model=HealthResponse)
def health(request: Request) -> JSONResponse:
    """Primary health. 503 when the deployment store is unreachable."""
    state = request.app.state
    checks: dict[str, str] = {}

    try:
        state.repository.count()
        checks["database"] = "ok"
    except StoreUnavailable as e:
        checks["database"] = f"error: {e.message}"

    if state.settings.scheduler_enabled:
        checks["scheduler"] = "running" if state.scheduler.is_running else "stopped"
    else:
        checks["scheduler"] = "disabled"

    if checks["database"] != "ok":
        status = "unhealthy"
    elif checks["scheduler"] == "stopped":
        status = "degraded"
    else:
        status = "healthy"

    body = HealthResponse(
        status=status,
        version=state.settings.api_version,
        uptime_s=round(time.monotonic() - _START_TIME, 1),
        timestamp=to_iso8601(utc_now()) or "",
        checks=checks,
    )
    return JSONResponse(content=body.model_dump(), status_code=503 if status == "unhealthy" else 200)


@router.get("/health/live")
def liveness() -> dict[str, str]:
    return {"status": "alive"}

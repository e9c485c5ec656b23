"""
Scheduler router — health, status and manual control of the tick loop.

GET  /scheduler/health
GET  /scheduler/status
POST /scheduler/tick
POST /scheduler/recover
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from pxe_fleet.api.deps import Scheduler
from pxe_fleet.api.schemas.common import SuccessResponse
from pxe_fleet.api.schemas.domains import TickResultSchema

router = APIRouter(prefix="/scheduler")


@router.get("/health", response_model=SuccessResponse[dict[str, Any]])
def scheduler_health(scheduler: Scheduler):
    """Backend health, queue sizes and tick statistics."""
    return SuccessResponse(data=scheduler.health().to_dict())


@router.get("/status", response_model=SuccessResponse[dict[str, Any]])
def scheduler_status(scheduler: Scheduler):
    return SuccessResponse(data=scheduler.status())


@router.post("/tick", response_model=SuccessResponse[TickResultSchema])
def trigger_tick(scheduler: Scheduler):
    """Run one tick now (claims and fires whatever is due)."""
    return SuccessResponse(data=TickResultSchema(**scheduler.tick().to_dict()))


@router.post("/recover", response_model=SuccessResponse[dict[str, int]])
def trigger_recover(scheduler: Scheduler):
    return SuccessResponse(data={"repaired": scheduler.recover()})

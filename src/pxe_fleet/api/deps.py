"""
FastAPI dependency injection — services created by the app lifespan.

Usage in routers::

    from pxe_fleet.api.deps import Scheduler, Repo

    @router.get("/deployments")
    def list_deployments(repo: Repo):
        ...

Manifesto:
    Dependency injection keeps routers thin. The scheduler, repository,
    broadcaster and device board are built once per application in the
    lifespan and stored on ``app.state``; routers only ever receive them
    through these providers, never through module-level singletons.

Tags:
    pxe-fleet, api, dependency-injection

Doc-Types:
    api-reference
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Query, Request

from pxe_fleet.api.devices import DeviceStatusBoard
from pxe_fleet.core.events.broadcaster import EventBroadcaster
from pxe_fleet.core.scheduling.repository import DeploymentRepository
from pxe_fleet.core.scheduling.service import DeploymentScheduler
from pxe_fleet.core.settings import FleetSettings
from pxe_fleet.core.settings import get_settings as _get_settings

# ── Settings (singleton) ─────────────────────────────────────────────────


def get_settings() -> FleetSettings:
    """Cached settings — loaded once per process."""
    return _get_settings()


# ── Services (per application) ───────────────────────────────────────────


def get_scheduler(request: Request) -> DeploymentScheduler:
    return request.app.state.scheduler


def get_repository(request: Request) -> DeploymentRepository:
    return request.app.state.repository


def get_broadcaster(request: Request) -> EventBroadcaster:
    return request.app.state.broadcaster


def get_devices(request: Request) -> DeviceStatusBoard:
    return request.app.state.devices


# ── Pagination parameters (per-request) ─────────────────────────────────


@dataclass(frozen=True, slots=True)
class PaginationParams:
    """Pagination parameters for list endpoints.

    Attributes:
        page: Page number (1-indexed, converted to offset internally)
        page_size: Items per page (capped at 500)
    """

    page: int = 1
    page_size: int = 50

    @property
    def offset(self) -> int:
        """Calculate offset from page number."""
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int:
        return self.page_size


def get_pagination(
    page: int = Query(1, ge=1, description="Page number (1-indexed)"),
    page_size: int = Query(50, ge=1, le=500, description="Items per page (max 500)"),
) -> PaginationParams:
    """FastAPI dependency for pagination parameters."""
    return PaginationParams(page=page, page_size=page_size)


# ── Convenience type aliases ─────────────────────────────────────────────

Settings = Annotated[FleetSettings, Depends(get_settings)]
Scheduler = Annotated[DeploymentScheduler, Depends(get_scheduler)]
Repo = Annotated[DeploymentRepository, Depends(get_repository)]
Broadcaster = Annotated[EventBroadcaster, Depends(get_broadcaster)]
Devices = Annotated[DeviceStatusBoard, Depends(get_devices)]
Pagination = Annotated[PaginationParams, Depends(get_pagination)]

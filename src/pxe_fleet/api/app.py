"""
FastAPI application factory.

``create_app()`` wires middleware, routers, error handlers, and
lifespan events into a single ``FastAPI`` instance.

Manifesto:
    The app factory is the single composition root. The lifespan opens the
    deployment store and builds the broadcaster, launcher and scheduler
    once per application; routers reach them through ``app.state`` via
    ``pxe_fleet.api.deps``, so two apps in one process never share state.

Tags:
    pxe-fleet, api, app-factory, composition-root, FastAPI

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pxe_fleet.api.deps import get_settings
from pxe_fleet.api.devices import DeviceStatusBoard
from pxe_fleet.api.middleware.errors import fleet_error_handler, unhandled_exception_handler
from pxe_fleet.core.database import create_connection, init_schema
from pxe_fleet.core.errors import FleetError
from pxe_fleet.core.events.broadcaster import EventBroadcaster
from pxe_fleet.core.logging import get_logger
from pxe_fleet.core.scheduling.repository import DeploymentRepository
from pxe_fleet.core.scheduling.service import DeploymentScheduler
from pxe_fleet.core.scheduling.thread_backend import ThreadSchedulerBackend
from pxe_fleet.core.settings import FleetSettings
from pxe_fleet.execution import LoggingLauncher, ProgressSimulator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan — build services on startup, tear down on shutdown."""
    log = get_logger("pxe_fleet.api")
    settings: FleetSettings = app.state.settings
    log.info("pxe-fleet API starting", version=app.version)

    conn = create_connection(settings.database_path)
    applied = init_schema(conn)
    log.info("database initialized", path=settings.database_path, schema_files=len(applied))

    repository = DeploymentRepository(conn)
    devices = DeviceStatusBoard()
    broadcaster = EventBroadcaster(
        buffer_size=settings.broadcast_buffer_size,
        overflow_policy=settings.broadcast_overflow_policy,
        snapshot_provider=devices.snapshot,
    )
    scheduler = DeploymentScheduler(
        backend=ThreadSchedulerBackend(),
        repository=repository,
        broadcaster=broadcaster,
        launcher=LoggingLauncher(),
        interval_seconds=settings.scheduler_interval_seconds,
        instance_id=settings.instance_id,
    )

    simulator = None
    if settings.simulator_enabled:
        log.warning("progress simulator enabled, do not use in production")
        simulator = ProgressSimulator(scheduler, interval_seconds=settings.simulator_interval_seconds)
        scheduler.launcher = simulator

    app.state.conn = conn
    app.state.repository = repository
    app.state.devices = devices
    app.state.broadcaster = broadcaster
    app.state.scheduler = scheduler
    app.state.simulator = simulator

    repaired = scheduler.recover()
    if repaired:
        log.info("recurring schedules repaired", count=repaired)
    if settings.scheduler_enabled:
        scheduler.start()
    if simulator is not None:
        simulator.start()

    try:
        yield
    finally:
        log.info("pxe-fleet API shutting down")
        if simulator is not None:
            simulator.stop()
        scheduler.stop()
        await broadcaster.close()
        conn.close()


def create_app(*, settings: FleetSettings | None = None) -> FastAPI:
    """Build and return a fully-configured FastAPI application.

    Parameters
    ----------
    settings : FleetSettings | None
        Override settings (useful for testing). When ``None`` the cached
        singleton from :func:`get_settings` is used.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
        docs_url=f"{settings.api_prefix}/docs",
        openapi_url=f"{settings.api_prefix}/openapi.json",
    )

    app.state.settings = settings
    app.dependency_overrides[get_settings] = lambda: settings

    # ── Middleware ────────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Exception handlers ───────────────────────────────────────────
    app.add_exception_handler(FleetError, fleet_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # ── Routers ──────────────────────────────────────────────────────
    from pxe_fleet.api.routers import cron, deployments, events, health, scheduler

    prefix = settings.api_prefix

    app.include_router(health.router)
    app.include_router(events.ws_router, tags=["events"])

    app.include_router(deployments.router, prefix=prefix, tags=["deployments"])
    app.include_router(cron.router, prefix=prefix, tags=["cron"])
    app.include_router(events.router, prefix=prefix, tags=["events"])
    app.include_router(scheduler.router, prefix=prefix, tags=["scheduler"])

    return app

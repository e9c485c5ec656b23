"""
Shared pytest fixtures and configuration for pxe-fleet tests.

This module provides:
- An in-memory deployment store with the schema applied
- A scheduler wired to a manual (never ticking) backend
- Recording launcher / broadcaster doubles
- A fixed reference instant for deterministic cron arithmetic

Usage:
    Fixtures are auto-discovered by pytest. Simply use them as function
    arguments (pytest injects them automatically).

    def test_something(scheduler, t0):
        deployment = scheduler.schedule(request, now=t0)
"""

import sys
from collections.abc import Generator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

# Ensure pxe_fleet package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from pxe_fleet.core.database import create_test_db
from pxe_fleet.core.events import FleetEvent
from pxe_fleet.core.models import Deployment
from pxe_fleet.core.scheduling import DeploymentRepository, DeploymentScheduler

# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if test_path.parts and test_path.parts[0] in ("api", "cli"):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Test Doubles
# =============================================================================


class ManualBackend:
    """Timing backend that never ticks on its own; tests call ``tick()``."""

    name = "manual"

    def __init__(self) -> None:
        self.callback = None
        self.interval: float | None = None
        self.started = False

    def start(self, tick_callback, interval_seconds: float = 60.0) -> None:
        self.callback = tick_callback
        self.interval = interval_seconds
        self.started = True

    def stop(self) -> None:
        self.started = False

    def health(self) -> dict[str, Any]:
        return {"healthy": self.started, "backend": self.name}


class RecordingLauncher:
    """Launcher double that remembers every signalled deployment."""

    def __init__(self, fail_with: Exception | None = None) -> None:
        self.fail_with = fail_with
        self.signalled: list[Deployment] = []

    def begin_execution(self, deployment: Deployment) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.signalled.append(deployment)


class RecordingBroadcaster:
    """Broadcaster double collecting published events in order."""

    def __init__(self) -> None:
        self.events: list[FleetEvent] = []

    def publish(self, event: FleetEvent) -> int:
        self.events.append(event)
        return 1

    def topics(self) -> list[str]:
        return [e.topic.value for e in self.events]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def t0() -> datetime:
    """Fixed reference instant: 2024-01-01 00:00 UTC."""
    return datetime(2024, 1, 1, tzinfo=UTC)


@pytest.fixture
def db_conn() -> Generator:
    """In-memory SQLite connection with the deployment schema applied."""
    conn = create_test_db()
    yield conn
    conn.close()


@pytest.fixture
def repository(db_conn) -> DeploymentRepository:
    return DeploymentRepository(db_conn)


@pytest.fixture
def launcher() -> RecordingLauncher:
    return RecordingLauncher()


@pytest.fixture
def events() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def backend() -> ManualBackend:
    return ManualBackend()


@pytest.fixture
def scheduler(backend, repository, events, launcher) -> DeploymentScheduler:
    """Scheduler over the in-memory store with recording doubles."""
    return DeploymentScheduler(
        backend=backend,
        repository=repository,
        broadcaster=events,
        launcher=launcher,
        interval_seconds=60.0,
        instance_id="sched-test",
    )

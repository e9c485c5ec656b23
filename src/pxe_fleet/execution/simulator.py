"""Development-only deployment progress simulator.

Plays the part of the PXE client for deployments nobody is actually
imaging: each tick moves every active deployment one stage forward using
the same scheduler callbacks a real client reports through. Must not run
in production, where the boot scripts report real progress.

Stages::

    pending ──start_execution──► deploying
      10  Initializing PXE boot environment
      25  Loading image and preparing disk
      50  Writing image to disk
      75  Finalizing disk configuration
     100  Deployment completed successfully ──finish_imaging──► post_processing
                                             ──complete──────► completed
                                                               (recurring: scheduled)
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from pxe_fleet.core.errors import FleetError
from pxe_fleet.core.models import Deployment, DeploymentStatus
from pxe_fleet.core.scheduling.protocol import SchedulerBackend
from pxe_fleet.core.scheduling.thread_backend import ThreadSchedulerBackend

if TYPE_CHECKING:
    from pxe_fleet.core.scheduling.service import DeploymentScheduler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressStage:
    progress: int
    message: str


PROGRESS_STAGES: tuple[ProgressStage, ...] = (
    ProgressStage(10, "Initializing PXE boot environment"),
    ProgressStage(25, "Loading image and preparing disk"),
    ProgressStage(50, "Writing image to disk"),
    ProgressStage(75, "Finalizing disk configuration"),
    ProgressStage(100, "Deployment completed successfully"),
)


class ProgressSimulator:
    """Advance active deployments one stage per tick.

    Also usable as an ``ExecutionLauncher``: ``begin_execution`` starts the
    claimed deployment straight away instead of waiting for the next tick.

    Example:
        >>> simulator = ProgressSimulator(scheduler, interval_seconds=2.0)
        >>> scheduler.launcher = simulator
        >>> simulator.start()
    """

    def __init__(
        self,
        scheduler: DeploymentScheduler,
        interval_seconds: float = 2.0,
        backend: SchedulerBackend | None = None,
        stages: tuple[ProgressStage, ...] = PROGRESS_STAGES,
    ) -> None:
        self.scheduler = scheduler
        self.interval = interval_seconds
        self.backend = backend or ThreadSchedulerBackend(thread_name="pxe-fleet-simulator")
        self.stages = stages

        self._stage_index: dict[str, int] = {}
        self._lock = threading.Lock()
        self._running = False

    # === Lifecycle ===

    def start(self) -> None:
        if self._running:
            logger.info("ProgressSimulator already running")
            return
        logger.info(f"Starting deployment progress simulator (interval={self.interval}s)")
        self.backend.start(self.tick, self.interval)
        self._running = True

    def stop(self) -> None:
        if not self._running:
            return
        logger.info("Stopping deployment progress simulator")
        self.backend.stop()
        self._running = False
        with self._lock:
            self._stage_index.clear()

    @property
    def is_running(self) -> bool:
        return self._running

    # === Launcher ===

    def begin_execution(self, deployment: Deployment) -> None:
        self.scheduler.start_execution(deployment.id)
        with self._lock:
            self._stage_index[deployment.id] = 0

    # === Tick ===

    def tick(self, now: datetime | None = None) -> int:
        """Advance every active deployment by one stage.

        Returns:
            Number of deployments that moved
        """
        with self._lock:
            active = self.scheduler.repository.list_active()
            live = {d.id for d in active}
            for stale in set(self._stage_index) - live:
                del self._stage_index[stale]

            advanced = 0
            for deployment in active:
                try:
                    if self._advance(deployment, now):
                        advanced += 1
                except FleetError as e:
                    # Cancelled or finished by someone else in the meantime
                    logger.warning(f"Simulator skipped deployment {deployment.id}: {e.message}")
                    self._stage_index.pop(deployment.id, None)
            return advanced

    def _advance(self, deployment: Deployment, now: datetime | None) -> bool:
        if deployment.status == DeploymentStatus.PENDING:
            self.scheduler.start_execution(deployment.id, now=now)
            self._stage_index[deployment.id] = 0
            return True

        if deployment.status != DeploymentStatus.DEPLOYING:
            return False

        index = self._stage_index.get(deployment.id, self._resume_index(deployment.progress))
        if index >= len(self.stages):
            return False

        stage = self.stages[index]
        self.scheduler.report_progress(deployment.id, stage.progress, stage.message, now=now)
        if stage.progress >= 100:
            self.scheduler.finish_imaging(deployment.id, now=now)
            self.scheduler.complete(deployment.id, now=now)
            self._stage_index.pop(deployment.id, None)
        else:
            self._stage_index[deployment.id] = index + 1
        return True

    def _resume_index(self, progress: int) -> int:
        """First stage beyond ``progress`` (deployments picked up mid-way)."""
        for index, stage in enumerate(self.stages):
            if stage.progress > progress:
                return index
        return len(self.stages) - 1

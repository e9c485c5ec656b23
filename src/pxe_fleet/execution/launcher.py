"""Default execution signal: record the claim and wait for the PXE client."""

from __future__ import annotations

import logging

from pxe_fleet.core.models import Deployment

logger = logging.getLogger(__name__)


class LoggingLauncher:
    """Launcher for fleets where devices pull pending jobs on network boot.

    Nothing is pushed to the device; the claim already moved the deployment
    to ``pending``, which is what the boot script asks for.
    """

    def __init__(self) -> None:
        self.signal_count = 0

    def begin_execution(self, deployment: Deployment) -> None:
        logger.info(
            f"Deployment {deployment.id} ready: device {deployment.device_id} "
            f"will image {deployment.image_id} on next PXE boot"
        )
        self.signal_count += 1

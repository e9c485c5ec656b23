"""Execution side of a deployment: the start signal and a development simulator.

WHY
───
The real imaging work happens on the target machine after it PXE-boots.
pxe-fleet only tells that pipeline "deployment X was claimed" and then
listens for its callbacks. For local development there is no pipeline,
so :class:`ProgressSimulator` plays its part and walks active deployments
through the same callbacks a real client would use.

ARCHITECTURE
────────────
::

    DeploymentScheduler.tick()
      │  claim → pending
      ▼
    ExecutionLauncher.begin_execution(deployment)
      ├─ LoggingLauncher     (production: the device picks it up on boot)
      └─ ProgressSimulator   (development: drives the callbacks itself)
                │
                ▼
    start_execution → report_progress(10..100) → finish_imaging → complete
"""

from pxe_fleet.execution.launcher import LoggingLauncher
from pxe_fleet.execution.simulator import PROGRESS_STAGES, ProgressSimulator, ProgressStage

__all__ = [
    "LoggingLauncher",
    "ProgressSimulator",
    "ProgressStage",
    "PROGRESS_STAGES",
]

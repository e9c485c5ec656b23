"""
pxe-fleet - deployment-lifecycle core of a PXE fleet-imaging dashboard.

Subpackages:
- pxe_fleet.core: Scheduling, state machine, store, events, errors, logging
- pxe_fleet.execution: Execution signal and development progress simulator
- pxe_fleet.api: FastAPI HTTP + WebSocket surface
- pxe_fleet.cli: Typer command-line interface
"""

__version__ = "0.3.0"

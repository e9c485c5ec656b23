"""
pxe-fleet HTTP + WebSocket API.

``create_app()`` builds the FastAPI application; run it with
``pxe-fleet serve`` or ``uvicorn pxe_fleet.api.app:create_app --factory``.
"""

from pxe_fleet.api.app import create_app

__all__ = ["create_app"]

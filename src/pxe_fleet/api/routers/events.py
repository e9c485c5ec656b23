"""
Events router — live dashboard stream and the feeds behind it.

GET  /activity                    Activity feed, most recent first
GET  /devices                     Last pushed device list
POST /devices/status              Replace the device list (publishes device_status_update)
POST /captures/{device_id}/progress   Capture progress (publishes capture_progress)
GET  /events/connections          Live observer connections
WS   /ws?topics=a,b               Observer stream (root level, no API prefix)

Manifesto:
    The WebSocket handler only adapts the socket to the broadcaster's
    transport protocol. Buffering, overflow and per-connection isolation
    all live in ``EventBroadcaster``, so a stalled browser tab never
    blocks a publisher.

Tags:
    pxe-fleet, api, events, websocket, streaming

Doc-Types: API_REFERENCE
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Path, Query, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from pxe_fleet.api.deps import Broadcaster, Devices, Repo
from pxe_fleet.api.schemas.common import SuccessResponse
from pxe_fleet.api.schemas.domains import ActivitySchema, DeviceStatusBody, ProgressBody
from pxe_fleet.api.transport import WebSocketTransport
from pxe_fleet.core.events import CaptureProgress, parse_topics
from pxe_fleet.core.logging import LogContext, get_logger

log = get_logger(__name__)

router = APIRouter()
ws_router = APIRouter()

# WebSocket close code 1008: policy violation (bad subscription)
INVALID_TOPICS_CLOSE_CODE = 1008


class PublishResultSchema(BaseModel):
    delivered: int = Field(default=0, description="Connections that accepted the event")


@router.get("/activity", response_model=SuccessResponse[list[ActivitySchema]])
def list_activity(
    repo: Repo,
    limit: int = Query(50, ge=1, le=500),
    deployment_id: str | None = Query(None, description="Only entries for this deployment"),
):
    logs = repo.list_activity(limit=limit, deployment_id=deployment_id)
    return SuccessResponse(data=[ActivitySchema.from_model(entry) for entry in logs])


@router.get("/devices", response_model=SuccessResponse[list[dict[str, Any]]])
def list_devices(devices: Devices):
    return SuccessResponse(data=devices.devices())


@router.post("/devices/status", response_model=SuccessResponse[PublishResultSchema])
def push_device_status(devices: Devices, broadcaster: Broadcaster, body: DeviceStatusBody):
    """Replace the device list and broadcast it as a full snapshot."""
    event = devices.replace(body.devices)
    return SuccessResponse(data=PublishResultSchema(delivered=broadcaster.publish(event)))


@router.post("/captures/{device_id}/progress", response_model=SuccessResponse[PublishResultSchema])
def report_capture_progress(
    broadcaster: Broadcaster,
    body: ProgressBody,
    device_id: str = Path(..., description="Device being captured"),
):
    event = CaptureProgress(device_id=device_id, progress=body.progress, message=body.message)
    return SuccessResponse(data=PublishResultSchema(delivered=broadcaster.publish(event)))


@router.get("/events/connections", response_model=SuccessResponse[list[dict[str, Any]]])
def list_connections(broadcaster: Broadcaster):
    return SuccessResponse(data=broadcaster.connections())


@ws_router.websocket("/ws")
async def observer_stream(websocket: WebSocket, topics: str | None = None):
    """Subscribe to dashboard events. Client messages are ignored."""
    broadcaster = websocket.app.state.broadcaster
    try:
        topic_set = parse_topics(topics)
    except ValueError as e:
        await websocket.close(code=INVALID_TOPICS_CLOSE_CODE, reason=str(e))
        return

    await websocket.accept()
    conn = await broadcaster.connect(WebSocketTransport(websocket), topic_set)
    async with LogContext(connection_id=conn.id):
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            log.debug("observer_client_left")
        finally:
            await broadcaster.disconnect(conn.id)

"""Typed dashboard events and their wire codec.

Why This Package Exists
-----------------------
Every state change the dashboard cares about (a device list refresh, a
deployment moving forward, a capture tick, an activity line, a
post-deployment task update) is fanned out to many observer sessions.
Instead of an untyped ``{"type": ..., ...}`` dict inspected by string
everywhere, each topic has exactly one event class; the string tag only
exists inside :func:`encode_event` / :func:`decode_event`.

Wire envelope::

    {"type": "<topic>", "data": {...}, "timestamp": "<ISO-8601>"}

Usage::

    from pxe_fleet.core.events import DeploymentProgress, encode_event

    event = DeploymentProgress(deployment_id="d-1", progress=50, status="deploying")
    broadcaster.publish(event)

    decode_event(encode_event(event)) == event   # True

Modules
-------
broadcaster     EventBroadcaster -- per-connection bounded fan-out
observer        ObserverClient, DashboardCache -- reconnecting observer side
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar

from pxe_fleet.core.errors import MessageDecodeError
from pxe_fleet.core.timestamps import from_iso8601, to_iso8601, utc_now

__all__ = [
    "Topic",
    "FleetEvent",
    "DeviceStatusUpdate",
    "DeploymentProgress",
    "CaptureProgress",
    "ActivityEvent",
    "PostDeploymentUpdate",
    "EVENT_TYPES",
    "encode_event",
    "decode_event",
    "parse_topics",
]


class Topic(str, Enum):
    """Closed set of broadcast topics."""

    DEVICE_STATUS_UPDATE = "device_status_update"
    DEPLOYMENT_PROGRESS = "deployment_progress"
    CAPTURE_PROGRESS = "capture_progress"
    ACTIVITY = "activity"
    POST_DEPLOYMENT_UPDATE = "post_deployment_update"


# ── Event Model ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class FleetEvent:
    """Base for all broadcast events.

    Subclasses declare ``topic`` and their payload fields; ``timestamp``
    travels in the envelope, not in ``data``.
    """

    topic: ClassVar[Topic]

    timestamp: datetime = field(default_factory=utc_now, kw_only=True, compare=False)

    def to_data(self) -> dict[str, Any]:
        """Payload for the envelope's ``data`` member."""
        return {f.name: getattr(self, f.name) for f in fields(self) if f.name != "timestamp"}

    @classmethod
    def from_data(cls, data: dict[str, Any]) -> FleetEvent:
        """Rebuild an event from an envelope's ``data`` member."""
        known = {f.name for f in fields(cls)} - {"timestamp"}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class DeviceStatusUpdate(FleetEvent):
    """Full device list. Observers replace their snapshot with it."""

    topic: ClassVar[Topic] = Topic.DEVICE_STATUS_UPDATE

    devices: tuple[dict[str, Any], ...] = ()

    def to_data(self) -> dict[str, Any]:
        return {"devices": list(self.devices)}

    @classmethod
    def from_data(cls, data: dict[str, Any]) -> DeviceStatusUpdate:
        devices = data.get("devices", [])
        if not isinstance(devices, list):
            raise TypeError("devices must be a list")
        return cls(devices=tuple(devices))


@dataclass(frozen=True)
class DeploymentProgress(FleetEvent):
    """A deployment changed status or progress."""

    topic: ClassVar[Topic] = Topic.DEPLOYMENT_PROGRESS

    deployment_id: str
    progress: int = 0
    status: str | None = None
    device_id: str | None = None
    message: str | None = None


@dataclass(frozen=True)
class CaptureProgress(FleetEvent):
    """Image capture progress reported for a device."""

    topic: ClassVar[Topic] = Topic.CAPTURE_PROGRESS

    device_id: str
    progress: int = 0
    message: str | None = None


@dataclass(frozen=True)
class ActivityEvent(FleetEvent):
    """A new activity feed line."""

    topic: ClassVar[Topic] = Topic.ACTIVITY

    message: str
    type: str = "info"
    device_id: str | None = None
    deployment_id: str | None = None
    activity_id: str | None = None


@dataclass(frozen=True)
class PostDeploymentUpdate(FleetEvent):
    """A post-deployment task run was added or changed."""

    topic: ClassVar[Topic] = Topic.POST_DEPLOYMENT_UPDATE

    deployment_id: str
    task_run_id: str | None = None
    task_type: str | None = None
    status: str | None = None
    progress: int | None = None
    error_message: str | None = None


EVENT_TYPES: dict[str, type[FleetEvent]] = {
    cls.topic.value: cls
    for cls in (
        DeviceStatusUpdate,
        DeploymentProgress,
        CaptureProgress,
        ActivityEvent,
        PostDeploymentUpdate,
    )
}


# ── Codec ────────────────────────────────────────────────────────────────


def encode_event(event: FleetEvent) -> str:
    """Serialize ``event`` into the JSON wire envelope."""
    return json.dumps(
        {
            "type": event.topic.value,
            "data": event.to_data(),
            "timestamp": to_iso8601(event.timestamp),
        }
    )


def decode_event(text: str | bytes) -> FleetEvent | None:
    """Parse a wire envelope.

    Returns:
        The typed event, or None for a well-formed envelope of a type this
        observer does not know (other components may use it).

    Raises:
        MessageDecodeError: Not JSON, not an envelope, or a payload that does
            not fit its declared type.
    """
    try:
        envelope = json.loads(text)
    except (TypeError, ValueError) as e:
        raise MessageDecodeError(f"Message is not valid JSON: {e}", cause=e) from e

    if not isinstance(envelope, dict) or not isinstance(envelope.get("type"), str):
        raise MessageDecodeError("Message envelope must be an object with a string 'type'")

    event_cls = EVENT_TYPES.get(envelope["type"])
    if event_cls is None:
        return None

    data = envelope.get("data")
    if not isinstance(data, dict):
        raise MessageDecodeError(f"'{envelope['type']}' message has no data object")

    try:
        event = event_cls.from_data(data)
        raw_timestamp = envelope.get("timestamp")
        if raw_timestamp is not None:
            object.__setattr__(event, "timestamp", from_iso8601(raw_timestamp))
    except (TypeError, ValueError) as e:
        raise MessageDecodeError(
            f"Invalid '{envelope['type']}' payload: {e}", cause=e
        ) from e
    return event


def parse_topics(raw: str | list[str] | None) -> frozenset[Topic]:
    """Parse a subscription list ("activity,deployment_progress"). Empty means all."""
    if not raw:
        return frozenset(Topic)
    names = raw.split(",") if isinstance(raw, str) else raw
    topics = set()
    for name in names:
        name = name.strip()
        if not name:
            continue
        try:
            topics.add(Topic(name))
        except ValueError:
            raise ValueError(f"Unknown topic: {name}") from None
    return frozenset(topics) or frozenset(Topic)

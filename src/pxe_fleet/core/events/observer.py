"""
Observer side of the event stream: reconnecting client and dashboard cache.

Manifesto:
    The broadcaster never replays history, so an observer that lost its
    connection (or suspects it missed a message) must re-query current
    state instead of waiting for a backlog. Reconnecting is an explicit
    state machine driven by one cancellable supervisor task per observer,
    so ``close()`` always tears down deterministically.

Architecture:
    ::

        ┌──────────────┐  connector()   ┌────────────┐  receive_text()
        │ DISCONNECTED │ ─────────────► │ CONNECTING │ ────────┐
        └──────▲───────┘   ok           └─────┬──────┘         │
               │                              ▼                │
               │  transport error      ┌────────────┐  decode  │
               └────────────────────── │ CONNECTED  │ ◄────────┘
                 sleep(base * 2**n)    └────────────┘  handler(event)
                 n < max_attempts

        Reconnect or suspect_missed()  ──► on_reconcile(reason)

Tags:
    pxe-fleet, events, observer, reconnect, backoff, cache

Doc-Types:
    api-reference, architecture-diagram
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from functools import singledispatchmethod
from typing import Any, Protocol

from pxe_fleet.core.errors import MessageDecodeError
from pxe_fleet.core.events import (
    ActivityEvent,
    CaptureProgress,
    DeploymentProgress,
    DeviceStatusUpdate,
    FleetEvent,
    PostDeploymentUpdate,
    decode_event,
)
from pxe_fleet.core.logging import get_logger
from pxe_fleet.core.settings import FleetSettings

__all__ = [
    "ConnectionState",
    "ReconnectPolicy",
    "ObserverChannel",
    "ObserverClient",
    "DashboardCache",
]

log = get_logger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class ReconnectPolicy:
    """Exponential backoff: ``base_delay * 2**attempt``, at most ``max_attempts`` retries."""

    base_delay: float = 1.0
    max_attempts: int = 5

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * (2**attempt)

    @classmethod
    def from_settings(cls, settings: FleetSettings) -> ReconnectPolicy:
        return cls(
            base_delay=settings.reconnect_base_delay_seconds,
            max_attempts=settings.reconnect_max_attempts,
        )


class ObserverChannel(Protocol):
    """Client side of one observer connection."""

    async def receive_text(self) -> str:
        """Next message. Raises when the connection is gone."""
        ...

    async def close(self) -> None:
        ...


Connector = Callable[[], Awaitable[ObserverChannel]]
EventHandler = Callable[[FleetEvent], Any]
ReconcileCallback = Callable[[str], Any]


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


class ObserverClient:
    """Keeps one observer connected and feeds decoded events to ``handler``.

    Example::

        cache = DashboardCache()
        client = ObserverClient(
            connector=open_socket,
            handler=cache.apply,
            on_reconcile=lambda reason: cache.reconcile(),
        )
        await client.start()
        ...
        await client.close()
    """

    def __init__(
        self,
        connector: Connector,
        handler: EventHandler,
        *,
        policy: ReconnectPolicy | None = None,
        on_reconcile: ReconcileCallback | None = None,
        on_state_change: Callable[[ConnectionState], Any] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._connector = connector
        self._handler = handler
        self.policy = policy or ReconnectPolicy()
        self._on_reconcile = on_reconcile
        self._on_state_change = on_state_change
        self._sleep = sleep

        self.state = ConnectionState.DISCONNECTED
        self.attempts = 0
        self.reconcile_count = 0
        self.gave_up = False

        self._channel: ObserverChannel | None = None
        self._task: asyncio.Task | None = None
        self._closed = False
        self._connected_once = False

    # === Lifecycle ===

    async def start(self) -> None:
        """Start the supervisor task. Idempotent while running."""
        if self._task is not None and not self._task.done():
            return
        self._closed = False
        self.gave_up = False
        self._task = asyncio.get_running_loop().create_task(self._supervise())

    async def close(self) -> None:
        """Stop reconnecting, drop the connection and wait for the supervisor."""
        self._closed = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._drop_channel()
        self._set_state(ConnectionState.DISCONNECTED)

    async def wait_stopped(self) -> None:
        """Wait until the supervisor exits (gave up or closed)."""
        if self._task is not None:
            await asyncio.shield(self._task)

    async def suspect_missed(self) -> None:
        """Re-query current state after a suspected gap in the stream."""
        await self._reconcile("suspected_gap")

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    # === Supervisor ===

    async def _supervise(self) -> None:
        while not self._closed:
            self._set_state(ConnectionState.CONNECTING)
            channel = await self._open()

            if channel is not None:
                self._channel = channel
                self.attempts = 0
                reconnecting = self._connected_once
                self._connected_once = True
                self._set_state(ConnectionState.CONNECTED)
                if reconnecting:
                    await self._reconcile("reconnect")
                await self._read_until_closed(channel)
                await self._drop_channel()

            self._set_state(ConnectionState.DISCONNECTED)
            if self._closed:
                return

            if self.attempts >= self.policy.max_attempts:
                self.gave_up = True
                log.warning("observer_reconnect_gave_up", attempts=self.attempts)
                return

            delay = self.policy.delay_for(self.attempts)
            self.attempts += 1
            log.info("observer_reconnect_scheduled", attempt=self.attempts, delay=delay)
            await self._sleep(delay)

    async def _open(self) -> ObserverChannel | None:
        try:
            return await self._connector()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning("observer_connect_failed", error=str(e))
            return None

    async def _read_until_closed(self, channel: ObserverChannel) -> None:
        while not self._closed:
            try:
                text = await channel.receive_text()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.info("observer_connection_lost", error=str(e))
                return

            try:
                event = decode_event(text)
            except MessageDecodeError as e:
                log.warning("observer_message_rejected", error=e.message)
                await self._reconcile("decode_error")
                continue

            if event is not None:
                await _maybe_await(self._handler(event))

    async def _drop_channel(self) -> None:
        channel, self._channel = self._channel, None
        if channel is None:
            return
        try:
            await channel.close()
        except Exception as e:
            log.debug("observer_channel_close_failed", error=str(e))

    async def _reconcile(self, reason: str) -> None:
        self.reconcile_count += 1
        log.info("observer_reconcile", reason=reason)
        if self._on_reconcile is not None:
            await _maybe_await(self._on_reconcile(reason))

    def _set_state(self, state: ConnectionState) -> None:
        if state == self.state:
            return
        self.state = state
        if self._on_state_change is not None:
            self._on_state_change(state)


class DashboardCache:
    """Query cache of one dashboard session, updated by typed events.

    Device status replaces the device snapshot; every other topic only
    invalidates the query keys it affects, so the next read re-fetches.
    """

    DEVICES = "/api/devices"
    DASHBOARD_STATS = "/api/dashboard/stats"
    DEPLOYMENTS = "/api/deployments"
    ACTIVE_DEPLOYMENTS = "/api/deployments/active"
    IMAGES = "/api/images"
    ACTIVITY = "/api/activity"
    POST_DEPLOYMENT = "/api/post-deployment"

    ALL_KEYS = (
        DEVICES,
        DASHBOARD_STATS,
        DEPLOYMENTS,
        ACTIVE_DEPLOYMENTS,
        IMAGES,
        ACTIVITY,
        POST_DEPLOYMENT,
    )

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}
        self.invalidated: set[str] = set()

    def apply(self, event: FleetEvent) -> None:
        self._apply(event)

    def invalidate(self, *keys: str) -> None:
        for key in keys:
            self.data.pop(key, None)
            self.invalidated.add(key)

    def reconcile(self) -> None:
        """Forget everything; the session re-queries current state."""
        self.invalidate(*self.ALL_KEYS)

    def take_invalidated(self) -> set[str]:
        keys, self.invalidated = self.invalidated, set()
        return keys

    @singledispatchmethod
    def _apply(self, event: FleetEvent) -> None:
        log.debug("cache_event_ignored", topic=event.topic.value)

    @_apply.register(DeviceStatusUpdate)
    def _apply_devices(self, event: DeviceStatusUpdate) -> None:
        self.data[self.DEVICES] = list(event.devices)
        self.invalidated.discard(self.DEVICES)
        self.invalidate(self.DASHBOARD_STATS)

    @_apply.register(DeploymentProgress)
    def _apply_deployment(self, event: DeploymentProgress) -> None:
        self.invalidate(self.DEPLOYMENTS, self.ACTIVE_DEPLOYMENTS)

    @_apply.register(CaptureProgress)
    def _apply_capture(self, event: CaptureProgress) -> None:
        self.invalidate(self.IMAGES)

    @_apply.register(ActivityEvent)
    def _apply_activity(self, event: ActivityEvent) -> None:
        self.invalidate(self.ACTIVITY)

    @_apply.register(PostDeploymentUpdate)
    def _apply_post_deployment(self, event: PostDeploymentUpdate) -> None:
        self.invalidate(self.POST_DEPLOYMENT, self.DEPLOYMENTS)

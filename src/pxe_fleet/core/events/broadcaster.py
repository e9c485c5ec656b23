"""
Event broadcaster - non-blocking fan-out to observer connections.

Manifesto:
    A dashboard with fifty open sessions must not slow down because one
    laptop went to sleep mid-stream. Publishing therefore never awaits a
    socket: each connection owns a bounded buffer and a sender task, and a
    slow connection only ever hurts itself (its oldest messages are dropped,
    or it is disconnected, depending on policy).

Architecture:
    ::

        publish(event)  (any thread, never blocks)
            │  encode once
            ▼
        ┌──────────────┐  offer()  ┌──────────────────────┐  send_text()
        │ subscribers  │ ────────► │ conn A: deque(≤N)    │ ───────────► socket A
        │ of topic     │ ────────► │ conn B: deque(≤N)    │ ───────────► socket B (stalled)
        └──────────────┘           └──────────────────────┘
                                    one sender task each;
                                    overflow → drop_oldest | disconnect
                                    TransportError → close that conn only

Guarantees:
    - FIFO within one connection; nothing across topics or connections.
    - Best-effort: a connection that is gone receives nothing later and
      history is never replayed. A snapshot provider may seed a brand-new
      connection with the current device list.

Tags:
    pxe-fleet, events, broadcaster, websocket, backpressure

Doc-Types:
    api-reference, architecture-diagram
"""

from __future__ import annotations

import asyncio
import threading
import uuid
from collections import deque
from collections.abc import Callable, Iterable
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from pxe_fleet.core.errors import TransportError
from pxe_fleet.core.events import FleetEvent, Topic, encode_event, parse_topics
from pxe_fleet.core.logging import get_logger

__all__ = [
    "OverflowPolicy",
    "ObserverTransport",
    "ObserverConnection",
    "EventBroadcaster",
]

log = get_logger(__name__)

# WebSocket close code 1013: "try again later"
OVERFLOW_CLOSE_CODE = 1013


class OverflowPolicy(str, Enum):
    """What a full per-connection buffer does with the next message."""

    DROP_OLDEST = "drop_oldest"
    DISCONNECT = "disconnect"


@runtime_checkable
class ObserverTransport(Protocol):
    """Server side of one ordered observer channel (a WebSocket, in practice)."""

    async def send_text(self, data: str) -> None:
        """Send one message. Raises on a broken channel."""
        ...

    async def close(self, code: int = 1000) -> None:
        """Close the channel."""
        ...


class ObserverConnection:
    """One subscribed observer: bounded buffer plus its own sender task."""

    def __init__(
        self,
        transport: ObserverTransport,
        topics: frozenset[Topic],
        loop: asyncio.AbstractEventLoop,
        *,
        buffer_size: int = 256,
        overflow_policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST,
        connection_id: str | None = None,
    ) -> None:
        self.id = connection_id or f"conn_{uuid.uuid4().hex[:12]}"
        self.transport = transport
        self.topics = topics
        self.buffer_size = buffer_size
        self.overflow_policy = overflow_policy

        self.sent = 0
        self.dropped = 0
        self.error: TransportError | None = None
        self.close_reason: str | None = None

        self._loop = loop
        self._buffer: deque[str] = deque()
        self._lock = threading.Lock()
        self._wakeup = asyncio.Event()
        self._closing = False
        self._closed = asyncio.Event()
        self._task: asyncio.Task | None = None

    # === Producer side (any thread) ===

    def offer(self, message: str) -> bool:
        """Queue ``message`` without blocking.

        Returns:
            False if the connection is closing (or was closed by this offer)
        """
        with self._lock:
            if self._closing:
                return False
            if len(self._buffer) < self.buffer_size:
                self._buffer.append(message)
            elif self.overflow_policy == OverflowPolicy.DROP_OLDEST:
                self._buffer.popleft()
                self.dropped += 1
                self._buffer.append(message)
            else:
                self._closing = True
                self.close_reason = "overflow"
                self._buffer.clear()

        if self.close_reason == "overflow":
            self._cancel_sender()
            return False
        self._wake()
        return True

    def request_close(self, reason: str = "closed") -> None:
        """Stop the sender task. Buffered messages and an in-flight send are discarded."""
        with self._lock:
            if self._closing:
                return
            self._closing = True
            self.close_reason = reason
        self._cancel_sender()

    def _cancel_sender(self) -> None:
        # A stalled send never returns on its own, so closing must interrupt it
        if self._task is None:
            return
        try:
            self._loop.call_soon_threadsafe(self._task.cancel)
        except RuntimeError:
            log.debug("observer_loop_closed", connection_id=self.id)

    def _wake(self) -> None:
        try:
            self._loop.call_soon_threadsafe(self._wakeup.set)
        except RuntimeError:
            # Loop already closed; nothing left to deliver to
            with self._lock:
                self._closing = True

    # === Sender side (event loop) ===

    def start(self) -> asyncio.Task:
        self._task = self._loop.create_task(self._run(), name=f"observer-{self.id}")
        # A task cancelled before its first step never enters _run's finally
        self._task.add_done_callback(lambda _t: self._closed.set())
        return self._task

    async def _run(self) -> None:
        try:
            while True:
                await self._wakeup.wait()
                self._wakeup.clear()
                while True:
                    with self._lock:
                        if self._closing or not self._buffer:
                            break
                        message = self._buffer.popleft()
                    await self._send(message)
                if self._closing:
                    return
        except TransportError as e:
            self.error = e
            self.close_reason = "transport_error"
            log.warning(
                "observer_send_failed",
                connection_id=self.id,
                error=str(e),
            )
        finally:
            with self._lock:
                self._closing = True
                self._buffer.clear()
            await self._close_transport()
            self._closed.set()

    async def _send(self, message: str) -> None:
        try:
            await self.transport.send_text(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise TransportError(f"Send to observer failed: {e}", cause=e).with_context(
                connection_id=self.id
            ) from e
        self.sent += 1

    async def _close_transport(self) -> None:
        code = OVERFLOW_CLOSE_CODE if self.close_reason == "overflow" else 1000
        try:
            await self.transport.close(code)
        except Exception as e:
            log.debug("observer_close_failed", connection_id=self.id, error=str(e))

    async def wait_closed(self) -> None:
        await self._closed.wait()

    # === Introspection ===

    @property
    def is_closed(self) -> bool:
        return self._closed.is_set()

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._buffer)

    def stats(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "topics": sorted(t.value for t in self.topics),
            "pending": self.pending,
            "sent": self.sent,
            "dropped": self.dropped,
            "closed": self.is_closed,
            "close_reason": self.close_reason,
        }


class EventBroadcaster:
    """Fan typed events out to subscribed observer connections.

    Example::

        broadcaster = EventBroadcaster(buffer_size=256)

        # In the WebSocket handler (event loop):
        conn = await broadcaster.connect(WebSocketTransport(ws), topics="deployment_progress")

        # From anywhere (scheduler thread, request thread):
        broadcaster.publish(DeploymentProgress(deployment_id="d-1", progress=25))
    """

    def __init__(
        self,
        buffer_size: int = 256,
        overflow_policy: OverflowPolicy | str = OverflowPolicy.DROP_OLDEST,
        snapshot_provider: Callable[[], FleetEvent | None] | None = None,
    ) -> None:
        if buffer_size < 1:
            raise ValueError("buffer_size must be at least 1")
        self.buffer_size = buffer_size
        self.overflow_policy = OverflowPolicy(overflow_policy)
        self.snapshot_provider = snapshot_provider

        self._connections: dict[str, ObserverConnection] = {}
        self._lock = threading.Lock()
        self._closed = False
        self.published = 0

    async def connect(
        self,
        transport: ObserverTransport,
        topics: Iterable[Topic | str] | str | None = None,
        connection_id: str | None = None,
    ) -> ObserverConnection:
        """Register an observer and start its sender task.

        Must be awaited on the event loop that owns ``transport``.
        """
        if self._closed:
            raise TransportError("Broadcaster is closed")

        if topics is None or isinstance(topics, str):
            topic_set = parse_topics(topics)
        else:
            topic_set = frozenset(Topic(t) for t in topics) or frozenset(Topic)

        conn = ObserverConnection(
            transport,
            topic_set,
            asyncio.get_running_loop(),
            buffer_size=self.buffer_size,
            overflow_policy=self.overflow_policy,
            connection_id=connection_id,
        )
        # Seed before registering so the snapshot precedes any live event
        if self.snapshot_provider is not None and Topic.DEVICE_STATUS_UPDATE in topic_set:
            snapshot = self.snapshot_provider()
            if snapshot is not None:
                conn.offer(encode_event(snapshot))

        with self._lock:
            self._connections[conn.id] = conn

        task = conn.start()
        task.add_done_callback(lambda _t, cid=conn.id: self._forget(cid))

        log.info("observer_connected", connection_id=conn.id, topics=len(topic_set))
        return conn

    async def disconnect(self, connection_id: str) -> None:
        """Close one connection and wait for its sender task to finish."""
        with self._lock:
            conn = self._connections.get(connection_id)
        if conn is None:
            return
        conn.request_close("disconnected")
        await conn.wait_closed()
        self._forget(connection_id)

    def publish(self, event: FleetEvent) -> int:
        """Offer ``event`` to every connection subscribed to its topic.

        Thread-safe and never blocks on I/O.

        Returns:
            Number of connections that accepted the message
        """
        if self._closed:
            return 0

        message = encode_event(event)
        with self._lock:
            targets = [c for c in self._connections.values() if event.topic in c.topics]

        delivered = 0
        for conn in targets:
            if conn.offer(message):
                delivered += 1
            elif conn.close_reason == "overflow":
                log.warning("observer_overflow_disconnect", connection_id=conn.id)

        self.published += 1
        return delivered

    async def close(self) -> None:
        """Close every connection. Later publishes are no-ops."""
        self._closed = True
        with self._lock:
            connections = list(self._connections.values())
        for conn in connections:
            conn.request_close("shutdown")
        await asyncio.gather(*(c.wait_closed() for c in connections), return_exceptions=True)
        with self._lock:
            self._connections.clear()

    def _forget(self, connection_id: str) -> None:
        with self._lock:
            removed = self._connections.pop(connection_id, None)
        if removed is not None:
            log.info(
                "observer_disconnected",
                connection_id=connection_id,
                reason=removed.close_reason,
                sent=removed.sent,
                dropped=removed.dropped,
            )

    @property
    def connection_count(self) -> int:
        """Number of live connections."""
        with self._lock:
            return len(self._connections)

    def connections(self) -> list[dict[str, Any]]:
        with self._lock:
            return [c.stats() for c in self._connections.values()]

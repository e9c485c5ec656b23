"""Tests for EventBroadcaster: topic filtering, per-connection buffers and isolation."""

from __future__ import annotations

import asyncio
import json
import threading

import pytest

from pxe_fleet.core.errors import TransportError
from pxe_fleet.core.events import ActivityEvent, DeploymentProgress, DeviceStatusUpdate, Topic
from pxe_fleet.core.events.broadcaster import (
    OVERFLOW_CLOSE_CODE,
    EventBroadcaster,
    ObserverTransport,
    OverflowPolicy,
)


class FakeTransport:
    """In-memory observer socket. ``stalled`` sends block until released."""

    def __init__(self, *, stalled: bool = False, fail_after: int | None = None) -> None:
        self.messages: list[dict] = []
        self.close_code: int | None = None
        self.fail_after = fail_after
        self._gate = asyncio.Event()
        if not stalled:
            self._gate.set()

    async def send_text(self, data: str) -> None:
        if self.fail_after is not None and len(self.messages) >= self.fail_after:
            raise ConnectionResetError("peer went away")
        await self._gate.wait()
        self.messages.append(json.loads(data))

    async def close(self, code: int = 1000) -> None:
        self.close_code = code

    def release(self) -> None:
        self._gate.set()

    def progress_values(self) -> list[int]:
        return [m["data"]["progress"] for m in self.messages]


async def _settle(rounds: int = 20) -> None:
    """Let sender tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def _progress(value: int) -> DeploymentProgress:
    return DeploymentProgress(deployment_id="d-1", progress=value, status="deploying")


class TestDelivery:
    def test_transport_protocol(self):
        assert isinstance(FakeTransport(), ObserverTransport)

    @pytest.mark.asyncio
    async def test_subscribed_connection_receives(self):
        broadcaster = EventBroadcaster()
        transport = FakeTransport()
        await broadcaster.connect(transport, "deployment_progress")

        assert broadcaster.publish(_progress(10)) == 1
        await _settle()

        assert transport.messages[0]["type"] == "deployment_progress"
        assert transport.messages[0]["data"]["progress"] == 10
        await broadcaster.close()

    @pytest.mark.asyncio
    async def test_topic_filtering(self):
        broadcaster = EventBroadcaster()
        activity_only = FakeTransport()
        everything = FakeTransport()
        await broadcaster.connect(activity_only, [Topic.ACTIVITY])
        await broadcaster.connect(everything)

        assert broadcaster.publish(_progress(5)) == 1
        assert broadcaster.publish(ActivityEvent(message="hello")) == 2
        await _settle()

        assert [m["type"] for m in activity_only.messages] == ["activity"]
        assert [m["type"] for m in everything.messages] == ["deployment_progress", "activity"]
        await broadcaster.close()

    @pytest.mark.asyncio
    async def test_fifo_per_connection(self):
        broadcaster = EventBroadcaster()
        transport = FakeTransport()
        await broadcaster.connect(transport)

        for value in range(20):
            broadcaster.publish(_progress(value))
        await _settle()

        assert transport.progress_values() == list(range(20))
        await broadcaster.close()

    @pytest.mark.asyncio
    async def test_publish_from_another_thread(self):
        broadcaster = EventBroadcaster()
        transport = FakeTransport()
        await broadcaster.connect(transport)

        worker = threading.Thread(target=lambda: [broadcaster.publish(_progress(v)) for v in (1, 2, 3)])
        worker.start()
        worker.join()
        await _settle()

        assert transport.progress_values() == [1, 2, 3]
        await broadcaster.close()

    @pytest.mark.asyncio
    async def test_no_history_replay(self):
        broadcaster = EventBroadcaster()
        broadcaster.publish(_progress(1))
        late = FakeTransport()
        await broadcaster.connect(late)
        await _settle()
        assert late.messages == []
        await broadcaster.close()


class TestSnapshot:
    @pytest.mark.asyncio
    async def test_snapshot_precedes_live_events(self):
        snapshot = DeviceStatusUpdate(devices=({"mac": "aa:bb", "status": "online"},))
        broadcaster = EventBroadcaster(snapshot_provider=lambda: snapshot)
        transport = FakeTransport()
        await broadcaster.connect(transport)
        broadcaster.publish(_progress(1))
        await _settle()

        assert [m["type"] for m in transport.messages] == ["device_status_update", "deployment_progress"]
        assert transport.messages[0]["data"]["devices"] == [{"mac": "aa:bb", "status": "online"}]
        await broadcaster.close()

    @pytest.mark.asyncio
    async def test_no_snapshot_without_device_topic(self):
        broadcaster = EventBroadcaster(snapshot_provider=lambda: DeviceStatusUpdate(devices=({"mac": "x"},)))
        transport = FakeTransport()
        await broadcaster.connect(transport, "activity")
        await _settle()
        assert transport.messages == []
        await broadcaster.close()

    @pytest.mark.asyncio
    async def test_empty_snapshot_is_skipped(self):
        broadcaster = EventBroadcaster(snapshot_provider=lambda: None)
        transport = FakeTransport()
        await broadcaster.connect(transport)
        await _settle()
        assert transport.messages == []
        await broadcaster.close()


class TestBackpressure:
    @pytest.mark.asyncio
    async def test_stalled_observer_does_not_block_others(self):
        broadcaster = EventBroadcaster(buffer_size=3)
        stalled = FakeTransport(stalled=True)
        fast = FakeTransport()
        slow_conn = await broadcaster.connect(stalled)
        await broadcaster.connect(fast)

        for value in range(10):
            broadcaster.publish(_progress(value))
            await _settle()

        assert fast.progress_values() == list(range(10))
        # One message in flight, the newest three buffered, the rest dropped
        assert slow_conn.pending == 3
        assert slow_conn.dropped == 6

        stalled.release()
        await _settle()
        assert stalled.progress_values() == [0, 7, 8, 9]
        await broadcaster.close()

    @pytest.mark.asyncio
    async def test_disconnect_policy_closes_overflowing_connection(self):
        broadcaster = EventBroadcaster(buffer_size=2, overflow_policy="disconnect")
        stalled = FakeTransport(stalled=True)
        fast = FakeTransport()
        slow_conn = await broadcaster.connect(stalled)
        await broadcaster.connect(fast)

        delivered = []
        for value in range(4):
            delivered.append(broadcaster.publish(_progress(value)))
            await _settle()

        await asyncio.wait_for(slow_conn.wait_closed(), timeout=1.0)
        await _settle()
        assert delivered[-1] == 1
        assert slow_conn.close_reason == "overflow"
        assert stalled.close_code == OVERFLOW_CLOSE_CODE
        assert broadcaster.connection_count == 1
        assert fast.progress_values() == [0, 1, 2, 3]
        await broadcaster.close()

    def test_policy_parsing(self):
        assert EventBroadcaster(overflow_policy="disconnect").overflow_policy == OverflowPolicy.DISCONNECT
        with pytest.raises(ValueError):
            EventBroadcaster(buffer_size=0)


class TestIsolation:
    @pytest.mark.asyncio
    async def test_transport_error_closes_only_that_connection(self):
        broadcaster = EventBroadcaster()
        broken = FakeTransport(fail_after=1)
        healthy = FakeTransport()
        broken_conn = await broadcaster.connect(broken)
        await broadcaster.connect(healthy)

        for value in range(3):
            broadcaster.publish(_progress(value))
            await _settle()

        await asyncio.wait_for(broken_conn.wait_closed(), timeout=1.0)
        await _settle()
        assert isinstance(broken_conn.error, TransportError)
        assert broken_conn.close_reason == "transport_error"
        assert broken.progress_values() == [0]
        assert healthy.progress_values() == [0, 1, 2]
        assert broadcaster.connection_count == 1

        # Later publishes simply skip the dead connection
        assert broadcaster.publish(_progress(3)) == 1
        await broadcaster.close()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_disconnect(self):
        broadcaster = EventBroadcaster()
        transport = FakeTransport()
        conn = await broadcaster.connect(transport)
        await broadcaster.disconnect(conn.id)

        assert conn.is_closed
        assert transport.close_code == 1000
        assert broadcaster.connection_count == 0
        assert broadcaster.publish(_progress(1)) == 0

    @pytest.mark.asyncio
    async def test_disconnect_interrupts_stalled_send(self):
        broadcaster = EventBroadcaster()
        stalled = FakeTransport(stalled=True)
        conn = await broadcaster.connect(stalled)
        broadcaster.publish(_progress(1))
        await _settle()

        await asyncio.wait_for(broadcaster.disconnect(conn.id), timeout=1.0)
        assert conn.is_closed
        assert stalled.messages == []

    @pytest.mark.asyncio
    async def test_disconnect_unknown_is_noop(self):
        broadcaster = EventBroadcaster()
        await broadcaster.disconnect("conn_missing")

    @pytest.mark.asyncio
    async def test_close_shuts_everything(self):
        broadcaster = EventBroadcaster()
        transports = [FakeTransport(), FakeTransport(stalled=True)]
        for transport in transports:
            await broadcaster.connect(transport)
        broadcaster.publish(_progress(1))
        await _settle()

        await asyncio.wait_for(broadcaster.close(), timeout=1.0)
        assert broadcaster.connection_count == 0
        assert all(t.close_code == 1000 for t in transports)
        assert broadcaster.publish(_progress(2)) == 0
        with pytest.raises(TransportError):
            await broadcaster.connect(FakeTransport())

    @pytest.mark.asyncio
    async def test_connection_stats(self):
        broadcaster = EventBroadcaster()
        await broadcaster.connect(FakeTransport(), "activity", connection_id="conn_a")
        stats = broadcaster.connections()
        assert stats[0]["id"] == "conn_a"
        assert stats[0]["topics"] == ["activity"]
        assert stats[0]["closed"] is False
        await broadcaster.close()

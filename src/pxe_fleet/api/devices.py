"""Last known device list, pushed by the discovery/PXE side.

Device discovery is not part of pxe-fleet; whatever does it posts the
full list here. The board keeps the latest copy so a brand-new observer
connection can be seeded with it before live events arrive.
"""

from __future__ import annotations

import threading
from typing import Any

from pxe_fleet.core.events import DeviceStatusUpdate


class DeviceStatusBoard:
    def __init__(self) -> None:
        self._devices: tuple[dict[str, Any], ...] = ()
        self._lock = threading.Lock()

    def replace(self, devices: list[dict[str, Any]]) -> DeviceStatusUpdate:
        """Store a new full snapshot and return it as an event."""
        with self._lock:
            self._devices = tuple(dict(d) for d in devices)
            return DeviceStatusUpdate(devices=self._devices)

    def devices(self) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._devices)

    def snapshot(self) -> DeviceStatusUpdate | None:
        """Snapshot event for a new connection, or None before the first push."""
        with self._lock:
            if not self._devices:
                return None
            return DeviceStatusUpdate(devices=self._devices)

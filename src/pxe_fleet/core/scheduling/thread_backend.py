"""Daemon-thread timing backend, the default for the API server.

The loop waits on a stop event between ticks, so ``stop()`` returns as
soon as the in-flight tick (if any) is done instead of after a full
interval. A tick that raises is logged and counted; the loop keeps going
because the next tick may well succeed (a locked store, for example).
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any

from pxe_fleet.core.timestamps import utc_now

from .protocol import BackendHealth, TickCallback

logger = logging.getLogger(__name__)

# How long stop() waits for a tick that is still running
STOP_TIMEOUT_SECONDS = 5.0


class ThreadSchedulerBackend:
    """Tick on a daemon thread.

    Example:
        >>> backend = ThreadSchedulerBackend(thread_name="pxe-fleet-scheduler")
        >>> backend.start(scheduler.tick, interval_seconds=60.0)
        >>> backend.stop()
    """

    name = "thread"

    def __init__(self, thread_name: str = "pxe-fleet-scheduler") -> None:
        self.thread_name = thread_name
        self.interval_seconds = 60.0
        self.tick_count = 0
        self.failed_ticks = 0
        self.last_tick: datetime | None = None
        self.last_error: str | None = None

        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self, tick_callback: TickCallback, interval_seconds: float = 60.0) -> None:
        if self._thread is not None and self._thread.is_alive():
            logger.warning(f"{self.thread_name} already running; start ignored")
            return

        self.interval_seconds = interval_seconds
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run,
            args=(tick_callback,),
            name=self.thread_name,
            daemon=True,
        )
        self._thread.start()

    def _run(self, tick_callback: TickCallback) -> None:
        logger.info(f"{self.thread_name} ticking every {self.interval_seconds}s")
        while not self._stop.wait(self.interval_seconds):
            self.tick_count += 1
            self.last_tick = utc_now()
            try:
                tick_callback()
            except Exception as e:
                self.failed_ticks += 1
                self.last_error = str(e)
                logger.exception(f"{self.thread_name} tick failed: {e}")
        logger.info(f"{self.thread_name} stopped")

    def stop(self) -> None:
        thread = self._thread
        if thread is None:
            return
        self._stop.set()
        if thread is not threading.current_thread():
            thread.join(timeout=STOP_TIMEOUT_SECONDS)
            if thread.is_alive():
                logger.warning(f"{self.thread_name} still busy after {STOP_TIMEOUT_SECONDS}s")
        self._thread = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def get_health(self) -> BackendHealth:
        return BackendHealth(
            healthy=self.is_running,
            backend=self.name,
            interval_seconds=self.interval_seconds,
            tick_count=self.tick_count,
            failed_ticks=self.failed_ticks,
            last_tick=self.last_tick,
            last_error=self.last_error,
        )

    def health(self) -> dict[str, Any]:
        return self.get_health().to_dict()

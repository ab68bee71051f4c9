"""Lease-based liveliness monitor for heartbeat writers.

Tracks the last assertion time per writer (one per publishing connection)
and flips writers between alive and not-alive as their lease expires or is
renewed. Changes are reported as aggregate LivelinessEvents without any
writer identity, the same shape a middleware liveliness QoS reports.
"""

from __future__ import annotations

import time
from typing import Callable, Dict, List, Optional

import structlog

from sw_watchdog.cluster.models import LivelinessEvent

logger = structlog.get_logger(__name__)

LivelinessHandler = Callable[[LivelinessEvent], object]


class LeaseMonitor:
    def __init__(self, lease_duration: float, handler: Optional[LivelinessHandler] = None):
        if lease_duration <= 0:
            raise ValueError(f"lease_duration must be positive, got {lease_duration}")
        self.lease_duration = lease_duration
        self._handler = handler
        self.writer_status: Dict[str, Dict] = {}
        self._reported_alive = 0
        self._reported_not_alive = 0

    def set_handler(self, handler: Optional[LivelinessHandler]) -> None:
        self._handler = handler

    @property
    def alive_count(self) -> int:
        return sum(1 for s in self.writer_status.values() if s["alive"])

    @property
    def not_alive_count(self) -> int:
        return sum(1 for s in self.writer_status.values() if not s["alive"])

    def assert_liveliness(self, writer: str, timestamp: float | None = None) -> Optional[LivelinessEvent]:
        """Renew a writer's lease; a new or recovering writer becomes alive."""
        ts = timestamp if timestamp is not None else time.time()
        status = self.writer_status.get(writer)
        if status is None or not status["alive"]:
            self.writer_status[writer] = {"last_ok": ts, "alive": True}
            return self._emit_if_changed()
        status["last_ok"] = ts
        return None

    def remove(self, writer: str) -> Optional[LivelinessEvent]:
        """Forget a writer that went away (connection closed)."""
        if self.writer_status.pop(writer, None) is None:
            return None
        return self._emit_if_changed()

    def check(self, current_time: float | None = None) -> Optional[LivelinessEvent]:
        """Expire leases; returns the event emitted, if counts changed."""
        now = current_time if current_time is not None else time.time()
        expired: List[str] = []
        for writer, status in self.writer_status.items():
            if status["alive"] and now - status["last_ok"] > self.lease_duration:
                status["alive"] = False
                expired.append(writer)
        if expired:
            logger.debug("lease_expired", writers=len(expired), lease=self.lease_duration)
        return self._emit_if_changed()

    def reset(self) -> None:
        self.writer_status.clear()
        self._reported_alive = 0
        self._reported_not_alive = 0

    def _emit_if_changed(self) -> Optional[LivelinessEvent]:
        alive = self.alive_count
        not_alive = self.not_alive_count
        if alive == self._reported_alive and not_alive == self._reported_not_alive:
            return None
        event = LivelinessEvent(
            alive_count=alive,
            not_alive_count=not_alive,
            alive_count_change=alive - self._reported_alive,
            not_alive_count_change=not_alive - self._reported_not_alive,
        )
        self._reported_alive = alive
        self._reported_not_alive = not_alive
        if self._handler is not None:
            self._handler(event)
        return event

"""Bounded, arrival-ordered buffer of recently observed heartbeats.

The heartbeat-delivery path appends while the liveliness path copies the
buffer out for diagnosis; both go through the same lock and the critical
section is at most ``capacity`` records long.
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Deque, List, Optional

import structlog

from sw_watchdog.cluster.models import HeartbeatRecord

logger = structlog.get_logger(__name__)

DEFAULT_CAPACITY = 25


class HeartbeatHistory:
    """Thread-safe FIFO of HeartbeatRecord, oldest evicted first."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity <= 0:
            raise ValueError(f"capacity must be a positive integer, got {capacity}")
        self.capacity = capacity
        self._records: Deque[HeartbeatRecord] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self.total_recorded = 0
        self.total_evicted = 0

    def record(self, heartbeat: HeartbeatRecord) -> None:
        """Append a heartbeat, evicting the oldest one when full."""
        with self._lock:
            if len(self._records) == self.capacity:
                self.total_evicted += 1
            self._records.append(heartbeat)
            self.total_recorded += 1
            size = len(self._records)
        logger.debug("heartbeat_recorded", entity_id=heartbeat.entity_id,
                     timestamp=heartbeat.timestamp, size=size)

    def snapshot(self) -> List[HeartbeatRecord]:
        """Copy of the held records in arrival order; empty list if none."""
        with self._lock:
            return list(self._records)

    def oldest_time(self) -> Optional[float]:
        """Timestamp of the first held record, or None when empty."""
        with self._lock:
            if not self._records:
                return None
            return self._records[0].timestamp

    def latest_time(self) -> Optional[float]:
        """Timestamp of the last held record, or None when empty."""
        with self._lock:
            if not self._records:
                return None
            return self._records[-1].timestamp

    def interval(self, start: float, end: float) -> List[HeartbeatRecord]:
        """Records with ``start <= timestamp <= end``, in arrival order."""
        with self._lock:
            return [r for r in self._records if start <= r.timestamp <= end]

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def is_empty(self) -> bool:
        with self._lock:
            return not self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "capacity": self.capacity,
                "size": len(self._records),
                "total_recorded": self.total_recorded,
                "total_evicted": self.total_evicted,
                "oldest_time": self._records[0].timestamp if self._records else None,
                "latest_time": self._records[-1].timestamp if self._records else None,
            }

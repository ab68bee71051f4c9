"""Tests for the bounded heartbeat history."""

import sys
import threading
from pathlib import Path

# Ensure src is importable
ROOT = Path(__file__).parent.parent
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

import pytest

from sw_watchdog.cluster.history import DEFAULT_CAPACITY, HeartbeatHistory  # noqa: E402
from sw_watchdog.cluster.models import HeartbeatRecord  # noqa: E402


class TestHeartbeatHistory:
    """Capacity, ordering and empty-history behaviour."""

    def test_default_capacity(self):
        history = HeartbeatHistory()
        assert history.capacity == DEFAULT_CAPACITY == 25

    def test_invalid_capacity_rejected(self):
        with pytest.raises(ValueError):
            HeartbeatHistory(0)

    def test_empty_history_signals(self):
        history = HeartbeatHistory()

        assert history.snapshot() == []
        assert history.oldest_time() is None
        assert history.latest_time() is None
        assert history.is_empty()
        assert len(history) == 0

    def test_snapshot_in_arrival_order(self):
        history = HeartbeatHistory(capacity=5)
        records = [HeartbeatRecord(2, 0.3), HeartbeatRecord(1, 0.1), HeartbeatRecord(2, 0.2)]
        for r in records:
            history.record(r)

        assert history.snapshot() == records
        # Oldest/latest follow insertion order, not timestamp order
        assert history.oldest_time() == 0.3
        assert history.latest_time() == 0.2

    def test_fifo_eviction_keeps_last_capacity_records(self):
        capacity = 4
        history = HeartbeatHistory(capacity=capacity)
        records = [HeartbeatRecord(i % 2, float(i)) for i in range(capacity + 3)]
        for r in records:
            history.record(r)
            assert len(history.snapshot()) <= capacity

        assert history.snapshot() == records[-capacity:]
        assert history.oldest_time() == 3.0
        assert history.latest_time() == 6.0
        stats = history.get_stats()
        assert stats["total_recorded"] == capacity + 3
        assert stats["total_evicted"] == 3

    def test_snapshot_is_a_copy(self):
        history = HeartbeatHistory(capacity=3)
        history.record(HeartbeatRecord(1, 1.0))
        snap = history.snapshot()
        history.record(HeartbeatRecord(1, 2.0))

        assert len(snap) == 1
        assert len(history.snapshot()) == 2

    def test_interval_query(self):
        history = HeartbeatHistory(capacity=10)
        for ts in (1.0, 2.0, 3.0, 4.0):
            history.record(HeartbeatRecord(7, ts))

        assert [r.timestamp for r in history.interval(2.0, 3.0)] == [2.0, 3.0]
        full = history.interval(history.oldest_time(), history.latest_time())
        assert full == history.snapshot()

    def test_clear(self):
        history = HeartbeatHistory(capacity=3)
        history.record(HeartbeatRecord(1, 1.0))
        history.clear()
        assert history.snapshot() == []
        assert history.latest_time() is None

    def test_concurrent_record_and_snapshot(self):
        history = HeartbeatHistory(capacity=25)
        errors = []

        def writer(entity_id):
            for i in range(500):
                history.record(HeartbeatRecord(entity_id, float(i)))

        def reader():
            for _ in range(500):
                snap = history.snapshot()
                if len(snap) > history.capacity:
                    errors.append(len(snap))

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(3)]
        threads.append(threading.Thread(target=reader))
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(history) == 25
        assert history.get_stats()["total_recorded"] == 1500

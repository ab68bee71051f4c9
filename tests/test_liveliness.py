"""Tests for the lease-based liveliness monitor."""

import sys
from pathlib import Path

# Ensure src is importable
ROOT = Path(__file__).parent.parent
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

import pytest

from sw_watchdog.cluster.liveliness import LeaseMonitor  # noqa: E402
from sw_watchdog.cluster.models import LivelinessEvent  # noqa: E402


class TestLeaseMonitor:
    def setup_method(self):
        self.events = []
        self.monitor = LeaseMonitor(0.5, handler=self.events.append)

    def test_invalid_lease(self):
        with pytest.raises(ValueError):
            LeaseMonitor(0)

    def test_new_writer_becomes_alive(self):
        event = self.monitor.assert_liveliness("w1", 0.0)
        assert event == LivelinessEvent(1, 0, 1, 0)
        assert self.events == [event]
        # Renewal of an alive writer changes nothing
        assert self.monitor.assert_liveliness("w1", 0.1) is None

    def test_lease_expiry_reports_loss_without_identity(self):
        self.monitor.assert_liveliness("w1", 0.0)
        self.monitor.assert_liveliness("w2", 0.0)
        self.monitor.assert_liveliness("w2", 0.4)

        assert self.monitor.check(0.3) is None
        event = self.monitor.check(0.6)

        assert event == LivelinessEvent(alive_count=1, not_alive_count=1,
                                         alive_count_change=-1, not_alive_count_change=1)
        assert event.is_loss
        assert self.monitor.alive_count == 1
        assert self.monitor.not_alive_count == 1

    def test_expiry_reported_once(self):
        self.monitor.assert_liveliness("w1", 0.0)
        self.monitor.check(1.0)
        assert self.monitor.check(2.0) is None
        assert len(self.events) == 2

    def test_recovering_writer(self):
        self.monitor.assert_liveliness("w1", 0.0)
        self.monitor.check(1.0)
        event = self.monitor.assert_liveliness("w1", 1.1)
        assert event == LivelinessEvent(1, 0, 1, -1)
        assert not event.is_loss

    def test_remove_alive_writer_is_a_loss(self):
        self.monitor.assert_liveliness("w1", 0.0)
        event = self.monitor.remove("w1")
        assert event == LivelinessEvent(0, 0, -1, 0)
        assert event.is_loss

    def test_remove_not_alive_writer_is_not_a_loss(self):
        self.monitor.assert_liveliness("w1", 0.0)
        self.monitor.check(1.0)
        event = self.monitor.remove("w1")
        assert event == LivelinessEvent(0, 0, 0, -1)
        assert not event.is_loss

    def test_remove_unknown_writer(self):
        assert self.monitor.remove("nobody") is None

    def test_reset(self):
        self.monitor.assert_liveliness("w1", 0.0)
        self.monitor.reset()
        assert self.monitor.alive_count == 0
        assert self.monitor.check(5.0) is None
        # A fresh writer after reset is reported from zero again
        assert self.monitor.assert_liveliness("w1", 6.0) == LivelinessEvent(1, 0, 1, 0)

    def test_without_handler(self):
        monitor = LeaseMonitor(0.1)
        assert monitor.assert_liveliness("w1", 0.0).alive_count == 1

"""Watchdog lifecycle state machine.

States follow the managed-node model:

    UNCONFIGURED --configure--> INACTIVE --activate--> ACTIVE
    ACTIVE --deactivate--> INACTIVE --cleanup--> UNCONFIGURED
    any non-finalized state --shutdown--> FINALIZED

Heartbeats are only recorded and liveliness losses only diagnosed while
ACTIVE. Transitions are expected to be serialized by the caller; the
liveliness path shares a lock with them so that once ``deactivate()``
returns no further diagnosis or notification happens.
"""

from __future__ import annotations

import threading
import time
from collections import Counter
from enum import Enum
from typing import Callable, Dict, Optional

import structlog

from sw_watchdog.cluster.diagnosis import NoEvidenceError, diagnose
from sw_watchdog.cluster.history import DEFAULT_CAPACITY, HeartbeatHistory
from sw_watchdog.cluster.models import (
    DiagnosedLoss,
    FailureNotification,
    HeartbeatRecord,
    LivelinessEvent,
)
from sw_watchdog.cluster.notifier import FailureNotifier, FailureSink, QueueSink

logger = structlog.get_logger(__name__)


class WatchdogState(Enum):
    """Lifecycle states."""
    UNCONFIGURED = "unconfigured"
    INACTIVE = "inactive"
    ACTIVE = "active"
    FINALIZED = "finalized"


class WatchdogError(Exception):
    pass


class StateTransitionError(WatchdogError):
    def __init__(self, transition: str, state: WatchdogState):
        super().__init__(f"cannot {transition}() from state {state.value}")
        self.transition = transition
        self.state = state


class ConfigurationError(WatchdogError):
    pass


class WatchdogLifecycle:
    """Owns the heartbeat history and failure sink and routes events to them."""

    TRANSITIONS = ("configure", "activate", "deactivate", "cleanup", "shutdown")

    def __init__(
        self,
        lease_duration_ms: int,
        *,
        history_capacity: int = DEFAULT_CAPACITY,
        publish_failures: bool = False,
        autostart: bool = False,
        heartbeat_topic: str = "heartbeat",
        sink_factory: Optional[Callable[[], FailureSink]] = None,
        clock: Callable[[], float] = time.time,
        name: str = "simple_watchdog",
    ):
        if lease_duration_ms <= 0:
            raise ValueError(f"lease must be a positive number of milliseconds, got {lease_duration_ms}")
        if history_capacity <= 0:
            raise ValueError(f"history capacity must be positive, got {history_capacity}")
        self.name = name
        self.lease_duration_ms = int(lease_duration_ms)
        self.history_capacity = history_capacity
        self.publish_failures = publish_failures
        self.autostart = autostart
        self.heartbeat_topic = heartbeat_topic
        self._sink_factory = sink_factory or QueueSink
        self._clock = clock

        self.state: WatchdogState = WatchdogState.UNCONFIGURED
        self.history: Optional[HeartbeatHistory] = None
        self.sink: Optional[FailureSink] = None
        self.notifier: Optional[FailureNotifier] = None

        self._lock = threading.RLock()
        self._metrics: Counter = Counter()
        self._log = logger.bind(watchdog=name)

        if autostart:
            self.configure()
            self.activate()

    @property
    def lease_duration(self) -> float:
        """Lease in seconds."""
        return self.lease_duration_ms / 1000.0

    @property
    def is_active(self) -> bool:
        return self.state is WatchdogState.ACTIVE

    def _require(self, transition: str, *allowed: WatchdogState) -> None:
        if self.state not in allowed:
            self._log.warning("transition_rejected", transition=transition, state=self.state.value)
            raise StateTransitionError(transition, self.state)

    # Transitions

    def configure(self) -> WatchdogState:
        with self._lock:
            self._require("configure", WatchdogState.UNCONFIGURED)
            history = HeartbeatHistory(self.history_capacity)
            sink = None
            if self.publish_failures:
                try:
                    sink = self._sink_factory()
                except Exception as e:
                    self._log.error("failure_sink_allocation_failed", error=str(e))
                    raise ConfigurationError(f"could not allocate failure sink: {e}") from e
            self.history = history
            self.sink = sink
            self.notifier = FailureNotifier(sink)
            self.state = WatchdogState.INACTIVE
        self._log.info("on_configure", capacity=self.history_capacity,
                       lease_ms=self.lease_duration_ms, publish=self.publish_failures,
                       topic=self.heartbeat_topic)
        return self.state

    def activate(self) -> WatchdogState:
        with self._lock:
            self._require("activate", WatchdogState.INACTIVE)
            if self.sink is not None:
                self.sink.on_activate()
            self.state = WatchdogState.ACTIVE
        self._log.info("on_activate")
        return self.state

    def deactivate(self) -> WatchdogState:
        with self._lock:
            self._require("deactivate", WatchdogState.ACTIVE)
            self.state = WatchdogState.INACTIVE
            if self.sink is not None:
                self.sink.on_deactivate()
        self._log.info("on_deactivate")
        return self.state

    def cleanup(self) -> WatchdogState:
        with self._lock:
            self._require("cleanup", WatchdogState.INACTIVE)
            sink = self._release()
            self.state = WatchdogState.UNCONFIGURED
        self._log.info("on_cleanup")
        self._close_sink(sink)
        return self.state

    def shutdown(self) -> WatchdogState:
        with self._lock:
            self._require("shutdown", WatchdogState.UNCONFIGURED, WatchdogState.INACTIVE,
                          WatchdogState.ACTIVE)
            previous = self.state
            sink = self._release()
            self.state = WatchdogState.FINALIZED
        self._log.info("on_shutdown", from_state=previous.value)
        self._close_sink(sink)
        return self.state

    def transition(self, name: str) -> WatchdogState:
        """Run a transition by name (``configure``, ``activate``, ...)."""
        if name not in self.TRANSITIONS:
            raise KeyError(name)
        return getattr(self, name)()

    def _release(self) -> Optional[FailureSink]:
        sink = self.sink
        if self.history is not None:
            self.history.clear()
        self.history = None
        self.notifier = None
        self.sink = None
        return sink

    def _close_sink(self, sink: Optional[FailureSink]) -> None:
        # Called after the state change; a release error still reaches the caller.
        if sink is None:
            return
        try:
            sink.close()
        except OSError as e:
            self._log.error("failure_sink_release_failed", error=str(e))
            raise

    # Event paths

    def handle_heartbeat(self, heartbeat: HeartbeatRecord) -> bool:
        """Record a heartbeat. Returns False when it was dropped (not active)."""
        history = self.history
        if self.state is not WatchdogState.ACTIVE or history is None:
            self._metrics["heartbeats_dropped"] += 1
            return False
        history.record(heartbeat)
        self._metrics["heartbeats_recorded"] += 1
        return True

    def handle_liveliness(self, event: LivelinessEvent,
                          now: Optional[float] = None) -> Optional[FailureNotification]:
        """Diagnose and report a liveliness loss. Never raises."""
        self._log.info("liveliness_changed", **event.to_dict())
        if not event.is_loss:
            return None
        with self._lock:
            if self.state is not WatchdogState.ACTIVE:
                self._metrics["events_dropped"] += 1
                self._log.debug("liveliness_event_dropped", state=self.state.value)
                return None
            now = self._clock() if now is None else now
            try:
                loss = diagnose(self.history.snapshot(), now)
            except NoEvidenceError as e:
                self._metrics["no_evidence"] += 1
                self._log.warning("diagnosis_no_evidence", reason=e.reason,
                                  entities=e.entities, records=e.records)
                return None
            except Exception:
                self._metrics["diagnosis_errors"] += 1
                self._log.exception("diagnosis_failed")
                return None

            self._metrics["diagnoses"] += 1
            self._log.info("diagnosis", entity_id=loss.entity_id, last_seen=loss.last_seen,
                           overdue=loss.overdue, mean_interval=loss.mean_interval,
                           margin=loss.margin, uncertain=loss.uncertain)
            try:
                notification = self.notifier.notify(loss, now)
            except Exception:
                self._metrics["notify_errors"] += 1
                self._log.exception("failure_notification_failed", entity_id=loss.entity_id)
                return None
            self._metrics["failures_reported"] += 1
            return notification

    def diagnose_now(self, now: Optional[float] = None) -> DiagnosedLoss:
        """Dry-run diagnosis against the current history, without notifying."""
        history = self.history
        if history is None:
            raise NoEvidenceError("history not allocated")
        return diagnose(history.snapshot(), self._clock() if now is None else now)

    def get_state_info(self) -> Dict:
        history = self.history
        notifier = self.notifier
        return {
            "name": self.name,
            "state": self.state.value,
            "lease_ms": self.lease_duration_ms,
            "heartbeat_topic": self.heartbeat_topic,
            "publish_failures": self.publish_failures,
            "sink_active": bool(self.sink and self.sink.is_activated),
            "history": history.get_stats() if history is not None else None,
            "recent_failures": [n.to_dict() for n in notifier.recent] if notifier is not None else [],
            "metrics": dict(self._metrics),
        }

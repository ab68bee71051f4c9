"""Failure notification: the notifier and the sinks it publishes to.

A sink behaves like a lifecycle publisher: it is created inactive, has to be
activated before anything leaves it, and drops notifications while
deactivated.
"""

from __future__ import annotations

import asyncio
import json
import os
from collections import deque
from pathlib import Path
from typing import Callable, Deque, Iterable, List, Optional, Set

import structlog

from sw_watchdog.cluster.models import DiagnosedLoss, FailureNotification

logger = structlog.get_logger(__name__)


class FailureSink:
    """Base sink. Subclasses implement ``_emit``."""

    name = "sink"

    def __init__(self):
        self._activated = False
        self._closed = False
        self.published = 0
        self.dropped = 0

    @property
    def is_activated(self) -> bool:
        return self._activated and not self._closed

    def on_activate(self) -> None:
        self._activated = True

    def on_deactivate(self) -> None:
        self._activated = False

    def publish(self, notification: FailureNotification) -> bool:
        """Emit the notification if active. Returns whether it was emitted."""
        if not self.is_activated:
            self.dropped += 1
            logger.info("sink_inactive_notification_dropped", sink=self.name,
                        entity_id=notification.entity_id)
            return False
        self._emit(notification)
        self.published += 1
        return True

    def _emit(self, notification: FailureNotification) -> None:
        raise NotImplementedError

    def close(self) -> None:
        self._activated = False
        self._closed = True


class BroadcastSink(FailureSink):
    """Pushes ``FAILURE <id> <reported_at>`` lines to wire subscribers.

    ``subscribers`` returns the current writer set for the failure topic;
    writes are buffered by the transport and never awaited.
    """

    name = "broadcast"

    def __init__(self, subscribers: Callable[[], Iterable[asyncio.StreamWriter]],
                 on_dead: Optional[Callable[[asyncio.StreamWriter], None]] = None):
        super().__init__()
        self._subscribers = subscribers
        self._on_dead = on_dead

    def _emit(self, notification: FailureNotification) -> None:
        line = notification.to_line().encode("utf-8")
        dead: Set[asyncio.StreamWriter] = set()
        for writer in list(self._subscribers()):
            if writer.is_closing():
                dead.add(writer)
                continue
            try:
                writer.write(line)
            except (ConnectionError, RuntimeError):
                dead.add(writer)
        for writer in dead:
            if self._on_dead:
                self._on_dead(writer)


class JsonlFileSink(FailureSink):
    """Appends one JSON object per failure to a file."""

    name = "jsonl"

    def __init__(self, path: str | os.PathLike):
        super().__init__()
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = open(self.path, "a", encoding="utf-8")

    def _emit(self, notification: FailureNotification) -> None:
        self._fh.write(json.dumps(notification.to_dict(), ensure_ascii=False) + "\n")
        self._fh.flush()
        try:
            os.fsync(self._fh.fileno())
        except OSError:
            # fsync is not supported on every file type
            pass

    def close(self) -> None:
        super().close()
        if not self._fh.closed:
            self._fh.close()


class MultiSink(FailureSink):
    """Fans out to several sinks sharing one activation state."""

    name = "multi"

    def __init__(self, sinks: List[FailureSink]):
        super().__init__()
        self.sinks = list(sinks)

    def on_activate(self) -> None:
        super().on_activate()
        for sink in self.sinks:
            sink.on_activate()

    def on_deactivate(self) -> None:
        super().on_deactivate()
        for sink in self.sinks:
            sink.on_deactivate()

    def _emit(self, notification: FailureNotification) -> None:
        for sink in self.sinks:
            sink.publish(notification)

    def close(self) -> None:
        super().close()
        errors = []
        for sink in self.sinks:
            try:
                sink.close()
            except OSError as e:
                errors.append(e)
        if errors:
            raise errors[0]


class QueueSink(FailureSink):
    """Keeps the most recent notifications in memory for in-process consumers."""

    name = "queue"

    def __init__(self, maxlen: int = 100):
        super().__init__()
        self._queue: Deque[FailureNotification] = deque(maxlen=maxlen)

    def _emit(self, notification: FailureNotification) -> None:
        self._queue.append(notification)

    def drain(self) -> List[FailureNotification]:
        out = list(self._queue)
        self._queue.clear()
        return out

    def __len__(self) -> int:
        return len(self._queue)


class FailureNotifier:
    """Turns a diagnosis into a FailureNotification and hands it to the sink."""

    def __init__(self, sink: Optional[FailureSink] = None, keep_recent: int = 50):
        self.sink = sink
        self.recent: Deque[FailureNotification] = deque(maxlen=keep_recent)

    def notify(self, loss: DiagnosedLoss, now: float) -> FailureNotification:
        notification = FailureNotification(
            reported_at=now,
            entity_id=loss.entity_id,
            last_seen=loss.last_seen,
        )
        self.recent.append(notification)
        logger.info(
            "publishing_failure",
            entity_id=notification.entity_id,
            reported_at=now,
            last_seen=loss.last_seen,
            uncertain=loss.uncertain,
        )
        if self.sink is not None:
            self.sink.publish(notification)
        return notification

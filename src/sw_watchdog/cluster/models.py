"""Records exchanged between the watchdog components.

Timestamps are float seconds (sender clock for heartbeats, watchdog clock
for notifications).
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class HeartbeatRecord:
    entity_id: int
    timestamp: float

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HeartbeatRecord":
        return cls(entity_id=int(data["entity_id"]), timestamp=float(data["timestamp"]))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class LivelinessEvent:
    """Aggregate alive/not-alive change reported by the liveliness monitor."""
    alive_count: int
    not_alive_count: int
    alive_count_change: int
    not_alive_count_change: int

    @property
    def is_loss(self) -> bool:
        return self.alive_count_change < 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DiagnosedLoss:
    entity_id: int
    last_seen: float
    overdue: float
    mean_interval: Optional[float] = None
    samples: int = 1
    # Score gap to the runner-up; None when there was no other candidate.
    margin: Optional[float] = None

    @property
    def score(self) -> float:
        if self.mean_interval is None:
            return self.overdue
        return self.overdue - self.mean_interval

    @property
    def uncertain(self) -> bool:
        return self.samples < 3 or (self.margin is not None and self.margin <= 0.0)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["score"] = self.score
        data["uncertain"] = self.uncertain
        return data


@dataclass(frozen=True)
class FailureNotification:
    reported_at: float
    entity_id: int
    last_seen: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_line(self) -> str:
        return f"FAILURE {self.entity_id} {self.reported_at}\n"

"""Attribute an aggregate liveliness loss to a single heartbeat source.

The liveliness monitor only reports that the number of alive writers went
down. The heartbeat history tells us, per checkpoint id, when it was last
heard from and how often it usually reports; the suspect is the checkpoint
that is the most overdue compared to its own cadence.

Everything here is a pure function of (snapshot, now).
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from sw_watchdog.cluster.models import DiagnosedLoss, HeartbeatRecord


class NoEvidenceError(LookupError):
    """The history holds no checkpoint with an established cadence."""

    def __init__(self, reason: str, entities: int = 0, records: int = 0):
        super().__init__(reason)
        self.reason = reason
        self.entities = entities
        self.records = records


def group_by_entity(snapshot: Iterable[HeartbeatRecord]) -> Dict[int, List[float]]:
    """Map entity id -> its timestamps in ascending order."""
    stamps: Dict[int, List[float]] = defaultdict(list)
    for record in snapshot:
        stamps[record.entity_id].append(record.timestamp)
    for values in stamps.values():
        values.sort()
    return dict(stamps)


def mean_interval(timestamps: List[float]) -> Optional[float]:
    """Average gap between consecutive timestamps; None below two samples."""
    if len(timestamps) < 2:
        return None
    gaps = [b - a for a, b in zip(timestamps, timestamps[1:])]
    return sum(gaps) / len(gaps)


def _rank_key(candidate: DiagnosedLoss):
    # Known cadence first, then largest score, then smallest id.
    return (candidate.mean_interval is None, -candidate.score, candidate.entity_id)


def rank_suspects(snapshot: Iterable[HeartbeatRecord], now: float) -> List[DiagnosedLoss]:
    """All entities in the snapshot, most suspicious first.

    Entities with at least two heartbeats are scored by
    ``overdue - mean_interval``; single-heartbeat entities have no cadence,
    are scored by ``overdue`` alone and always rank after the others.
    """
    candidates = []
    for entity_id, stamps in group_by_entity(snapshot).items():
        last_seen = stamps[-1]
        candidates.append(DiagnosedLoss(
            entity_id=entity_id,
            last_seen=last_seen,
            overdue=now - last_seen,
            mean_interval=mean_interval(stamps),
            samples=len(stamps),
        ))
    candidates.sort(key=_rank_key)
    return candidates


def diagnose(snapshot: Iterable[HeartbeatRecord], now: float) -> DiagnosedLoss:
    """Best guess for the entity behind a liveliness loss.

    Raises:
        NoEvidenceError: the snapshot is empty or every entity in it has a
            single heartbeat, so no cadence can be established.
    """
    records = list(snapshot)
    if not records:
        raise NoEvidenceError("empty history")

    ranked = rank_suspects(records, now)
    best = ranked[0]
    if best.mean_interval is None:
        raise NoEvidenceError(
            "no entity has an established cadence",
            entities=len(ranked),
            records=len(records),
        )

    margin = None
    if len(ranked) > 1:
        runner_up = ranked[1]
        margin = best.score - runner_up.score
    return replace(best, margin=margin)

"""Tests for attributing a liveliness loss to a checkpoint."""

import sys
from pathlib import Path

# Ensure src is importable
ROOT = Path(__file__).parent.parent
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

import pytest

from sw_watchdog.cluster.diagnosis import (  # noqa: E402
    NoEvidenceError,
    diagnose,
    group_by_entity,
    mean_interval,
    rank_suspects,
)
from sw_watchdog.cluster.models import HeartbeatRecord  # noqa: E402


def _beats(entity_id, *stamps):
    return [HeartbeatRecord(entity_id, ts) for ts in stamps]


class TestIntervals:
    def test_group_by_entity_sorts_timestamps(self):
        snapshot = _beats(1, 0.5, 0.25) + _beats(2, 1.0)
        grouped = group_by_entity(snapshot)
        assert grouped == {1: [0.25, 0.5], 2: [1.0]}

    def test_mean_interval(self):
        assert mean_interval([0.0, 0.25, 0.5, 1.0]) == pytest.approx(1.0 / 3)
        assert mean_interval([2.0, 3.0]) == 1.0

    def test_mean_interval_unknown_for_single_sample(self):
        assert mean_interval([1.0]) is None
        assert mean_interval([]) is None


class TestDiagnose:
    def test_empty_snapshot_is_no_evidence(self):
        with pytest.raises(NoEvidenceError) as exc:
            diagnose([], now=1.0)
        assert exc.value.reason == "empty history"

    def test_single_sample_entities_only_is_no_evidence(self):
        snapshot = _beats(1, 0.5) + _beats(2, 0.75)
        with pytest.raises(NoEvidenceError) as exc:
            diagnose(snapshot, now=2.0)
        assert exc.value.entities == 2
        assert exc.value.records == 2

    def test_single_entity(self):
        loss = diagnose(_beats(7, 0.0, 0.2, 0.4), now=1.0)
        assert loss.entity_id == 7
        assert loss.last_seen == 0.4
        assert loss.overdue == pytest.approx(0.6)
        assert loss.mean_interval == pytest.approx(0.2)
        assert loss.samples == 3
        assert loss.margin is None

    def test_most_overdue_relative_to_own_cadence(self):
        # Both silent for 1.0s; entity 1 usually reports every 0.25s, entity 2 every 0.5s
        snapshot = _beats(1, 0.0, 0.25, 0.5) + _beats(2, 0.0, 0.5)
        loss = diagnose(snapshot, now=1.5)
        assert loss.entity_id == 1
        assert loss.score == pytest.approx(0.75)
        assert loss.margin == pytest.approx(0.25)

    def test_single_sample_entities_rank_last(self):
        # A: cadence 100ms, last seen at 200ms. B: one heartbeat at 190ms.
        snapshot = _beats(1, 0.0, 0.1, 0.2) + _beats(2, 0.19)
        loss = diagnose(snapshot, now=1.0)
        assert loss.entity_id == 1

    def test_single_sample_entity_ranks_last_even_when_more_overdue(self):
        snapshot = _beats(2, 0.0) + _beats(1, 5.0, 6.0)
        ranked = rank_suspects(snapshot, now=10.0)
        assert [c.entity_id for c in ranked] == [1, 2]
        assert ranked[1].mean_interval is None
        assert ranked[1].score == 10.0
        assert diagnose(snapshot, now=10.0).entity_id == 1

    def test_tie_broken_by_smaller_entity_id(self):
        snapshot = _beats(5, 0.0, 1.0, 2.0) + _beats(3, 1.0, 2.0)
        loss = diagnose(snapshot, now=10.0)
        assert loss.entity_id == 3
        assert loss.margin == 0.0
        assert loss.uncertain

    def test_interleaved_arrival_order(self):
        snapshot = [
            HeartbeatRecord(1, 0.0),
            HeartbeatRecord(2, 0.0),
            HeartbeatRecord(1, 0.5),
            HeartbeatRecord(2, 0.25),
            HeartbeatRecord(2, 0.5),
            HeartbeatRecord(1, 1.0),
        ]
        # entity 1: cadence 0.5, overdue 1.0 -> 0.5; entity 2: cadence 0.25, overdue 1.5 -> 1.25
        loss = diagnose(snapshot, now=2.0)
        assert loss.entity_id == 2
        assert loss.last_seen == 0.5

    def test_deterministic(self):
        snapshot = _beats(4, 0.0, 0.3, 0.6) + _beats(9, 0.1, 0.2, 0.3) + _beats(1, 0.5)
        results = {diagnose(snapshot, now=2.0) for _ in range(10)}
        assert len(results) == 1

    def test_uncertain_with_sparse_evidence(self):
        loss = diagnose(_beats(3, 0.0, 0.5), now=2.0)
        assert loss.samples == 2
        assert loss.uncertain

    def test_to_dict_includes_score(self):
        data = diagnose(_beats(7, 0.0, 0.5, 1.0), now=2.0).to_dict()
        assert data["entity_id"] == 7
        assert data["score"] == pytest.approx(0.5)
        assert data["uncertain"] is False

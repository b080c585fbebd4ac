"""Unit tests for the interaction log and its graph folding."""

import pytest
import pandas as pd
import sys
from datetime import timedelta, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dealrec.graph import (
    EdgeType,
    GraphStore,
    InteractionKind,
    InteractionLog,
    InteractionRecord,
    NodeType,
)


@pytest.fixture
def log():
    return InteractionLog(GraphStore())


class TestInteractionRecord:
    """Tests for record identity and row conversion."""

    def test_default_id(self, now):
        record = InteractionRecord("U1", "D1", "click", now)
        millis = int(now.timestamp() * 1000)
        assert record.interaction_id == f"U1-D1-{millis}"
        assert record.kind == InteractionKind.CLICK

    def test_row_round_trip(self, now):
        record = InteractionRecord("U1", "D1", InteractionKind.VIEW, now)
        row = record.to_row()
        assert row["type"] == "view"
        restored = InteractionRecord.from_row(record.interaction_id, row)
        assert restored.timestamp == now
        assert restored.user_id == "U1"
        assert restored.deal_id == "D1"

    def test_invalid_kind(self, now):
        with pytest.raises(ValueError):
            InteractionRecord("U1", "D1", "purchase", now)


class TestFolding:
    """Tests for accumulating interactions on user -> deal edges."""

    def test_log_creates_nodes_and_edge(self, log, now):
        log.log("U1", "D1", InteractionKind.VIEW, now)
        graph = log.graph
        assert graph.get_node("U1").node_type == NodeType.USER
        assert graph.get_node("D1").node_type == NodeType.DEAL
        edge = graph.get_edge("U1", "D1", EdgeType.INTERESTED_IN)
        assert edge.view == 1
        assert edge.weight == pytest.approx(0.1)
        assert edge.timestamp == now

    def test_fold_twice_counts_twice(self, log, now):
        record = InteractionRecord("U1", "D1", InteractionKind.ACTIVATE, now)
        log.fold(record)
        log.fold(record)
        edge = log.graph.get_edge("U1", "D1", EdgeType.INTERESTED_IN)
        assert edge.activate == 2
        assert edge.weight == pytest.approx(1.2)

    def test_mixed_kinds_accumulate(self, log, now):
        log.log("U1", "D1", "view", now - timedelta(hours=2))
        log.log("U1", "D1", "click", now - timedelta(hours=1))
        log.log("U1", "D1", "activate", now)
        edge = log.graph.get_edge("U1", "D1", EdgeType.INTERESTED_IN)
        assert (edge.view, edge.click, edge.activate) == (1, 1, 1)
        assert edge.weight == pytest.approx(1.0)
        assert edge.timestamp == now

    def test_timestamp_keeps_latest(self, log, now):
        log.log("U1", "D1", "view", now)
        log.log("U1", "D1", "view", now - timedelta(days=1))
        edge = log.graph.get_edge("U1", "D1", EdgeType.INTERESTED_IN)
        assert edge.timestamp == now

    def test_same_millisecond_actions_all_count(self, log, now):
        first = log.log("U1", "D1", "view", now)
        second = log.log("U1", "D1", "activate", now)
        assert first.interaction_id != second.interaction_id
        assert second.interaction_id == f"{first.interaction_id}-1"
        assert len(log) == 2
        edge = log.graph.get_edge("U1", "D1", EdgeType.INTERESTED_IN)
        assert (edge.view, edge.activate) == (1, 1)
        assert edge.weight == pytest.approx(0.7)

    def test_duplicate_ids_ignored(self, log, now):
        record = InteractionRecord("U1", "D1", "view", now)
        assert log.append(record)
        assert not log.append(InteractionRecord("U1", "D1", "click", now))
        assert len(log) == 1

    def test_aware_timestamp_normalized(self, log, now):
        moment = now.astimezone(timezone.utc)
        log.log("U1", "D1", "view", now - timedelta(hours=1))
        record = log.log("U1", "D1", "click", moment)
        assert record.timestamp.tzinfo is None
        assert record.timestamp == now
        edge = log.graph.get_edge("U1", "D1", EdgeType.INTERESTED_IN)
        assert edge.timestamp == now

    def test_merge_from_takes_missing_records(self, log, now):
        log.log("U1", "D1", "view", now)
        other = InteractionLog(GraphStore())
        for record in log.records:
            other.append(record)
        other.replay()
        log.log("U1", "D2", "click", now)

        assert other.merge_from(log) == 1
        assert other.merge_from(log) == 0
        assert len(other) == 2
        assert other.graph.get_edge("U1", "D2", EdgeType.INTERESTED_IN).click == 1
        assert other.graph.get_edge("U1", "D1", EdgeType.INTERESTED_IN).view == 1


class TestReplay:
    """Tests for rebuilding graph edges from persisted rows."""

    def test_replay_folds_once(self, log, now):
        rows = {
            "a": {"userId": "U1", "dealId": "D1", "type": "click", "timestamp": int(now.timestamp() * 1000)},
            "b": {"userId": "U1", "dealId": "D2", "type": "view", "timestamp": int(now.timestamp() * 1000)},
        }
        assert log.load_rows(rows) == 2
        assert log.replay() == 2
        assert log.replay() == 0
        assert log.graph.get_edge("U1", "D1", EdgeType.INTERESTED_IN).click == 1

    def test_reloading_rows_is_idempotent(self, log, now):
        rows = {"a": {"userId": "U1", "dealId": "D1", "type": "view", "timestamp": 0}}
        log.load_rows(rows)
        assert log.load_rows(rows) == 0
        assert len(log) == 1

    def test_malformed_rows_skipped(self, log):
        rows = {
            "bad-kind": {"userId": "U1", "dealId": "D1", "type": "purchase", "timestamp": 0},
            "missing": {"userId": "U1"},
        }
        assert log.load_rows(rows) == 0

    def test_to_rows(self, log, now):
        record = log.log("U1", "D1", "activate", now)
        assert log.to_rows() == {record.interaction_id: record.to_row()}


class TestFrames:
    """Tests for DataFrame import and export."""

    def test_to_frame_columns(self, log, now):
        log.log("U1", "D1", "view", now)
        frame = log.to_frame()
        assert list(frame.columns) == ["interaction_id", "user_id", "deal_id", "kind", "timestamp"]
        assert frame.iloc[0]["kind"] == "view"

    def test_empty_frame(self, log):
        assert log.to_frame().empty
        assert log.summary() == {}

    def test_extend_from_frame(self, log, now):
        frame = pd.DataFrame({
            "user_id": ["U1", "U2", "U1"],
            "deal_id": ["D1", "D1", "D2"],
            "kind": ["view", "click", "view"],
            "timestamp": [now, now, now - timedelta(minutes=5)],
        })
        assert log.extend_from_frame(frame) == 3
        assert log.replay() == 3
        assert log.summary() == {"view": 2, "click": 1}
        assert log.graph.get_edge("U2", "D1", EdgeType.INTERESTED_IN).click == 1

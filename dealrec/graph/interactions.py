"""Append-only interaction log folded into the deal graph."""

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Set

import pandas as pd
from loguru import logger

from ..constants import INTERACTION_WEIGHTS
from .models import EdgeType, InteractionKind, InteractionRecord, NodeType
from .store import GraphStore

FRAME_COLUMNS = ["interaction_id", "user_id", "deal_id", "kind", "timestamp"]


class InteractionLog:
    """Records user actions and accumulates them as ``interested_in`` edges.

    ``fold`` always adds the record's counts to the graph, so folding a
    record twice counts it twice. ``replay`` only folds records that have
    not been folded yet, which makes repeated replays safe.
    """

    def __init__(self, graph: GraphStore):
        self.graph = graph
        self.records: List[InteractionRecord] = []
        self._ids: Set[str] = set()
        self._folded: Set[str] = set()

    def __len__(self) -> int:
        return len(self.records)

    def append(self, record: InteractionRecord) -> bool:
        """Append a record; duplicates by ``interaction_id`` are ignored.

        Returns:
            True if the record was new
        """
        if record.interaction_id in self._ids:
            logger.debug(f"Ignoring duplicate interaction {record.interaction_id}")
            return False
        self.records.append(record)
        self._ids.add(record.interaction_id)
        return True

    def log(
        self,
        user_id: str,
        deal_id: str,
        kind: InteractionKind,
        timestamp: Optional[datetime] = None
    ) -> Optional[InteractionRecord]:
        """Record a new interaction and fold it into the graph.

        Every call is a distinct action: when the ``user-deal-millis`` id is
        already taken, a ``-<n>`` suffix is added until it is unique.

        Returns:
            The folded record, or ``None`` if it could not be appended
        """
        record = InteractionRecord(
            user_id=user_id,
            deal_id=deal_id,
            kind=InteractionKind(kind),
            timestamp=timestamp or datetime.now(),
        )
        base_id = record.interaction_id
        suffix = 0
        while record.interaction_id in self._ids:
            suffix += 1
            record.interaction_id = f"{base_id}-{suffix}"

        if not self.append(record):
            return None
        self.fold(record)
        return record

    def merge_from(self, other: "InteractionLog") -> int:
        """Append and fold records from ``other`` that this log lacks.

        Returns:
            Number of records taken over
        """
        added = 0
        for record in other.records:
            if self.append(record):
                self.fold(record)
                added += 1
        return added

    def fold(self, record: InteractionRecord):
        """Add one record's contribution to the user -> deal edge."""
        self.graph.add_node(record.user_id, NodeType.USER)
        self.graph.add_node(record.deal_id, NodeType.DEAL)
        self.graph.add_edge(
            record.user_id,
            record.deal_id,
            EdgeType.INTERESTED_IN,
            {
                record.kind.value: 1,
                "weight": INTERACTION_WEIGHTS[record.kind.value],
                "timestamp": record.timestamp,
            },
        )
        self._folded.add(record.interaction_id)

    def replay(self) -> int:
        """Fold every record that is not yet reflected in the graph.

        Returns:
            Number of records folded
        """
        pending = [r for r in self.records if r.interaction_id not in self._folded]
        for record in sorted(pending, key=lambda r: r.timestamp):
            self.fold(record)
        if pending:
            logger.info(f"Replayed {len(pending)} interactions into the graph")
        return len(pending)

    def load_rows(self, rows: Mapping[str, Mapping[str, Any]]) -> int:
        """Append records from the persisted ``interactions`` table.

        Malformed rows are logged and skipped.

        Returns:
            Number of new records
        """
        added = 0
        for interaction_id, row in rows.items():
            try:
                record = InteractionRecord.from_row(interaction_id, row)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed interaction {interaction_id}: {e}")
                continue
            if self.append(record):
                added += 1
        return added

    def to_rows(self) -> Dict[str, Dict[str, Any]]:
        return {record.interaction_id: record.to_row() for record in self.records}

    def to_frame(self) -> pd.DataFrame:
        """Interactions as a DataFrame, one row per record."""
        return pd.DataFrame(
            [
                {
                    "interaction_id": r.interaction_id,
                    "user_id": r.user_id,
                    "deal_id": r.deal_id,
                    "kind": r.kind.value,
                    "timestamp": pd.Timestamp(r.timestamp),
                }
                for r in self.records
            ],
            columns=FRAME_COLUMNS,
        )

    def extend_from_frame(self, frame: pd.DataFrame) -> int:
        """Append records from a DataFrame with ``user_id``, ``deal_id``,
        ``kind`` and ``timestamp`` columns (``interaction_id`` optional).

        Returns:
            Number of new records
        """
        added = 0
        for row in frame.to_dict("records"):
            interaction_id = row.get("interaction_id")
            record = InteractionRecord(
                user_id=str(row["user_id"]),
                deal_id=str(row["deal_id"]),
                kind=InteractionKind(row["kind"]),
                timestamp=pd.Timestamp(row["timestamp"]).to_pydatetime(),
                interaction_id=interaction_id if isinstance(interaction_id, str) else None,
            )
            if self.append(record):
                added += 1
        return added

    def summary(self) -> Dict[str, int]:
        """Number of records per interaction kind."""
        frame = self.to_frame()
        if frame.empty:
            return {}
        return {str(k): int(v) for k, v in frame["kind"].value_counts().items()}

"""Graph-based relevance scoring for deals."""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from ..constants import (
    INTERACTION_WEIGHTS,
    RECENCY_DECAY_DAYS,
    TIME_RELEVANCE_HORIZON_DAYS,
)
from ..graph import EdgeType, GraphStore, InteractionKind, NodeType, parse_datetime

_SECONDS_PER_DAY = 86400.0


@dataclass
class ScoredDeal:
    """Total relevance score of a deal and its three components."""

    deal_id: str
    score: float
    interest: float = 0.0
    interaction: float = 0.0
    time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {"dealId": self.deal_id, "score": self.score}


class RecommendationScorer:
    """Scores deals for a user from the deal graph.

    The score is the sum of an interest-match fraction, a recency-decayed
    interaction weight and a time-to-expiry relevance term. Expired deals
    are never scored.
    """

    def __init__(
        self,
        graph: GraphStore,
        weights: Optional[Dict[str, float]] = None,
        decay_days: float = RECENCY_DECAY_DAYS,
        horizon_days: float = TIME_RELEVANCE_HORIZON_DAYS
    ):
        self.graph = graph
        self.weights = dict(weights or INTERACTION_WEIGHTS)
        self.decay_days = decay_days
        self.horizon_days = horizon_days

    def expiration(self, deal_id: str) -> Optional[datetime]:
        if not self.graph.has_node(deal_id):
            return None
        return parse_datetime(self.graph.get_node_attribute(deal_id, "expiration_date"))

    def is_active(self, deal_id: str, now: Optional[datetime] = None) -> bool:
        """True if the deal's expiration date parses and is at or after ``now``."""
        expires = self.expiration(deal_id)
        return expires is not None and expires >= (now or datetime.now())

    def interest_match(self, deal_id: str, interests: Sequence[str]) -> float:
        """Fraction of ``interests`` found among the deal's categories."""
        if not interests:
            return 0.0
        categories = {
            self.graph.get_node_attribute(key, "name") or key
            for key in self.graph.neighbors(deal_id, "out", EdgeType.BELONGS_TO)
        }
        categories = {str(c).lower() for c in categories}
        matched = sum(1 for interest in interests if str(interest).strip().lower() in categories)
        return matched / len(interests)

    def interaction_score(
        self,
        user_id: str,
        deal_id: str,
        now: Optional[datetime] = None
    ) -> float:
        """Weighted interaction counts decayed by days since the last interaction."""
        edge = self.graph.get_edge(user_id, deal_id, EdgeType.INTERESTED_IN)
        if edge is None:
            return 0.0

        raw = sum(self.weights[kind.value] * edge.count(kind) for kind in InteractionKind)
        days_since = 0.0
        if edge.timestamp is not None:
            elapsed = ((now or datetime.now()) - edge.timestamp).total_seconds()
            days_since = max(0.0, elapsed / _SECONDS_PER_DAY)
        return raw * math.exp(-days_since / self.decay_days)

    def time_relevance(self, deal_id: str, now: Optional[datetime] = None) -> float:
        """``min(1, days_until_expiration / horizon)`` clamped to [0, 1]."""
        expires = self.expiration(deal_id)
        if expires is None:
            return 0.0
        days_left = (expires - (now or datetime.now())).total_seconds() / _SECONDS_PER_DAY
        return min(1.0, max(0.0, days_left / self.horizon_days))

    def score_deal(
        self,
        user_id: str,
        deal_id: str,
        interests: Sequence[str],
        now: Optional[datetime] = None
    ) -> ScoredDeal:
        now = now or datetime.now()
        interest = self.interest_match(deal_id, interests)
        interaction = self.interaction_score(user_id, deal_id, now)
        time_term = self.time_relevance(deal_id, now)
        return ScoredDeal(
            deal_id=deal_id,
            score=interest + interaction + time_term,
            interest=interest,
            interaction=interaction,
            time=time_term,
        )

    def score(
        self,
        user_id: str,
        deal_id: str,
        interests: Sequence[str],
        now: Optional[datetime] = None
    ) -> float:
        return self.score_deal(user_id, deal_id, interests, now).score

    def rank(
        self,
        user_id: str,
        interests: Sequence[str],
        limit: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> List[ScoredDeal]:
        """Score every active deal and sort by descending score.

        Ties are broken by deal id so repeated calls return the same order.
        """
        now = now or datetime.now()
        candidates = [
            node.key for node in self.graph.nodes(NodeType.DEAL)
            if self.is_active(node.key, now)
        ]
        logger.debug(f"Scoring {len(candidates)} active deals for user {user_id}")

        scored = [self.score_deal(user_id, deal_id, interests, now) for deal_id in candidates]
        scored.sort(key=lambda s: (-s.score, s.deal_id))
        return scored[:limit] if limit is not None else scored

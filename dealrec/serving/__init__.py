"""Serving components for the recommendation engine.

This module provides:
- RandomProjectionForest: ANN retrieval over deal embeddings
- RecommendationScorer: graph relevance scoring
- RecommendationService: orchestration of both recommendation pathways
"""

from .retrieval import RandomProjectionForest, SearchResult
from .scoring import RecommendationScorer, ScoredDeal, parse_datetime
from .service import STORE_NAMES, RecommendationService

__all__ = [
    "RandomProjectionForest",
    "SearchResult",
    "RecommendationScorer",
    "ScoredDeal",
    "parse_datetime",
    "STORE_NAMES",
    "RecommendationService",
]

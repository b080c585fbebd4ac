"""Evaluation module for the ANN index."""

from .metrics import (
    AnnEvaluation,
    evaluate_forest_recall,
    exact_neighbors,
    recall_at_k,
)

__all__ = [
    "AnnEvaluation",
    "evaluate_forest_recall",
    "exact_neighbors",
    "recall_at_k",
]

"""Offline evaluation of the ANN forest against brute-force search.

- Recall@K: share of the exact K nearest neighbors the forest returns
- Distance ratio: mean approximate / exact distance of the K-th hit
- Query latency: mean wall time per forest query
"""

import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence, Set

import numpy as np
from loguru import logger

from ..serving.retrieval import RandomProjectionForest


@dataclass
class AnnEvaluation:
    """Container for ANN metrics at multiple K values."""

    recall: Dict[int, float] = field(default_factory=dict)
    distance_ratio: Dict[int, float] = field(default_factory=dict)
    avg_query_ms: float = 0.0
    num_queries: int = 0

    # Per-query recall for analysis
    per_query_recall: Dict[int, List[float]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, float]:
        """Convert to flat dictionary."""
        result = {}
        for k, v in self.recall.items():
            result[f"recall@{k}"] = v
        for k, v in self.distance_ratio.items():
            result[f"distance_ratio@{k}"] = v
        result["avg_query_ms"] = self.avg_query_ms
        result["num_queries"] = float(self.num_queries)
        return result

    def __str__(self) -> str:
        """Pretty print metrics."""
        lines = ["=" * 50, "ANN Evaluation Results", "=" * 50]

        for k in sorted(self.recall.keys()):
            lines.append(f"@{k}:")
            lines.append(f"  Recall:         {self.recall[k]:.4f}")
            lines.append(f"  Distance ratio: {self.distance_ratio[k]:.4f}")

        lines.append("-" * 50)
        lines.append(f"Queries:          {self.num_queries}")
        lines.append(f"Avg query time:   {self.avg_query_ms:.3f} ms")
        lines.append("=" * 50)

        return "\n".join(lines)


def recall_at_k(
    predicted: Sequence[int],
    ground_truth: Set[int],
    k: int
) -> float:
    """Calculate Recall@K for a single query.

    Recall@K = |{true neighbors in top-K}| / |{true neighbors}|

    Args:
        predicted: Ranked item indices returned by the index
        ground_truth: Indices of the exact nearest neighbors
        k: Number of top items to consider

    Returns:
        Recall@K score
    """
    if len(ground_truth) == 0:
        return 0.0

    top_k = set(predicted[:k])
    hits = len(top_k & ground_truth)

    return hits / len(ground_truth)


def exact_neighbors(vectors: np.ndarray, query: np.ndarray, k: int) -> List[int]:
    """Indices of the ``k`` rows of ``vectors`` closest to ``query`` (Euclidean)."""
    distances = np.linalg.norm(np.asarray(vectors) - np.asarray(query), axis=1)
    return [int(i) for i in np.argsort(distances, kind="stable")[:k]]


def evaluate_forest_recall(
    forest: RandomProjectionForest,
    vectors: np.ndarray,
    queries: Iterable[np.ndarray],
    k_values: Sequence[int] = (1, 5, 10)
) -> AnnEvaluation:
    """Measure how closely ``forest`` matches brute-force search.

    Args:
        forest: Forest populated with ``vectors``
        vectors: The indexed vectors, one per row
        queries: Query vectors
        k_values: K values to compute recall for

    Returns:
        AnnEvaluation with recall and distance ratio per K
    """
    vectors = np.asarray(vectors, dtype=np.float64)
    lookup = {row.tobytes(): i for i, row in enumerate(vectors)}
    k_values = sorted(k_values)
    max_k = max(k_values)

    recalls = {k: [] for k in k_values}
    ratios = {k: [] for k in k_values}
    query_times = []

    for query in queries:
        query = np.asarray(query, dtype=np.float64)

        start = time.time()
        hits = forest.get(query, max_k)
        query_times.append(time.time() - start)

        predicted = [lookup.get(np.asarray(hit.vector, dtype=np.float64).tobytes(), -1) for hit in hits]
        exact = exact_neighbors(vectors, query, max_k)
        exact_distances = np.linalg.norm(vectors[exact] - query, axis=1)

        for k in k_values:
            recalls[k].append(recall_at_k(predicted, set(exact[:k]), k))
            if len(hits) >= k and exact_distances[k - 1] > 0:
                ratios[k].append(hits[k - 1].distance / float(exact_distances[k - 1]))

    result = AnnEvaluation(num_queries=len(query_times))
    for k in k_values:
        result.recall[k] = float(np.mean(recalls[k])) if recalls[k] else 0.0
        result.distance_ratio[k] = float(np.mean(ratios[k])) if ratios[k] else 1.0
        result.per_query_recall[k] = recalls[k]
    result.avg_query_ms = float(np.mean(query_times) * 1000) if query_times else 0.0

    logger.info(f"Evaluated {result.num_queries} queries: recall@{max_k}={result.recall[max_k]:.4f}")
    return result

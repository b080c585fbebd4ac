"""Retrieval layer for candidate generation using ANN search.

Implements a random-projection forest: every tree recursively splits the
indexed vectors with the hyperplane equidistant from two randomly chosen
member points until leaves hold at most ``max_leaf_size`` points. A query
descends each tree to one leaf, and the union of those leaves is ranked by
exact Euclidean distance.
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import numpy as np
from loguru import logger

from ..constants import (
    DEFAULT_FOREST_SIZE,
    DEFAULT_MAX_LEAF_SIZE,
    MAX_SPLIT_ATTEMPTS,
    VECTOR_LEN,
)


@dataclass
class SearchResult:
    """One query hit: the indexed vector, its payload and its distance."""

    vector: np.ndarray
    payload: Dict[str, Any]
    distance: float


@dataclass
class _TreeNode:
    normal: Optional[np.ndarray] = None
    offset: float = 0.0
    left: Optional["_TreeNode"] = None
    right: Optional["_TreeNode"] = None
    indices: Optional[np.ndarray] = None

    @property
    def is_leaf(self) -> bool:
        return self.indices is not None

    def side(self, vector: np.ndarray) -> "_TreeNode":
        if float(vector @ self.normal) - self.offset > 0:
            return self.left
        return self.right


class RandomProjectionForest:
    """Forest of random hyperplane trees for approximate nearest neighbors."""

    def __init__(
        self,
        forest_size: int = DEFAULT_FOREST_SIZE,
        vector_length: int = VECTOR_LEN,
        max_leaf_size: int = DEFAULT_MAX_LEAF_SIZE,
        seed: Optional[int] = None
    ):
        """Initialize forest.

        Args:
            forest_size: Number of trees
            vector_length: Required length of every vector
            max_leaf_size: Maximum number of points in a leaf
            seed: Seed for reproducible tree construction
        """
        if forest_size < 1:
            raise ValueError(f"forest_size must be positive, got {forest_size}")
        if max_leaf_size < 1:
            raise ValueError(f"max_leaf_size must be positive, got {max_leaf_size}")

        self.forest_size = forest_size
        self.vector_length = vector_length
        self.max_leaf_size = max_leaf_size
        self.seed = seed

        self._vectors: List[np.ndarray] = []
        self._payloads: List[Dict[str, Any]] = []
        self._matrix: Optional[np.ndarray] = None
        self._trees: List[_TreeNode] = []
        self._stale = False

    def __len__(self) -> int:
        return len(self._vectors)

    @property
    def is_built(self) -> bool:
        return bool(self._trees) and not self._stale

    def _validate(self, vector) -> np.ndarray:
        array = np.asarray(vector, dtype=np.float64)
        if array.ndim != 1 or array.shape[0] != self.vector_length:
            raise ValueError(
                f"Expected vector of length {self.vector_length}, got shape {array.shape}"
            )
        if not np.all(np.isfinite(array)):
            raise ValueError("Vector contains non-finite values")
        return array

    def add(self, vector, payload: Dict[str, Any]):
        """Add a vector with its payload.

        The trees are rebuilt on the next query (or explicit ``build()``).

        Raises:
            ValueError: if the vector has the wrong length or non-finite values
        """
        array = self._validate(vector)
        array.setflags(write=False)
        self._vectors.append(array)
        self._payloads.append(payload)
        self._stale = True

    def build(self):
        """Build every tree over the vectors added so far."""
        if not self._vectors:
            self._trees = []
            self._stale = False
            return

        logger.info(
            f"Building random projection forest for {len(self._vectors)} items "
            f"({self.forest_size} trees, max leaf size {self.max_leaf_size})..."
        )
        start_time = time.time()

        self._matrix = np.vstack(self._vectors)
        seeds = np.random.SeedSequence(self.seed).spawn(self.forest_size)
        self._trees = [self._build_tree(np.random.default_rng(s)) for s in seeds]
        self._stale = False

        build_time = time.time() - start_time
        logger.info(f"Forest built in {build_time:.2f} seconds")

        self._verify_index()

    def _build_tree(self, rng: np.random.Generator) -> _TreeNode:
        root = _TreeNode()
        stack = [(root, np.arange(len(self._vectors)))]

        while stack:
            node, indices = stack.pop()
            if len(indices) <= self.max_leaf_size:
                node.indices = indices
                continue

            split = self._find_split(indices, rng)
            if split is None:
                # Points are indistinguishable; keep them in one oversized leaf
                node.indices = indices
                continue

            node.normal, node.offset, mask = split
            node.left, node.right = _TreeNode(), _TreeNode()
            stack.append((node.left, indices[mask]))
            stack.append((node.right, indices[~mask]))

        return root

    def _find_split(self, indices: np.ndarray, rng: np.random.Generator):
        points = self._matrix[indices]
        for _ in range(MAX_SPLIT_ATTEMPTS):
            i, j = rng.choice(len(indices), size=2, replace=False)
            a, b = points[i], points[j]
            normal = a - b
            if not np.any(normal):
                continue

            offset = float(normal @ ((a + b) / 2))
            mask = (points @ normal - offset) > 0
            if 0 < mask.sum() < len(indices):
                return normal, offset, mask
        return None

    def _leaf(self, tree: _TreeNode, vector: np.ndarray) -> np.ndarray:
        node = tree
        while not node.is_leaf:
            node = node.side(vector)
        return node.indices

    def _approximate(self, query: np.ndarray, top_k: int):
        candidates = np.unique(np.concatenate([self._leaf(tree, query) for tree in self._trees]))
        distances = np.linalg.norm(self._matrix[candidates] - query, axis=1)
        order = np.argsort(distances, kind="stable")[:top_k]
        return candidates[order], distances[order]

    def _exact(self, query: np.ndarray, top_k: int):
        distances = np.linalg.norm(self._matrix - query, axis=1)
        order = np.argsort(distances, kind="stable")[:top_k]
        return order, distances[order]

    def _results(self, indices: np.ndarray, distances: np.ndarray) -> List[SearchResult]:
        return [
            SearchResult(
                vector=self._vectors[i],
                payload=self._payloads[i],
                distance=float(d),
            )
            for i, d in zip(indices, distances)
        ]

    def _ensure_built(self):
        if self._stale or not self._trees:
            self.build()

    def get(self, query, top_k: int) -> List[SearchResult]:
        """Approximate top-k nearest neighbors of ``query``.

        Args:
            query: Query vector of length ``vector_length``
            top_k: Number of results

        Returns:
            Results sorted by ascending Euclidean distance; empty for an
            empty index

        Raises:
            ValueError: if the query has the wrong length or non-finite values
        """
        query = self._validate(query)
        if not self._vectors or top_k <= 0:
            return []
        self._ensure_built()
        return self._results(*self._approximate(query, top_k))

    def exact_search(self, query, top_k: int) -> List[SearchResult]:
        """Brute-force top-k over every indexed vector (for evaluation)."""
        query = self._validate(query)
        if not self._vectors or top_k <= 0:
            return []
        self._ensure_built()
        return self._results(*self._exact(query, top_k))

    def _verify_index(self, n_verify: int = 5, k: int = 10):
        """Verify index quality with recall@k of sample vectors against exact search."""
        if len(self._vectors) < n_verify:
            return

        rng = np.random.default_rng(self.seed)
        sample_indices = rng.choice(len(self._vectors), n_verify, replace=False)

        recalls = []
        for idx in sample_indices:
            query = self._vectors[idx]
            approx, _ = self._approximate(query, k)
            exact, _ = self._exact(query, k)
            recalls.append(len(set(approx) & set(exact)) / len(exact))

        recall = float(np.mean(recalls))
        logger.info(f"Index verification: {recall:.2%} recall@{k} on sampled items")

        if recall < 0.9:
            logger.warning("Index quality might be low. Consider more trees or larger leaves.")

    def get_metrics(self) -> Dict[str, Any]:
        """Forest shape statistics."""
        leaf_sizes = []
        for tree in self._trees:
            stack = [tree]
            while stack:
                node = stack.pop()
                if node.is_leaf:
                    leaf_sizes.append(len(node.indices))
                else:
                    stack.extend((node.left, node.right))

        return {
            "index_size": len(self._vectors),
            "forest_size": self.forest_size,
            "max_leaf_size": self.max_leaf_size,
            "num_leaves": len(leaf_sizes),
            "avg_leaf_size": float(np.mean(leaf_sizes)) if leaf_sizes else 0.0,
            "built": self.is_built,
        }

"""Heterogeneous multi-edge graph of deals, merchants, categories and users."""

from collections import defaultdict
from itertools import combinations
from typing import Any, Dict, Iterator, List, Mapping, Optional, Set, Tuple

import numpy as np
from loguru import logger

from ..constants import SIMILARITY_THRESHOLD
from .models import (
    ATTRIBUTE_TYPES,
    EdgeType,
    GraphEdge,
    GraphNode,
    NodeType,
)

EdgeKey = Tuple[str, str, EdgeType]

_DIRECTIONS = ("out", "in", "both")


class GraphStore:
    """Mutable graph with typed nodes and typed, mergeable edges.

    At most one edge exists per ``(source, target, edge_type)``; adding it
    again adds the numeric attributes onto the existing edge. Edges of
    different types may connect the same pair of nodes.
    """

    def __init__(self):
        self._nodes: Dict[str, GraphNode] = {}
        self._edges: Dict[EdgeKey, GraphEdge] = {}
        self._out: Dict[str, Set[EdgeKey]] = defaultdict(set)
        self._in: Dict[str, Set[EdgeKey]] = defaultdict(set)

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def num_edges(self) -> int:
        return len(self._edges)

    def add_node(
        self,
        key: str,
        node_type: NodeType,
        attrs: Optional[Mapping[str, Any]] = None
    ) -> GraphNode:
        """Add a node unless it already exists.

        Existing nodes are returned untouched; their attributes only change
        through ``set_node_attribute``.
        """
        if key in self._nodes:
            return self._nodes[key]

        node_type = NodeType(node_type)
        node = GraphNode(
            key=key,
            node_type=node_type,
            attrs=ATTRIBUTE_TYPES[node_type].from_mapping(attrs),
        )
        self._nodes[key] = node
        return node

    def get_node(self, key: str) -> GraphNode:
        try:
            return self._nodes[key]
        except KeyError:
            raise KeyError(f"Node not found: {key}") from None

    def has_node(self, key: str) -> bool:
        return key in self._nodes

    def nodes(self, node_type: Optional[NodeType] = None) -> Iterator[GraphNode]:
        for node in self._nodes.values():
            if node_type is None or node.node_type == node_type:
                yield node

    def set_node_attribute(self, key: str, attr: str, value: Any):
        self.get_node(key).attrs.set(attr, value)

    def get_node_attribute(self, key: str, attr: str, default: Any = None) -> Any:
        return self.get_node(key).attrs.get(attr, default)

    def add_edge(
        self,
        source: str,
        target: str,
        edge_type: EdgeType,
        attrs: Optional[Mapping[str, Any]] = None
    ) -> GraphEdge:
        """Add an edge or merge ``attrs`` into the existing edge of that type.

        Raises:
            KeyError: if either endpoint is not in the graph
        """
        for key in (source, target):
            if key not in self._nodes:
                raise KeyError(f"Cannot add edge, node not found: {key}")

        edge_key = (source, target, EdgeType(edge_type))
        edge = self._edges.get(edge_key)
        if edge is None:
            edge = GraphEdge(source=source, target=target, edge_type=edge_key[2])
            self._edges[edge_key] = edge
            self._out[source].add(edge_key)
            self._in[target].add(edge_key)

        if attrs:
            edge.merge(attrs)
        return edge

    def get_edge(
        self,
        source: str,
        target: str,
        edge_type: EdgeType
    ) -> Optional[GraphEdge]:
        return self._edges.get((source, target, EdgeType(edge_type)))

    def has_edge(
        self,
        source: str,
        target: str,
        edge_type: Optional[EdgeType] = None
    ) -> bool:
        if edge_type is not None:
            return (source, target, EdgeType(edge_type)) in self._edges
        return any(key[1] == target for key in self._out.get(source, ()))

    def edges(self, edge_type: Optional[EdgeType] = None) -> Iterator[GraphEdge]:
        for edge in self._edges.values():
            if edge_type is None or edge.edge_type == edge_type:
                yield edge

    def neighbors(
        self,
        key: str,
        direction: str = "out",
        edge_type: Optional[EdgeType] = None
    ) -> Set[str]:
        """Keys of nodes adjacent to ``key``.

        Args:
            key: Node key
            direction: ``"out"``, ``"in"`` or ``"both"``
            edge_type: Restrict to edges of this type

        Returns:
            Set of neighbor keys (empty for unknown nodes)
        """
        if direction not in _DIRECTIONS:
            raise ValueError(f"direction must be one of {_DIRECTIONS}, got {direction!r}")
        edge_type = EdgeType(edge_type) if edge_type is not None else None

        result = set()
        if direction in ("out", "both"):
            for source, target, kind in self._out.get(key, ()):
                if edge_type is None or kind == edge_type:
                    result.add(target)
        if direction in ("in", "both"):
            for source, target, kind in self._in.get(key, ()):
                if edge_type is None or kind == edge_type:
                    result.add(source)
        return result

    def get_related_deals(self, deal_id: str) -> Set[str]:
        """Deals sharing a merchant or a category with ``deal_id``."""
        if deal_id not in self._nodes:
            return set()

        related = set()
        for edge_type in (EdgeType.OFFERED_BY, EdgeType.BELONGS_TO):
            for hub in self.neighbors(deal_id, "out", edge_type):
                related |= self.neighbors(hub, "in", edge_type)

        related.discard(deal_id)
        return {key for key in related if self._nodes[key].node_type == NodeType.DEAL}

    def connect_similar_deals(self, threshold: float = SIMILARITY_THRESHOLD) -> int:
        """Link every pair of deals whose vectors have cosine similarity above ``threshold``.

        Quadratic in the number of vectorized deals; run once after the deal
        set is loaded.

        Returns:
            Number of pairs connected
        """
        keys: List[str] = []
        vectors = []
        for node in self.nodes(NodeType.DEAL):
            vector = node.attrs.get("vector")
            if vector is not None:
                keys.append(node.key)
                vectors.append(np.asarray(vector, dtype=np.float64))

        if len(keys) < 2:
            return 0

        matrix = np.vstack(vectors)
        norms = np.linalg.norm(matrix, axis=1)
        norms[norms == 0] = 1.0
        similarities = (matrix @ matrix.T) / np.outer(norms, norms)

        connected = 0
        for i, j in combinations(range(len(keys)), 2):
            similarity = float(similarities[i, j])
            if similarity > threshold and not self.has_edge(keys[i], keys[j], EdgeType.SIMILAR):
                self.add_edge(keys[i], keys[j], EdgeType.SIMILAR, {"weight": similarity})
                connected += 1

        logger.info(
            f"Connected {connected} similar deal pairs among {len(keys)} vectorized deals "
            f"(threshold={threshold})"
        )
        return connected

    def stats(self) -> Dict[str, Any]:
        """Node and edge counts per type."""
        node_counts = defaultdict(int)
        for node in self._nodes.values():
            node_counts[node.node_type.value] += 1
        edge_counts = defaultdict(int)
        for edge in self.edges():
            edge_counts[edge.edge_type.value] += 1
        return {
            "nodes": len(self._nodes),
            "edges": len(self._edges),
            "node_types": dict(node_counts),
            "edge_types": dict(edge_counts),
        }

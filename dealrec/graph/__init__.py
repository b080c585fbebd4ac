"""Heterogeneous deal graph and interaction log."""

from .interactions import InteractionLog
from .models import (
    DealAttributes,
    EdgeType,
    GraphEdge,
    GraphNode,
    InteractionKind,
    InteractionRecord,
    NodeType,
    category_key,
    interest_key,
    merchant_key,
    parse_datetime,
)
from .store import GraphStore

__all__ = [
    "GraphStore",
    "InteractionLog",
    "DealAttributes",
    "EdgeType",
    "GraphEdge",
    "GraphNode",
    "InteractionKind",
    "InteractionRecord",
    "NodeType",
    "category_key",
    "interest_key",
    "merchant_key",
    "parse_datetime",
]

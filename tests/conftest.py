"""Pytest configuration and shared fixtures."""

import pytest
import numpy as np
import sys
from datetime import datetime, timedelta
from pathlib import Path

# Add project root to path for all tests
sys.path.insert(0, str(Path(__file__).parent.parent))

from dealrec.features import StoreRegistry
from dealrec.graph import (
    EdgeType,
    GraphStore,
    NodeType,
    category_key,
    merchant_key,
)
from dealrec.monitoring import MetricsCollector
from dealrec.serving import STORE_NAMES


@pytest.fixture
def now():
    """Fixed reference time."""
    return datetime(2024, 6, 1, 12, 0, 0)


@pytest.fixture
def sample_catalog(now):
    """Catalog items as returned by the upstream feed."""
    def item(i, merchant, cashback_type, cashback, categories, days_left):
        return {
            "id": f"deal_{i}",
            "dealId": f"D{i:05d}",
            "merchantName": merchant,
            "logo": f"logo{i}.png",
            "logoAbsoluteUrl": f"https://cdn.example.com/logo{i}.png",
            "cashbackType": cashback_type,
            "cashback": cashback,
            "currency": "USD",
            "domains": [f"{merchant.lower()}.example.com"],
            "countries": ["US", "UK"],
            "codes": [{"code": f"SAVE{i}", "summary": "Save now"}],
            "startDate": (now - timedelta(days=30)).isoformat(),
            "endDate": (now + timedelta(days=days_left)).isoformat(),
            "categories": categories,
        }

    return [
        item(1, "Acme", "percentage", 10, ["tech"], 10),
        item(2, "Acme", "percentage", 5, ["tech", "gaming"], 45),
        item(3, "Bolt", "fixed", 12.5, ["fashion"], 20),
        item(4, "Crate", "fixed", 7, ["home"], -3),
        item(5, "Bolt", "percentage", 8, ["fashion", "beauty"], 60),
    ]


@pytest.fixture
def sample_profile():
    """User profile in the persisted camelCase shape."""
    return {
        "interests": ["tech", "gaming"],
        "shoppingFrequency": "Weekly",
        "surveyResponses": {
            "favoriteCategory": {"answer": "tech"},
            "preferredCashback": {"answer": "percentage"},
        },
        "geolocation": {"countryCode": "US", "ip": "10.0.0.1"},
    }


@pytest.fixture
def deal_graph(now):
    """Three deals: D1 and D2 share merchant M, D3 is unrelated."""
    graph = GraphStore()
    graph.add_node("D1", NodeType.DEAL, {"expirationDate": (now + timedelta(days=10)).isoformat()})
    graph.add_node("D2", NodeType.DEAL, {"expirationDate": (now + timedelta(days=60)).isoformat()})
    graph.add_node("D3", NodeType.DEAL, {"expirationDate": (now - timedelta(days=1)).isoformat()})
    graph.add_node(merchant_key("M"), NodeType.MERCHANT, {"name": "M"})
    graph.add_node(merchant_key("N"), NodeType.MERCHANT, {"name": "N"})
    graph.add_node(category_key("tech"), NodeType.CATEGORY, {"name": "tech"})

    graph.add_edge("D1", merchant_key("M"), EdgeType.OFFERED_BY, {"weight": 1})
    graph.add_edge("D2", merchant_key("M"), EdgeType.OFFERED_BY, {"weight": 1})
    graph.add_edge("D3", merchant_key("N"), EdgeType.OFFERED_BY, {"weight": 1})
    graph.add_edge("D1", category_key("tech"), EdgeType.BELONGS_TO, {"weight": 1})
    return graph


@pytest.fixture
def stores(tmp_path):
    """Table stores persisted under a temporary directory."""
    return StoreRegistry(STORE_NAMES, str(tmp_path / "stores"))


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture(scope="session")
def seed():
    """Set random seeds for reproducibility."""
    np.random.seed(42)
    return 42

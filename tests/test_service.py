"""Integration tests for the recommendation service."""

import asyncio
import json
import time

import pytest
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dealrec.constants import (
    GEOLOCATION_ROW,
    GEOLOCATION_STORE,
    GEOLOCATION_TABLE,
    INTERACTIONS_STORE,
    INTERACTIONS_TABLE,
    MERCHANT_DESCRIPTIONS_STORE,
    MERCHANTS_TABLE,
    PROFILES_STORE,
    PROFILES_TABLE,
    RECOMMENDATIONS_STORE,
    RECOMMENDATIONS_TABLE,
    SURVEY_STORE,
    SURVEY_TABLE,
    VECTOR_DATA_STORE,
    VECTOR_DATA_TABLE,
    VECTOR_LEN,
)
from dealrec.features import DeviceContext, StoreRegistry
from dealrec.graph import EdgeType, NodeType, category_key, interest_key, merchant_key
from dealrec.serving import STORE_NAMES, RecommendationService


CONFIG = {
    "retrieval": {"forest_size": 4, "max_leaf_size": 50, "seed": 42},
    "graph": {"similarity_threshold": 0.8},
}


@pytest.fixture
def service(stores, metrics, sample_catalog, sample_profile):
    """Service with the sample catalog and one profile in its stores."""
    service = RecommendationService(CONFIG, stores, metrics)
    # Every deal expires relative to the real clock so the graph pathway sees them
    today = datetime.now()
    catalog = []
    for item in sample_catalog:
        days_left = 10 if item["id"] != "deal_4" else -3
        catalog.append(dict(item, endDate=(today + timedelta(days=days_left)).isoformat()))
    service.ingest_catalog(catalog, today)
    stores[MERCHANT_DESCRIPTIONS_STORE].set_table(
        MERCHANTS_TABLE, {"Acme": {"name": "Acme electronics"}}
    )
    stores[PROFILES_STORE].set_table(PROFILES_TABLE, {"U1": sample_profile})
    stores[SURVEY_STORE].set_table(SURVEY_TABLE, sample_profile["surveyResponses"])
    stores[GEOLOCATION_STORE].set_row(GEOLOCATION_TABLE, GEOLOCATION_ROW, sample_profile["geolocation"])
    return service


@pytest.fixture
def device():
    return DeviceContext(is_mobile=False, hour=12, weekday=3, month=5)


class TestBuild:
    """Tests for index and graph construction."""

    def test_build_index(self, service):
        assert service.build_index() == 5
        assert service.index_ready
        assert service.metrics.sample("indexed_items") == 5

    def test_vector_data_rows(self, service):
        service.build_index()
        row = service._vector_rows["deal_1"]
        assert len(json.loads(row["vector"])) == VECTOR_LEN
        assert json.loads(row["metadata"])["merchantName"] == "Acme"

    def test_build_graph_order_and_structure(self, service):
        service.build_index()
        stats = service.build_graph()
        graph = service.graph
        assert stats["node_types"]["deal"] == 5
        assert graph.has_edge("deal_1", merchant_key("Acme"), EdgeType.OFFERED_BY)
        assert graph.has_edge("deal_2", category_key("gaming"), EdgeType.BELONGS_TO)
        assert graph.has_edge("U1", interest_key("tech"), EdgeType.INTERESTED_IN)
        assert graph.get_node("U1").node_type == NodeType.USER
        assert graph.get_node_attribute("deal_1", "vector") is not None

    def test_build_graph_twice_keeps_structural_weights(self, service):
        service.build_graph()
        service.build_graph()
        edge = service.graph.get_edge("deal_1", merchant_key("Acme"), EdgeType.OFFERED_BY)
        assert edge.weight == 1.0

    def test_related_deals(self, service):
        service.build_graph()
        assert service.get_related_deals("deal_1") == ["deal_2"]

    def test_explicit_catalog(self, service):
        stats = service.build_graph(catalog=[{"id": "x", "merchantName": "Solo", "categories": []}], user_profiles={})
        assert stats["node_types"] == {"deal": 1, "merchant": 1}

    def test_initialize(self, service, stores):
        assert asyncio.run(service.initialize())
        assert service.index_ready
        assert set(stores[VECTOR_DATA_STORE].get_table(VECTOR_DATA_TABLE)) == {
            "deal_1", "deal_2", "deal_3", "deal_4", "deal_5"
        }

    def test_initialize_persists_vector_data(self, service, stores):
        asyncio.run(service.stores.save_all())
        asyncio.run(service.initialize())
        restored = StoreRegistry(STORE_NAMES, stores.directory)
        asyncio.run(restored.load_all())
        assert len(restored[VECTOR_DATA_STORE].get_table(VECTOR_DATA_TABLE)) == 5


class TestVectorPathway:
    """Tests for ANN-based recommendations."""

    def test_index_not_built(self, service, sample_profile, device):
        result = asyncio.run(service.get_personalized_recommendations(sample_profile, device=device))
        assert result == []
        assert service.metrics.sample("recommendations_total", {"pathway": "vector", "status": "error"}) == 1

    def test_recommendations_ranked_by_confidence(self, service, sample_profile, device):
        service.build_index()
        result = asyncio.run(service.get_personalized_recommendations(sample_profile, top_k=3, device=device))
        assert len(result) == 3
        confidences = [r["confidence"] for r in result]
        assert confidences == sorted(confidences, reverse=True)
        assert all(-1.0 <= c <= 1.0 for c in confidences)
        assert len({r["dealId"] for r in result}) == 3

    def test_recommendations_persisted_by_rank(self, service, sample_profile, device, stores):
        service.build_index()
        result = asyncio.run(service.get_personalized_recommendations(sample_profile, top_k=2, device=device))
        table = stores[RECOMMENDATIONS_STORE].get_table(RECOMMENDATIONS_TABLE)
        assert table == {"0": result[0], "1": result[1]}
        assert (Path(stores.directory) / f"{RECOMMENDATIONS_STORE}.json").exists()

    def test_degenerate_profile(self, service):
        service.build_index()
        result = asyncio.run(service.get_personalized_recommendations({}, device=DeviceContext()))
        assert result == []
        assert service.metrics.sample("rejected_vectors_total", {"reason": "degenerate"}) == 1

    def test_accepts_pydantic_profile(self, service, sample_profile, device):
        from dealrec.schemas import UserProfile

        service.build_index()
        profile = UserProfile.model_validate(sample_profile)
        assert len(asyncio.run(service.get_personalized_recommendations(profile, device=device))) == 5


class TestGraphPathway:
    """Tests for graph-scored recommendations."""

    def test_unknown_user(self, service):
        service.build_graph()
        assert service.get_recommendations("nobody") == []

    def test_non_user_node(self, service):
        service.build_graph()
        assert service.get_recommendations("deal_1") == []

    def test_interest_matches_rank_first(self, service):
        service.build_graph()
        result = service.get_recommendations("U1", 5)
        ids = [r["dealId"] for r in result]
        assert "deal_4" not in ids
        assert ids[0] == "deal_2"
        assert set(ids[:2]) == {"deal_1", "deal_2"}

    def test_interaction_boosts_score(self, service):
        service.build_graph()
        before = {r["dealId"]: r["score"] for r in service.get_recommendations("U1", 5)}
        asyncio.run(service.log_interaction("U1", "deal_3", "activate"))
        after = {r["dealId"]: r["score"] for r in service.get_recommendations("U1", 5)}
        assert after["deal_3"] == pytest.approx(before["deal_3"] + 0.6, abs=1e-3)


class TestInteractions:
    """Tests for logging and replaying interactions."""

    def test_log_interaction_persists_row(self, service, stores):
        row = asyncio.run(service.log_interaction("U1", "deal_1", "click"))
        assert row["type"] == "click"
        table = stores[INTERACTIONS_STORE].get_table(INTERACTIONS_TABLE)
        assert list(table.values()) == [row]
        assert service.metrics.sample("interactions_total", {"kind": "click"}) == 1

    def test_invalid_kind(self, service):
        assert asyncio.run(service.log_interaction("U1", "deal_1", "purchase")) is None

    def test_same_timestamp_interactions_both_kept(self, service, stores):
        moment = datetime(2024, 6, 1, 12, 0)
        asyncio.run(service.log_interaction("U1", "deal_1", "view", moment))
        asyncio.run(service.log_interaction("U1", "deal_1", "activate", moment))
        edge = service.graph.get_edge("U1", "deal_1", EdgeType.INTERESTED_IN)
        assert (edge.view, edge.activate) == (1, 1)
        table = stores[INTERACTIONS_STORE].get_table(INTERACTIONS_TABLE)
        assert sorted(row["type"] for row in table.values()) == ["activate", "view"]
        assert service.metrics.sample("interactions_total", {"kind": "activate"}) == 1

    def test_aware_timestamp_keeps_graph_pathway_working(self, service):
        service.build_graph()
        asyncio.run(service.log_interaction("U1", "deal_3", "click", datetime.now() - timedelta(days=1)))
        asyncio.run(service.log_interaction("U1", "deal_3", "view", datetime.now(timezone.utc)))
        edge = service.graph.get_edge("U1", "deal_3", EdgeType.INTERESTED_IN)
        assert edge.timestamp.tzinfo is None
        assert "deal_3" in [r["dealId"] for r in service.get_recommendations("U1", 5)]

    def test_interaction_logged_during_build_survives(self, service, monkeypatch):
        build_graph = RecommendationService.build_graph

        def slow_build_graph(self, *args, **kwargs):
            time.sleep(0.3)
            return build_graph(self, *args, **kwargs)

        monkeypatch.setattr(RecommendationService, "build_graph", slow_build_graph)

        async def scenario():
            build = asyncio.ensure_future(service.initialize())
            await asyncio.sleep(0.1)
            await service.log_interaction("U1", "deal_1", "click")
            return await build

        assert asyncio.run(scenario())
        assert len(service.interactions) == 1
        edge = service.graph.get_edge("U1", "deal_1", EdgeType.INTERESTED_IN)
        assert edge.click == 1

    def test_persisted_interactions_replayed_once(self, service, stores):
        asyncio.run(service.log_interaction("U1", "deal_1", "click"))
        asyncio.run(service.initialize())
        asyncio.run(service.initialize())
        edge = service.graph.get_edge("U1", "deal_1", EdgeType.INTERESTED_IN)
        assert edge.click == 1

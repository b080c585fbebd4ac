"""Recommendation service business logic.

``RecommendationService`` owns one deal graph, one interaction log and one
ANN forest per session and exposes the two recommendation pathways:

- vector pathway: user embedding -> forest query -> confidence ranking
- graph pathway: interest overlap + decayed interactions + time validity

The pathways are independent and their scores are not comparable.
Persistence happens at explicit points: ``load()`` before building and a
``save()`` on the store each output is written to.
"""

import asyncio
import json
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
from loguru import logger

from ..constants import (
    CATALOG_CACHE_HOURS,
    DEALS_STORE,
    DEFAULT_FOREST_SIZE,
    DEFAULT_MAX_LEAF_SIZE,
    DEFAULT_NUM_RECOMMENDATIONS,
    DEFAULT_TOP_K,
    GEOLOCATION_ROW,
    GEOLOCATION_STORE,
    GEOLOCATION_TABLE,
    INTERACTIONS_STORE,
    INTERACTIONS_TABLE,
    MERCHANT_DESCRIPTIONS_STORE,
    MERCHANT_PRODUCT_RANGE_STORE,
    MERCHANTS_TABLE,
    PROFILES_STORE,
    PROFILES_TABLE,
    RECOMMENDATIONS_STORE,
    RECOMMENDATIONS_TABLE,
    SIMILARITY_THRESHOLD,
    SURVEY_STORE,
    SURVEY_TABLE,
    VECTOR_DATA_STORE,
    VECTOR_DATA_TABLE,
    VECTOR_LEN,
)
from ..data.catalog import ingest_catalog, is_catalog_fresh, load_deals
from ..features import DeviceContext, FeatureVectorizer, StoreRegistry, combine_vectors
from ..graph import (
    EdgeType,
    GraphStore,
    InteractionKind,
    InteractionLog,
    NodeType,
    category_key,
    interest_key,
    merchant_key,
)
from ..monitoring import MetricsCollector
from ..schemas import Recommendation, UserProfile
from .retrieval import RandomProjectionForest
from .scoring import RecommendationScorer

STORE_NAMES = (
    DEALS_STORE,
    MERCHANT_DESCRIPTIONS_STORE,
    MERCHANT_PRODUCT_RANGE_STORE,
    SURVEY_STORE,
    GEOLOCATION_STORE,
    PROFILES_STORE,
    INTERACTIONS_STORE,
    RECOMMENDATIONS_STORE,
    VECTOR_DATA_STORE,
)


class RecommendationService:
    """Main recommendation service.

    This service handles:
    - Loading catalog, profile, survey and interaction tables
    - Deal vectorization and ANN forest construction
    - Deal graph construction and similarity linking
    - Vector and graph recommendation pathways
    - Persisting recommendations and interactions

    Every public entry point degrades to an empty result on failure; errors
    are logged and counted, never raised to the caller.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        stores: Optional[StoreRegistry] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        """Initialize recommendation service.

        Args:
            config: Configuration dict (``retrieval``, ``graph``, ``storage``
                and ``catalog`` sections are read)
            stores: Table stores; memory-only stores when omitted and no
                ``storage.directory`` is configured
            metrics: Metrics collector
        """
        self.config = config or {}
        self.retrieval_config = self.config.get("retrieval") or {}
        self.graph_config = self.config.get("graph") or {}
        self.catalog_config = self.config.get("catalog") or {}

        if stores is None:
            directory = (self.config.get("storage") or {}).get("directory")
            stores = StoreRegistry(STORE_NAMES, directory)
        self.stores = stores
        self.metrics = metrics or MetricsCollector()

        self.vectorizer = FeatureVectorizer(VECTOR_LEN)
        self.graph = GraphStore()
        self.interactions = InteractionLog(self.graph)
        self.index = self._create_index()
        self.scorer = RecommendationScorer(self.graph)

        self.index_ready = False
        self._deal_vectors: Dict[str, np.ndarray] = {}
        self._vector_rows: Dict[str, Dict[str, Any]] = {}

    def _create_index(self) -> RandomProjectionForest:
        seed = self.retrieval_config.get("seed")
        return RandomProjectionForest(
            forest_size=int(self.retrieval_config.get("forest_size", DEFAULT_FOREST_SIZE)),
            vector_length=VECTOR_LEN,
            max_leaf_size=int(self.retrieval_config.get("max_leaf_size", DEFAULT_MAX_LEAF_SIZE)),
            seed=int(seed) if seed is not None else None,
        )

    # ------------------------------------------------------------------
    # Loading and building
    # ------------------------------------------------------------------

    async def load(self) -> int:
        """Load every table store and queue persisted interactions for replay.

        Returns:
            Number of stores that had persisted data
        """
        loaded = await self.stores.load_all()
        rows = self.stores[INTERACTIONS_STORE].get_table(INTERACTIONS_TABLE)
        added = self.interactions.load_rows(rows)
        logger.info(f"Loaded {loaded} stores and {added} new interactions")
        return loaded

    def ingest_catalog(self, items: Sequence[Mapping[str, Any]], now: Optional[datetime] = None) -> int:
        """Store freshly fetched catalog items in the deals table."""
        return ingest_catalog(self.stores[DEALS_STORE], items, now)

    def catalog_is_fresh(self, now: Optional[datetime] = None) -> bool:
        max_age = float(self.catalog_config.get("cache_hours", CATALOG_CACHE_HOURS))
        return is_catalog_fresh(self.stores[DEALS_STORE], now, max_age)

    def build_index(self) -> int:
        """Vectorize every stored deal and build a fresh ANN forest.

        Deal vectors combine the deal text with the session's survey and
        geolocation vectors. Degenerate or malformed vectors are skipped.

        Returns:
            Number of deals indexed
        """
        deals = load_deals(self.stores[DEALS_STORE])
        descriptions = self.stores[MERCHANT_DESCRIPTIONS_STORE].get_table(MERCHANTS_TABLE)
        product_ranges = self.stores[MERCHANT_PRODUCT_RANGE_STORE].get_table(MERCHANTS_TABLE)
        survey = self.stores[SURVEY_STORE].get_table(SURVEY_TABLE)
        geolocation = self.stores[GEOLOCATION_STORE].get_row(GEOLOCATION_TABLE, GEOLOCATION_ROW)

        survey_vector = self.vectorizer.vectorize_survey(survey)
        geo_vector = self.vectorizer.vectorize_geolocation(geolocation)

        logger.info(f"Vectorizing {len(deals)} deals...")
        self.index = self._create_index()
        self.index_ready = False
        self._deal_vectors = {}
        self._vector_rows = {}

        with self.metrics.time_stage("vectorize"):
            for deal in deals:
                deal_id = deal["id"]
                merchant = deal.get("merchantName") or ""
                deal_vector = self.vectorizer.vectorize_deal(
                    deal,
                    description=(descriptions.get(merchant) or {}).get("name", ""),
                    product_range=(product_ranges.get(merchant) or {}).get("productRange", ""),
                )
                vector = combine_vectors([deal_vector, survey_vector, geo_vector])
                if vector is None:
                    logger.warning(f"Skipping deal {deal_id}: degenerate embedding")
                    self.metrics.record_rejected_vector("degenerate")
                    continue

                try:
                    self.index.add(vector, {"dealId": deal_id, **deal})
                except ValueError as e:
                    logger.error(f"Rejected vector for deal {deal_id}: {e}")
                    self.metrics.record_rejected_vector("shape")
                    continue

                self._deal_vectors[deal_id] = vector
                if self.graph.has_node(deal_id):
                    self.graph.set_node_attribute(deal_id, "vector", vector)
                self._vector_rows[deal_id] = {
                    "vector": json.dumps(vector.tolist()),
                    "metadata": json.dumps({**deal, "surveyResponses": survey, "geolocation": geolocation}),
                }

        with self.metrics.time_stage("index_build"):
            self.index.build()

        self.index_ready = len(self.index) > 0
        self.metrics.update_index_size(len(self.index))
        if not self.index_ready:
            logger.warning("No deals were indexed; vector recommendations unavailable")
        return len(self.index)

    def _link(self, source: str, target: str, edge_type: EdgeType):
        if not self.graph.has_edge(source, target, edge_type):
            self.graph.add_edge(source, target, edge_type, {"weight": 1.0})

    def add_deal(self, deal: Mapping[str, Any]):
        """Add a deal with its merchant and category hubs to the graph."""
        deal_id = str(deal["id"])
        self.graph.add_node(deal_id, NodeType.DEAL)
        self.graph.set_node_attribute(deal_id, "merchantName", deal.get("merchantName"))
        self.graph.set_node_attribute(
            deal_id,
            "expirationDate",
            deal.get("expirationDate") or deal.get("endDate"),
        )
        self.graph.set_node_attribute(deal_id, "dealId", deal.get("dealId"))
        if deal_id in self._deal_vectors:
            self.graph.set_node_attribute(deal_id, "vector", self._deal_vectors[deal_id])

        merchant = deal.get("merchantName")
        if merchant:
            key = merchant_key(merchant)
            self.graph.add_node(key, NodeType.MERCHANT, {"name": merchant})
            self._link(deal_id, key, EdgeType.OFFERED_BY)

        for category in deal.get("categories") or []:
            key = category_key(category)
            self.graph.add_node(key, NodeType.CATEGORY, {"name": category})
            self._link(deal_id, key, EdgeType.BELONGS_TO)

    def add_user(self, user_id: str, profile: Union[UserProfile, Mapping[str, Any]]):
        """Add a user and the interests from their profile to the graph."""
        if isinstance(profile, UserProfile):
            profile = profile.to_payload()
        interests = [str(i) for i in profile.get("interests") or []]

        self.graph.add_node(user_id, NodeType.USER)
        self.graph.set_node_attribute(user_id, "interests", interests)
        self.graph.set_node_attribute(user_id, "shoppingFrequency", profile.get("shoppingFrequency"))

        for interest in interests:
            key = interest_key(interest)
            self.graph.add_node(key, NodeType.INTEREST, {"name": interest})
            self._link(user_id, key, EdgeType.INTERESTED_IN)

    def build_graph(
        self,
        catalog: Optional[Sequence[Mapping[str, Any]]] = None,
        user_profiles: Optional[Mapping[str, Mapping[str, Any]]] = None
    ) -> Dict[str, Any]:
        """Populate the graph: deals, then users, then interactions.

        Args:
            catalog: Deal rows with an ``id`` key; defaults to the stored
                ``deals`` table
            user_profiles: Profiles keyed by user id; defaults to the
                persisted ``profiles`` table

        Returns:
            Graph statistics
        """
        with self.metrics.time_stage("graph_build"):
            if catalog is None:
                catalog = load_deals(self.stores[DEALS_STORE])
            for deal in catalog:
                self.add_deal(deal)

            if user_profiles is None:
                user_profiles = self.stores[PROFILES_STORE].get_table(PROFILES_TABLE)
            for user_id, profile in user_profiles.items():
                self.add_user(str(user_id), profile)

            self.interactions.replay()
            self.graph.connect_similar_deals(
                float(self.graph_config.get("similarity_threshold", SIMILARITY_THRESHOLD))
            )

        stats = self.graph.stats()
        self.metrics.update_graph_size(stats["nodes"], stats["edges"])
        logger.info(f"Graph built: {stats['nodes']} nodes, {stats['edges']} edges")
        return stats

    def _build(self, user_profiles: Optional[Mapping[str, Mapping[str, Any]]] = None):
        self.build_index()
        self.build_graph(user_profiles=user_profiles)

    def _adopt(self, other: "RecommendationService"):
        self.graph = other.graph
        self.interactions = other.interactions
        self.index = other.index
        self.scorer = other.scorer
        self.index_ready = other.index_ready
        self._deal_vectors = other._deal_vectors
        self._vector_rows = other._vector_rows

    async def initialize(
        self,
        user_profiles: Optional[Mapping[str, Mapping[str, Any]]] = None,
        timeout: Optional[float] = None
    ) -> bool:
        """Load inputs, build index and graph off the event loop, persist vectors.

        The build runs on a fresh graph and forest in a worker thread and is
        swapped in only when it completes; on timeout the partial result is
        discarded and the previous state stays in place.

        Returns:
            True if the new index and graph were adopted
        """
        logger.info("Initializing recommendation service...")
        await self.load()

        candidate = RecommendationService(self.config, self.stores, self.metrics)
        for record in self.interactions.records:
            candidate.interactions.append(record)

        try:
            await asyncio.wait_for(asyncio.to_thread(candidate._build, user_profiles), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Index build exceeded {timeout}s; discarding partial result")
            self.metrics.record_error("timeout", "build")
            return False
        except Exception as e:
            logger.error(f"Failed to build recommendation state: {e}")
            self.metrics.record_error(type(e).__name__, "build")
            return False

        # Interactions logged while the build ran went to the current log
        late = candidate.interactions.merge_from(self.interactions)
        if late:
            logger.info(f"Carried over {late} interactions logged during the build")
        self._adopt(candidate)

        vector_store = self.stores[VECTOR_DATA_STORE]
        vector_store.set_table(VECTOR_DATA_TABLE, self._vector_rows)
        await vector_store.save()

        logger.info("Recommendation service initialized successfully")
        return True

    # ------------------------------------------------------------------
    # Recommendation pathways
    # ------------------------------------------------------------------

    async def get_personalized_recommendations(
        self,
        user_profile: Union[UserProfile, Mapping[str, Any]],
        top_k: int = DEFAULT_TOP_K,
        device: Optional[DeviceContext] = None
    ) -> List[Dict[str, Any]]:
        """Vector pathway: nearest deals to the user's combined embedding.

        Results are ranked by ``confidence = 1 - distance`` and persisted to
        the recommendations table keyed by rank.

        Returns:
            List of ``{"dealId", "confidence"}`` dicts; empty on any failure
        """
        if not self.index_ready:
            logger.error("ANN index not built yet; call build_index() and retry")
            self.metrics.record_recommendations("vector", "error")
            return []

        if isinstance(user_profile, UserProfile):
            user_profile = user_profile.to_payload()

        with self.metrics.time_stage("vector_query"):
            user_vector = self.vectorizer.vectorize_profile(
                user_profile, device or DeviceContext.capture()
            )
            if user_vector is None:
                logger.error("User profile produced a degenerate vector")
                self.metrics.record_rejected_vector("degenerate")
                self.metrics.record_recommendations("vector", "error")
                return []
            if user_vector.shape[0] != VECTOR_LEN:
                logger.error(f"User vector length {user_vector.shape[0]} != {VECTOR_LEN}")
                self.metrics.record_rejected_vector("shape")
                self.metrics.record_recommendations("vector", "error")
                return []
            logger.debug(f"User vector: {self.vectorizer.describe(user_vector)}")

            try:
                hits = self.index.get(user_vector, top_k)
            except ValueError as e:
                logger.error(f"Error querying ANN index: {e}")
                self.metrics.record_recommendations("vector", "error")
                return []

        recommendations = sorted(
            (
                Recommendation(deal_id=str(hit.payload["dealId"]), confidence=1.0 - hit.distance)
                for hit in hits
            ),
            key=lambda r: r.confidence,
            reverse=True,
        )
        rows = [rec.to_row() for rec in recommendations]

        store = self.stores[RECOMMENDATIONS_STORE]
        store.set_table(RECOMMENDATIONS_TABLE, {str(i): row for i, row in enumerate(rows)})
        await store.save()

        self.metrics.record_recommendations("vector", "success" if rows else "empty", len(rows))
        return rows

    def get_recommendations(
        self,
        user_id: str,
        num_recommendations: int = DEFAULT_NUM_RECOMMENDATIONS,
        now: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        """Graph pathway: top deals by relevance score for a known user.

        Returns:
            List of ``{"dealId", "score"}`` dicts; empty for unknown users
        """
        if not self.graph.has_node(user_id) or self.graph.get_node(user_id).node_type != NodeType.USER:
            logger.warning(f"User {user_id} not found in graph")
            self.metrics.record_recommendations("graph", "error")
            return []

        try:
            with self.metrics.time_stage("graph_score"):
                interests = self.graph.get_node_attribute(user_id, "interests") or []
                ranked = self.scorer.rank(user_id, interests, limit=num_recommendations, now=now)
        except Exception as e:
            logger.error(f"Error scoring deals for user {user_id}: {e}")
            self.metrics.record_error(type(e).__name__, "scorer")
            self.metrics.record_recommendations("graph", "error")
            return []

        results = [scored.to_dict() for scored in ranked]
        self.metrics.record_recommendations("graph", "success" if results else "empty", len(results))
        return results

    def get_related_deals(self, deal_id: str) -> List[str]:
        return sorted(self.graph.get_related_deals(deal_id))

    async def log_interaction(
        self,
        user_id: str,
        deal_id: str,
        kind: Union[InteractionKind, str],
        timestamp: Optional[datetime] = None
    ) -> Optional[Dict[str, Any]]:
        """Record an interaction, fold it into the graph and persist it.

        Returns:
            The stored interaction row, or ``None`` if it was rejected
        """
        try:
            kind = InteractionKind(kind)
        except ValueError:
            logger.error(f"Unknown interaction kind: {kind!r}")
            self.metrics.record_error("invalid_kind", "interactions")
            return None

        try:
            record = self.interactions.log(user_id, deal_id, kind, timestamp)
        except ValueError as e:
            logger.error(f"Rejected interaction for user {user_id}: {e}")
            self.metrics.record_error("invalid_timestamp", "interactions")
            return None
        if record is None:
            return None
        row = record.to_row()

        store = self.stores[INTERACTIONS_STORE]
        store.set_row(INTERACTIONS_TABLE, record.interaction_id, row)
        await store.save()

        self.metrics.record_interaction(kind.value)
        logger.debug(f"Interaction: user {user_id} {kind.value} deal {deal_id}")
        return row

    def get_metrics(self) -> Dict[str, Any]:
        """Index and graph statistics."""
        return {
            "index": self.index.get_metrics(),
            "graph": self.graph.stats(),
            "interactions": len(self.interactions),
            "index_ready": self.index_ready,
        }

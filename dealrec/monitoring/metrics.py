"""Metrics collection for the recommendation engine."""

import time
from contextlib import contextmanager
from typing import Dict

from loguru import logger
from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


class MetricsCollector:
    """Collects and exposes metrics for monitoring.

    Each collector owns its registry so several engines (or tests) can
    coexist in one process without duplicate registration.
    """

    def __init__(self, namespace: str = "dealrec"):
        """Initialize metrics collector.

        Args:
            namespace: Prometheus namespace for metrics
        """
        self.namespace = namespace
        self.registry = CollectorRegistry()

        self._init_counters()
        self._init_gauges()
        self._init_histograms()

        self.start_time = time.time()

    def _init_counters(self):
        """Initialize counter metrics."""
        self.recommendation_counter = Counter(
            f"{self.namespace}_recommendations_total",
            "Total number of recommendation requests",
            ["pathway", "status"],
            registry=self.registry
        )

        self.rejected_vector_counter = Counter(
            f"{self.namespace}_rejected_vectors_total",
            "Vectors rejected before indexing or querying",
            ["reason"],
            registry=self.registry
        )

        self.interaction_counter = Counter(
            f"{self.namespace}_interactions_total",
            "Interactions logged",
            ["kind"],
            registry=self.registry
        )

        self.error_counter = Counter(
            f"{self.namespace}_errors_total",
            "Total number of errors",
            ["error_type", "component"],
            registry=self.registry
        )

    def _init_gauges(self):
        """Initialize gauge metrics."""
        self.indexed_items_gauge = Gauge(
            f"{self.namespace}_indexed_items",
            "Number of vectors in the ANN forest",
            registry=self.registry
        )

        self.graph_size_gauge = Gauge(
            f"{self.namespace}_graph_size",
            "Number of graph nodes and edges",
            ["element"],
            registry=self.registry
        )

    def _init_histograms(self):
        """Initialize histogram metrics."""
        self.latency_histogram = Histogram(
            f"{self.namespace}_stage_latency_seconds",
            "Latency of build and query stages in seconds",
            ["stage"],
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
            registry=self.registry
        )

        self.recommendation_count_histogram = Histogram(
            f"{self.namespace}_recommendations_per_request",
            "Number of recommendations per request",
            ["pathway"],
            buckets=(0, 1, 5, 10, 20, 50, 100),
            registry=self.registry
        )

    @contextmanager
    def time_stage(self, stage: str):
        """Observe the duration of a block under ``stage``."""
        start = time.time()
        try:
            yield
        finally:
            self.latency_histogram.labels(stage=stage).observe(time.time() - start)

    def record_recommendations(self, pathway: str, status: str, count: int = 0):
        """Record one recommendation request.

        Args:
            pathway: ``vector`` or ``graph``
            status: ``success``, ``empty`` or ``error``
            count: Number of results returned
        """
        self.recommendation_counter.labels(pathway=pathway, status=status).inc()
        self.recommendation_count_histogram.labels(pathway=pathway).observe(count)

    def record_rejected_vector(self, reason: str):
        self.rejected_vector_counter.labels(reason=reason).inc()

    def record_interaction(self, kind: str):
        self.interaction_counter.labels(kind=kind).inc()

    def record_error(self, error_type: str, component: str):
        """Record error occurrence.

        Args:
            error_type: Type of error
            component: Component where error occurred
        """
        self.error_counter.labels(error_type=error_type, component=component).inc()

    def update_index_size(self, count: int):
        self.indexed_items_gauge.set(count)

    def update_graph_size(self, nodes: int, edges: int):
        self.graph_size_gauge.labels(element="nodes").set(nodes)
        self.graph_size_gauge.labels(element="edges").set(edges)

    def sample(self, name: str, labels: Dict[str, str] = None) -> float:
        """Current value of a metric sample (0.0 if never recorded)."""
        value = self.registry.get_sample_value(f"{self.namespace}_{name}", labels or {})
        return value if value is not None else 0.0

    def get_metrics(self) -> bytes:
        """Get metrics in Prometheus format.

        Returns:
            Metrics in Prometheus text format
        """
        return generate_latest(self.registry)

    def log_summary(self):
        """Log uptime and headline counters."""
        uptime = time.time() - self.start_time
        logger.info(
            f"Metrics after {uptime:.1f}s: "
            f"indexed={self.sample('indexed_items'):.0f}, "
            f"graph_nodes={self.sample('graph_size', {'element': 'nodes'}):.0f}, "
            f"graph_edges={self.sample('graph_size', {'element': 'edges'}):.0f}"
        )

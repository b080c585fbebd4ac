"""Catalog ingestion and synthetic data generation."""

from .catalog import (
    catalog_item_to_row,
    ingest_catalog,
    is_catalog_fresh,
    load_deals,
    parse_deal_row,
)
from .synthetic import (
    generate_synthetic_catalog,
    generate_synthetic_interactions,
    generate_synthetic_profiles,
)

__all__ = [
    # Catalog
    "catalog_item_to_row",
    "ingest_catalog",
    "is_catalog_fresh",
    "load_deals",
    "parse_deal_row",
    # Synthetic data generation
    "generate_synthetic_catalog",
    "generate_synthetic_interactions",
    "generate_synthetic_profiles",
]

#!/usr/bin/env python
"""Main entry point for the deal recommendation engine."""

import argparse
import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from loguru import logger

from dealrec.config import get_config
from dealrec.monitoring import setup_logging


def setup_environment():
    """Create the data and log directories."""
    config = get_config()
    directories = [
        config.get("storage.directory", "data/stores"),
        "logs",
    ]

    for directory in directories:
        Path(directory).mkdir(parents=True, exist_ok=True)

    logger.info("Environment setup completed")


def seed_synthetic_data(service, now: datetime) -> dict:
    """Fill empty stores with synthetic catalog, profile and survey data.

    Returns:
        Generated user profiles keyed by user id
    """
    from dealrec.constants import (
        GEOLOCATION_ROW,
        GEOLOCATION_STORE,
        GEOLOCATION_TABLE,
        MERCHANT_DESCRIPTIONS_STORE,
        MERCHANT_PRODUCT_RANGE_STORE,
        MERCHANTS_TABLE,
        PROFILES_STORE,
        PROFILES_TABLE,
        SURVEY_STORE,
        SURVEY_TABLE,
    )
    from dealrec.data import generate_synthetic_catalog, generate_synthetic_profiles

    config = get_config()
    seed = config.get("synthetic.seed", 42)

    if service.catalog_is_fresh(now):
        logger.info("Catalog cache is fresh, skipping catalog refresh")
    else:
        items, descriptions, product_ranges = generate_synthetic_catalog(
            num_deals=config.get("synthetic.num_deals", 200),
            num_merchants=config.get("synthetic.num_merchants", 25),
            now=now,
            random_seed=seed,
        )
        service.ingest_catalog(items, now)
        service.stores[MERCHANT_DESCRIPTIONS_STORE].set_table(MERCHANTS_TABLE, descriptions)
        service.stores[MERCHANT_PRODUCT_RANGE_STORE].set_table(MERCHANTS_TABLE, product_ranges)

    profiles = service.stores[PROFILES_STORE].get_table(PROFILES_TABLE)
    if not profiles:
        profiles = generate_synthetic_profiles(
            num_users=config.get("synthetic.num_users", 20),
            random_seed=seed,
        )
        service.stores[PROFILES_STORE].set_table(PROFILES_TABLE, profiles)

    # The session user answers the survey and shares their location
    session_user = next(iter(profiles.values()))
    service.stores[SURVEY_STORE].set_table(SURVEY_TABLE, session_user["surveyResponses"])
    service.stores[GEOLOCATION_STORE].set_row(
        GEOLOCATION_TABLE, GEOLOCATION_ROW, session_user["geolocation"]
    )
    return profiles


async def run_demo():
    """Build both pathways over synthetic data and print recommendations."""
    from dealrec.data import generate_synthetic_interactions, load_deals
    from dealrec.constants import DEALS_STORE
    from dealrec.serving import RecommendationService

    config = get_config()
    service = RecommendationService(config.to_dict())
    now = datetime.now()

    await service.load()
    profiles = seed_synthetic_data(service, now)
    await service.stores.save_all()

    if not await service.initialize():
        logger.error("Initialization failed")
        return 1

    if len(service.interactions) == 0:
        deals = load_deals(service.stores[DEALS_STORE])
        events = generate_synthetic_interactions(
            list(profiles),
            deals,
            num_interactions=config.get("synthetic.num_interactions", 300),
            now=now,
            random_seed=config.get("synthetic.seed", 42),
        )
        for event in events.to_dict("records"):
            await service.log_interaction(
                event["user_id"],
                event["deal_id"],
                event["kind"],
                event["timestamp"].to_pydatetime(),
            )
        logger.info(f"Logged {len(events)} synthetic interactions")

    user_id, profile = next(iter(profiles.items()))
    top_k = config.get("retrieval.top_k", 5)
    num_recommendations = config.get("graph.num_recommendations", 5)

    vector_recs = await service.get_personalized_recommendations(profile, top_k=top_k)
    graph_recs = service.get_recommendations(user_id, num_recommendations)

    print("\n" + "=" * 50)
    print(f"Recommendations for {user_id} (interests: {', '.join(profile['interests'])})")
    print("=" * 50)
    print("\nVector pathway (confidence):")
    for rec in vector_recs:
        print(f"  {rec['dealId']:<12} {rec['confidence']:.4f}")
    print("\nGraph pathway (score):")
    for rec in graph_recs:
        print(f"  {rec['dealId']:<12} {rec['score']:.4f}")
    if graph_recs:
        related = service.get_related_deals(graph_recs[0]["dealId"])
        print(f"\nDeals related to {graph_recs[0]['dealId']}: {len(related)}")
    print("\n" + json.dumps(service.get_metrics(), indent=2, default=str))

    service.metrics.log_summary()
    return 0


def run_evaluation(num_items: int, num_queries: int):
    """Evaluate forest recall on random unit vectors."""
    import numpy as np

    from dealrec.constants import VECTOR_LEN
    from dealrec.evaluation import evaluate_forest_recall
    from dealrec.serving import RandomProjectionForest

    retrieval = get_config().section("retrieval")
    seed = retrieval.get("seed") or 42
    rng = np.random.default_rng(seed)

    vectors = rng.normal(size=(num_items, VECTOR_LEN))
    vectors /= np.linalg.norm(vectors, axis=1, keepdims=True)
    queries = rng.normal(size=(num_queries, VECTOR_LEN))
    queries /= np.linalg.norm(queries, axis=1, keepdims=True)

    forest = RandomProjectionForest(
        forest_size=retrieval["forest_size"],
        max_leaf_size=retrieval["max_leaf_size"],
        seed=seed,
    )
    for i, vector in enumerate(vectors):
        forest.add(vector, {"index": i})
    forest.build()

    results = evaluate_forest_recall(forest, vectors, queries)
    print(results)
    return 0


def run_tests():
    """Run system tests."""
    logger.info("Running tests...")
    import pytest

    exit_code = pytest.main([
        "tests/",
        "-v",
    ])

    if exit_code == 0:
        logger.success("All tests passed!")
    else:
        logger.error(f"Tests failed with exit code {exit_code}")

    return exit_code


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Deal Recommendation Engine CLI"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Setup command
    subparsers.add_parser("setup", help="Set up the environment")

    # Demo command
    subparsers.add_parser("demo", help="Run both recommendation pathways on synthetic data")

    # Evaluate command
    evaluate_parser = subparsers.add_parser("evaluate", help="Evaluate ANN recall")
    evaluate_parser.add_argument(
        "--items", type=int, default=2000, help="Number of indexed vectors"
    )
    evaluate_parser.add_argument(
        "--queries", type=int, default=100, help="Number of query vectors"
    )

    # Test command
    subparsers.add_parser("test", help="Run tests")

    # Parse arguments
    args = parser.parse_args()

    # Execute command
    if args.command == "setup":
        setup_environment()
    elif args.command == "demo":
        sys.exit(asyncio.run(run_demo()))
    elif args.command == "evaluate":
        sys.exit(run_evaluation(args.items, args.queries))
    elif args.command == "test":
        sys.exit(run_tests())
    else:
        # Default: show help
        parser.print_help()

        # Show quick start guide
        print("\n" + "="*50)
        print("QUICK START GUIDE")
        print("="*50)
        print("\n1. Set up environment:")
        print("   python main.py setup")
        print("\n2. Run the demo:")
        print("   python main.py demo")
        print("\n3. Evaluate the ANN index:")
        print("   python main.py evaluate --items 5000")
        print("\n" + "="*50)


if __name__ == "__main__":
    config = get_config()
    setup_logging(
        level=config.get("system.log_level", "INFO"),
        log_file=config.get("system.log_file"),
    )

    main()

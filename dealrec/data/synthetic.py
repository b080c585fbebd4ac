"""Synthetic catalog, profile and interaction data for demos and tests."""

import random
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from loguru import logger

CATEGORIES = [
    'tech', 'fashion', 'food', 'travel', 'home',
    'beauty', 'sports', 'books', 'electronics', 'gaming'
]
CASHBACK_TYPES = ['percentage', 'fixed']
COUNTRIES = ['US', 'UK', 'CA', 'AU', 'SG']
FREQUENCIES = ['Daily', 'Weekly', 'Monthly', 'Rarely']
INTERACTION_KINDS = ['view', 'click', 'activate']

_CATEGORY_WORDS = {
    'tech': ['laptops', 'gadgets', 'software', 'accessories'],
    'fashion': ['clothing', 'shoes', 'apparel', 'accessories'],
    'food': ['groceries', 'delivery', 'snacks', 'restaurants'],
    'travel': ['flights', 'hotels', 'luggage', 'tours'],
    'home': ['furniture', 'decor', 'kitchen', 'garden'],
    'beauty': ['skincare', 'makeup', 'fragrance', 'haircare'],
    'sports': ['fitness', 'outdoor', 'running', 'cycling'],
    'books': ['novels', 'ebooks', 'audiobooks', 'textbooks'],
    'electronics': ['phones', 'televisions', 'cameras', 'audio'],
    'gaming': ['consoles', 'games', 'controllers', 'streaming'],
}


def generate_synthetic_catalog(
    num_deals: int = 200,
    num_merchants: int = 25,
    now: Optional[datetime] = None,
    expired_fraction: float = 0.1,
    random_seed: Optional[int] = None
) -> Tuple[List[Dict[str, Any]], Dict[str, Dict[str, Any]], Dict[str, Dict[str, Any]]]:
    """Generate catalog items plus merchant description and product range tables.

    Args:
        num_deals: Number of deals to generate
        num_merchants: Number of distinct merchants
        now: Reference time for start/end dates
        expired_fraction: Share of deals that already expired
        random_seed: Random seed for reproducibility

    Returns:
        Tuple of (catalog_items, merchant_descriptions, merchant_product_ranges)
    """
    if random_seed is not None:
        np.random.seed(random_seed)
        random.seed(random_seed)

    now = now or datetime.now()
    logger.info(f"Generating synthetic catalog: {num_deals} deals, {num_merchants} merchants")

    merchants = []
    descriptions = {}
    product_ranges = {}
    for i in range(num_merchants):
        category = CATEGORIES[i % len(CATEGORIES)]
        name = f"Merchant{i} {category.title()}"
        merchants.append((name, category))
        descriptions[name] = {"name": f"{name} online {category} store"}
        product_ranges[name] = {
            "productRange": " ".join(random.sample(_CATEGORY_WORDS[category], 2))
        }

    items = []
    for i in range(num_deals):
        merchant_name, category = merchants[np.random.randint(num_merchants)]
        if np.random.random() < expired_fraction:
            end_date = now - timedelta(days=int(np.random.randint(1, 30)))
        else:
            end_date = now + timedelta(days=int(np.random.randint(1, 90)))
        start_date = end_date - timedelta(days=int(np.random.randint(30, 120)))
        cashback_type = random.choice(CASHBACK_TYPES)
        cashback = float(np.random.randint(1, 20)) if cashback_type == 'percentage' else round(float(np.random.uniform(1, 50)), 2)

        items.append({
            'id': f'deal_{i}',
            'dealId': f'D{i:05d}',
            'merchantName': merchant_name,
            'logo': f'{merchant_name.lower().replace(" ", "-")}.png',
            'logoAbsoluteUrl': f'https://cdn.example.com/logos/{i}.png',
            'cashbackType': cashback_type,
            'cashback': cashback,
            'currency': 'USD',
            'domains': [f'{merchant_name.split()[0].lower()}.example.com'],
            'countries': random.sample(COUNTRIES, 2),
            'codes': [{'code': f'SAVE{i}', 'summary': f'{int(cashback)} off at {merchant_name}'}],
            'startDate': start_date.isoformat(),
            'endDate': end_date.isoformat(),
            'categories': [category],
        })

    logger.info(f"Generated {len(items)} deals across {len(merchants)} merchants")
    return items, descriptions, product_ranges


def generate_synthetic_profiles(
    num_users: int = 20,
    random_seed: Optional[int] = None
) -> Dict[str, Dict[str, Any]]:
    """Generate user profiles keyed by user id."""
    if random_seed is not None:
        np.random.seed(random_seed)
        random.seed(random_seed)

    profiles = {}
    for i in range(num_users):
        favourite = random.sample(CATEGORIES, 2)
        profiles[f'user_{i}'] = {
            'interests': favourite,
            'shoppingFrequency': random.choice(FREQUENCIES),
            'surveyResponses': {
                'favoriteCategory': {'answer': favourite[0]},
                'preferredCashback': {'answer': random.choice(CASHBACK_TYPES)},
            },
            'geolocation': {
                'countryCode': random.choice(COUNTRIES),
                'ip': f'10.0.{np.random.randint(0, 255)}.{np.random.randint(1, 255)}',
            },
        }
    return profiles


def generate_synthetic_interactions(
    user_ids: List[str],
    items: List[Dict[str, Any]],
    num_interactions: int = 300,
    now: Optional[datetime] = None,
    random_seed: Optional[int] = None
) -> pd.DataFrame:
    """Generate random view/click/activate events over the last 60 days.

    Returns:
        DataFrame with user_id, deal_id, kind and timestamp columns
    """
    if random_seed is not None:
        np.random.seed(random_seed)
        random.seed(random_seed)

    now = now or datetime.now()
    if not user_ids or not items:
        return pd.DataFrame(columns=['user_id', 'deal_id', 'kind', 'timestamp'])

    interactions = []
    for _ in range(num_interactions):
        user_id = user_ids[np.random.randint(len(user_ids))]
        item = items[np.random.randint(len(items))]
        kind = np.random.choice(INTERACTION_KINDS, p=[0.6, 0.3, 0.1])
        interactions.append({
            'user_id': user_id,
            'deal_id': item['id'],
            'kind': str(kind),
            'timestamp': now - timedelta(minutes=int(np.random.randint(0, 60 * 24 * 60))),
        })

    interactions_df = pd.DataFrame(interactions)
    logger.info(f"Generated {len(interactions_df)} interactions for {len(user_ids)} users")
    return interactions_df

"""Centralized constants and configuration values.

Defaults used across the vectorizer, the forest index, the graph scorer and
the persistence layer. Values that may change between environments are read
from environment variables; everything else can be overridden through
``configs/config.yaml``.
"""

import os


# =============================================================================
# Vector Space
# =============================================================================

# Every embedding (deal, survey, geolocation, device, user) has this length
VECTOR_LEN = 1000

# Fixed slots used by the device vectorizer
DEVICE_SLOT_MOBILE = 0
DEVICE_SLOT_HOUR = 1
DEVICE_SLOT_WEEKDAY = 2
DEVICE_SLOT_MONTH = 3
DEVICE_SLOT_NETWORK = 4
DEVICE_SLOT_SCREEN = 5

MAX_NETWORK_SPEED_MBPS = 100.0
MAX_SCREEN_WIDTH_PX = 4000.0


# =============================================================================
# ANN Forest Defaults
# =============================================================================

DEFAULT_FOREST_SIZE = int(os.getenv("DEALREC_FOREST_SIZE", "10"))
DEFAULT_MAX_LEAF_SIZE = int(os.getenv("DEALREC_MAX_LEAF_SIZE", "50"))
MAX_SPLIT_ATTEMPTS = 8
DEFAULT_TOP_K = 5


# =============================================================================
# Graph Scoring
# =============================================================================

SIMILARITY_THRESHOLD = 0.8

# Contribution of each interaction kind to the interaction term
INTERACTION_WEIGHTS = {
    "view": 0.1,
    "click": 0.3,
    "activate": 0.6,
}

RECENCY_DECAY_DAYS = 30.0
TIME_RELEVANCE_HORIZON_DAYS = 30.0
DEFAULT_NUM_RECOMMENDATIONS = 5


# =============================================================================
# Persistence
# =============================================================================

DATA_DIR = os.getenv("DEALREC_DATA_DIR", "data/stores")

# Store name -> table name, mirroring the client application's persisters
DEALS_STORE = "kindred-deals"
MERCHANT_DESCRIPTIONS_STORE = "merchant-descriptions"
MERCHANT_PRODUCT_RANGE_STORE = "merchant-product-range"
SURVEY_STORE = "survey-responses"
GEOLOCATION_STORE = "user-geolocation"
PROFILES_STORE = "user-profiles"
INTERACTIONS_STORE = "user-interactions"
RECOMMENDATIONS_STORE = "personalized-recommendations"
VECTOR_DATA_STORE = "vector-data"

DEALS_TABLE = "deals"
MERCHANTS_TABLE = "merchants"
SURVEY_TABLE = "answeredQuestions"
GEOLOCATION_TABLE = "geolocation"
GEOLOCATION_ROW = "userGeo"
PROFILES_TABLE = "profiles"
INTERACTIONS_TABLE = "interactions"
RECOMMENDATIONS_TABLE = "recommendations"
VECTOR_DATA_TABLE = "vectorData"

LAST_FETCH_TIME_VALUE = "lastFetchTime"

# Cached catalog is considered stale after this many hours
CATALOG_CACHE_HOURS = 100

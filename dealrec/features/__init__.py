"""Feature vectorization and table storage."""

from .table_store import StoreRegistry, TableStore
from .vectorizer import (
    DeviceContext,
    FeatureVectorizer,
    combine_vectors,
    hash_token,
    tokenize,
)

__all__ = [
    "StoreRegistry",
    "TableStore",
    "DeviceContext",
    "FeatureVectorizer",
    "combine_vectors",
    "hash_token",
    "tokenize",
]

"""Catalog ingestion into the deals table.

The upstream feed is fetched by the surrounding application; this module
validates the fetched items and stores them the way the client app does:
one row per deal keyed by catalog id, list fields JSON-encoded, plus a
``lastFetchTime`` store value used to decide when to refetch.
"""

import json
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional

from loguru import logger
from pydantic import ValidationError

from ..constants import CATALOG_CACHE_HOURS, DEALS_TABLE, LAST_FETCH_TIME_VALUE
from ..features.table_store import TableStore
from ..schemas import CatalogItem

_LIST_FIELDS = ("domains", "countries", "codes", "categories")


def catalog_item_to_row(item: CatalogItem) -> Dict[str, Any]:
    """Flatten a validated item into a table row."""
    row = item.model_dump(by_alias=True, exclude={"id"})
    for name in _LIST_FIELDS:
        row[name] = json.dumps(row.get(name) or [])
    if row.get("expirationDate") is None:
        row["expirationDate"] = item.expires
    return {k: v for k, v in row.items() if v is not None}


def parse_deal_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Decode JSON-encoded list fields of a stored deal row."""
    deal = dict(row)
    for name in _LIST_FIELDS:
        value = deal.get(name)
        if isinstance(value, str):
            try:
                deal[name] = json.loads(value)
            except json.JSONDecodeError:
                logger.warning(f"Could not decode {name} of deal {row.get('dealId')}")
                deal[name] = []
        elif value is None:
            deal[name] = []
    return deal


def ingest_catalog(
    store: TableStore,
    items: Iterable[Mapping[str, Any]],
    now: Optional[datetime] = None
) -> int:
    """Validate fetched catalog items and replace the deals table.

    Args:
        store: Store holding the ``deals`` table
        items: Raw catalog items from the upstream feed
        now: Fetch time recorded as ``lastFetchTime``

    Returns:
        Number of deals stored; invalid items are logged and skipped
    """
    rows: Dict[str, Dict[str, Any]] = {}
    skipped = 0
    for raw in items:
        try:
            item = CatalogItem.model_validate(raw)
        except ValidationError as e:
            skipped += 1
            logger.warning(f"Skipping invalid catalog item {raw.get('id')!r}: {e.error_count()} errors")
            continue
        rows[item.id] = catalog_item_to_row(item)

    store.set_table(DEALS_TABLE, rows)
    store.set_value(LAST_FETCH_TIME_VALUE, int((now or datetime.now()).timestamp() * 1000))

    logger.info(f"Ingested {len(rows)} catalog deals ({skipped} skipped)")
    return len(rows)


def is_catalog_fresh(
    store: TableStore,
    now: Optional[datetime] = None,
    max_age_hours: float = CATALOG_CACHE_HOURS
) -> bool:
    """True if the deals table was fetched less than ``max_age_hours`` ago."""
    last_fetch = store.get_value(LAST_FETCH_TIME_VALUE)
    if last_fetch is None or not store.get_table(DEALS_TABLE):
        return False
    fetched_at = datetime.fromtimestamp(last_fetch / 1000)
    return (now or datetime.now()) - fetched_at < timedelta(hours=max_age_hours)


def load_deals(store: TableStore) -> List[Dict[str, Any]]:
    """All stored deals, decoded, with their row id under ``id``."""
    return [
        {"id": row_id, **parse_deal_row(row)}
        for row_id, row in store.get_table(DEALS_TABLE).items()
    ]

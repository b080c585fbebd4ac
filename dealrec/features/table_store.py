"""Key-value table store backing the recommendation engine.

Each store holds named tables (table -> row id -> cell -> value) plus a flat
map of store-level values, and persists them as one JSON document per store.
``load()`` and ``save()`` are the only suspension points; every other
operation works on the in-memory copy.
"""

import asyncio
import copy
import json
import os
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from loguru import logger

Row = Dict[str, Any]
Table = Dict[str, Row]


class TableStore:
    """In-memory table store with optional JSON file persistence."""

    def __init__(self, name: str, directory: Optional[str] = None):
        """Initialize table store.

        Args:
            name: Store name, also the file stem on disk
            directory: Directory for persistence; memory only when ``None``
        """
        self.name = name
        self.path = Path(directory) / f"{name}.json" if directory else None
        self.tables: Dict[str, Table] = {}
        self.values: Dict[str, Any] = {}

    async def load(self) -> bool:
        """Populate tables from disk.

        Returns:
            True if data was loaded; absence or corruption is logged and
            leaves the store empty.
        """
        if self.path is None:
            return False

        try:
            document = await asyncio.to_thread(self._read)
        except FileNotFoundError:
            logger.debug(f"No persisted data for store {self.name}")
            return False
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load store {self.name}: {e}")
            return False

        self.tables = document.get("tables", {}) or {}
        self.values = document.get("values", {}) or {}
        logger.debug(f"Loaded store {self.name} with {len(self.tables)} tables")
        return True

    async def save(self) -> bool:
        """Persist current tables to disk.

        Returns:
            True on success; failures are logged, never raised.
        """
        if self.path is None:
            return False

        document = {"tables": self.tables, "values": self.values}
        try:
            await asyncio.to_thread(self._write, document)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save store {self.name}: {e}")
            return False

        logger.debug(f"Saved store {self.name} to {self.path}")
        return True

    def _read(self) -> Dict[str, Any]:
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write(self, document: Dict[str, Any]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(document, f)
        os.replace(tmp_path, self.path)

    def get_table(self, table: str) -> Table:
        """Return a copy of ``table`` (empty if absent)."""
        return copy.deepcopy(self.tables.get(table, {}))

    def set_table(self, table: str, rows: Table):
        self.tables[table] = copy.deepcopy(rows)

    def get_row(self, table: str, row_id: str) -> Optional[Row]:
        row = self.tables.get(table, {}).get(row_id)
        return copy.deepcopy(row) if row is not None else None

    def set_row(self, table: str, row_id: str, row: Row):
        self.tables.setdefault(table, {})[row_id] = copy.deepcopy(row)

    def get_cell(self, table: str, row_id: str, cell: str, default: Any = None) -> Any:
        return self.tables.get(table, {}).get(row_id, {}).get(cell, default)

    def set_cell(self, table: str, row_id: str, cell: str, value: Any):
        self.tables.setdefault(table, {}).setdefault(row_id, {})[cell] = value

    def get_value(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def set_value(self, key: str, value: Any):
        self.values[key] = value


class StoreRegistry:
    """Creates and tracks one ``TableStore`` per configured store name."""

    def __init__(self, names: Iterable[str], directory: Optional[str] = None):
        self.directory = directory
        self.stores: Dict[str, TableStore] = {
            name: TableStore(name, directory) for name in names
        }
        logger.info(
            f"Initialized {len(self.stores)} table stores "
            f"({'memory only' if directory is None else directory})"
        )

    def __getitem__(self, name: str) -> TableStore:
        if name not in self.stores:
            self.stores[name] = TableStore(name, self.directory)
        return self.stores[name]

    async def load_all(self) -> int:
        """Load every store; returns how many had persisted data."""
        results = await asyncio.gather(*(store.load() for store in self.stores.values()))
        return sum(1 for loaded in results if loaded)

    async def save_all(self) -> int:
        """Save every store; returns how many were written."""
        results = await asyncio.gather(*(store.save() for store in self.stores.values()))
        return sum(1 for saved in results if saved)

"""Unit tests for JSON-backed table stores."""

import asyncio
import json

import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dealrec.features import StoreRegistry, TableStore


class TestTableStore:
    """Tests for in-memory accessors."""

    def test_rows_and_cells(self):
        store = TableStore("test")
        store.set_row("deals", "d1", {"merchantName": "Acme"})
        store.set_cell("deals", "d1", "cashback", 5)
        assert store.get_row("deals", "d1") == {"merchantName": "Acme", "cashback": 5}
        assert store.get_cell("deals", "d1", "cashback") == 5
        assert store.get_cell("deals", "d2", "cashback", "n/a") == "n/a"

    def test_missing_table_is_empty(self):
        store = TableStore("test")
        assert store.get_table("nothing") == {}
        assert store.get_row("nothing", "x") is None

    def test_reads_return_copies(self):
        store = TableStore("test")
        store.set_table("t", {"r": {"tags": ["a"]}})
        store.get_table("t")["r"]["tags"].append("b")
        assert store.get_row("t", "r") == {"tags": ["a"]}

    def test_values(self):
        store = TableStore("test")
        store.set_value("lastFetchTime", 123)
        assert store.get_value("lastFetchTime") == 123
        assert store.get_value("other", 0) == 0


class TestPersistence:
    """Tests for save() and load()."""

    def test_round_trip(self, tmp_path):
        store = TableStore("deals", str(tmp_path))
        store.set_table("deals", {"d1": {"merchantName": "Acme", "cashback": 5.5}})
        store.set_value("lastFetchTime", 1000)
        assert asyncio.run(store.save())

        restored = TableStore("deals", str(tmp_path))
        assert asyncio.run(restored.load())
        assert restored.get_table("deals") == {"d1": {"merchantName": "Acme", "cashback": 5.5}}
        assert restored.get_value("lastFetchTime") == 1000

    def test_file_layout(self, tmp_path):
        store = TableStore("user-profiles", str(tmp_path))
        store.set_row("profiles", "u1", {"interests": ["tech"]})
        asyncio.run(store.save())
        document = json.loads((tmp_path / "user-profiles.json").read_text())
        assert document == {"tables": {"profiles": {"u1": {"interests": ["tech"]}}}, "values": {}}
        assert not (tmp_path / "user-profiles.json.tmp").exists()

    def test_missing_file_loads_empty(self, tmp_path):
        store = TableStore("absent", str(tmp_path))
        assert not asyncio.run(store.load())
        assert store.tables == {}

    def test_corrupt_file_loads_empty(self, tmp_path):
        (tmp_path / "broken.json").write_text("{not json")
        store = TableStore("broken", str(tmp_path))
        assert not asyncio.run(store.load())
        assert store.tables == {}

    def test_memory_only_store(self):
        store = TableStore("memory")
        store.set_value("k", "v")
        assert not asyncio.run(store.save())
        assert not asyncio.run(store.load())
        assert store.get_value("k") == "v"


class TestStoreRegistry:
    """Tests for creating and persisting several stores."""

    def test_save_and_load_all(self, tmp_path):
        registry = StoreRegistry(["a", "b"], str(tmp_path))
        registry["a"].set_value("x", 1)
        registry["b"].set_value("y", 2)
        assert asyncio.run(registry.save_all()) == 2

        restored = StoreRegistry(["a", "b", "c"], str(tmp_path))
        assert asyncio.run(restored.load_all()) == 2
        assert restored["a"].get_value("x") == 1
        assert restored["c"].tables == {}

    def test_unknown_name_created_lazily(self):
        registry = StoreRegistry(["a"])
        assert registry["z"].name == "z"
        assert "z" in registry.stores

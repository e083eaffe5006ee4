"""Tests for MemorySettingsStore and SqliteSettingsStore."""

from pathlib import Path

import pytest

from exthost.extensions.contract import SettingsStore
from exthost.storage import MemorySettingsStore, SqliteSettingsStore


class TestMemorySettingsStore:
    @pytest.mark.asyncio
    async def test_values_are_copied(self) -> None:
        store = MemorySettingsStore()
        value = {"items": [1]}
        await store.set("k", value)
        value["items"].append(2)
        loaded = await store.get("k")
        loaded["items"].append(3)
        assert await store.get("k") == {"items": [1]}

    def test_satisfies_protocol(self) -> None:
        assert isinstance(MemorySettingsStore(), SettingsStore)


class TestSqliteSettingsStore:
    @pytest.mark.asyncio
    async def test_set_get_overwrite(self, tmp_path: Path) -> None:
        store = SqliteSettingsStore(tmp_path / "data" / "settings.db")
        try:
            assert await store.get("missing") is None
            await store.set("k", {"version": 1, "items": ["a"]})
            await store.set("k", {"version": 1, "items": ["b"]})
            assert await store.get("k") == {"version": 1, "items": ["b"]}
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_persists_across_connections(self, tmp_path: Path) -> None:
        db_path = tmp_path / "settings.db"
        first = SqliteSettingsStore(db_path)
        await first.set("extensions.registry.v1", {"version": 1, "items": []})
        await first.close()

        second = SqliteSettingsStore(db_path)
        try:
            assert await second.get("extensions.registry.v1") == {"version": 1, "items": []}
        finally:
            await second.close()

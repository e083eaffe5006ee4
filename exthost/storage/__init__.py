"""Settings store implementations: in-memory and SQLite."""

from exthost.storage.settings_store import MemorySettingsStore, SqliteSettingsStore

__all__ = ["MemorySettingsStore", "SqliteSettingsStore"]

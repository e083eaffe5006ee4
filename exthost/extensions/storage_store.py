"""Per-extension key/value storage, persisted as one document in the settings store."""

import json
from typing import Any

from exthost.extensions.contract import SettingsStore
from exthost.extensions.errors import ExtensionValidationError, StorageQuotaError

EXTENSION_STORAGE_KEY = "extensions.storage.v1"
EXTENSION_STORAGE_VERSION = 1
DEFAULT_MAX_BYTES = 1_000_000


def _normalize_key(key: str) -> str:
    trimmed = key.strip() if isinstance(key, str) else ""
    if not trimmed:
        raise ExtensionValidationError("Storage key cannot be empty.")
    return trimmed


def _serialized_size(value: Any) -> int:
    try:
        return len(json.dumps(value, ensure_ascii=False).encode("utf-8"))
    except (TypeError, ValueError) as e:
        raise ExtensionValidationError(f"Storage value is not JSON-serializable: {e}") from e


class ExtensionStorageStore:
    """Storage partitioned by extension id. Values must be JSON-compatible."""

    def __init__(self, settings: SettingsStore, max_bytes: int = DEFAULT_MAX_BYTES) -> None:
        self._settings = settings
        self._max_bytes = max_bytes

    async def _load(self) -> dict[str, dict[str, Any]]:
        raw = await self._settings.get(EXTENSION_STORAGE_KEY)
        if not isinstance(raw, dict) or not isinstance(raw.get("items"), dict):
            return {}
        return {
            ext_id: dict(record)
            for ext_id, record in raw["items"].items()
            if isinstance(record, dict)
        }

    async def _save(self, items: dict[str, dict[str, Any]]) -> None:
        await self._settings.set(
            EXTENSION_STORAGE_KEY,
            {"version": EXTENSION_STORAGE_VERSION, "items": items},
        )

    async def get(self, extension_id: str, key: str) -> Any:
        normalized = _normalize_key(key)
        items = await self._load()
        return items.get(extension_id, {}).get(normalized)

    async def set(self, extension_id: str, key: str, value: Any) -> None:
        normalized = _normalize_key(key)
        items = await self._load()
        record = {**items.get(extension_id, {}), normalized: value}
        if _serialized_size(record) > self._max_bytes:
            raise StorageQuotaError(
                f"Extension storage quota exceeded ({self._max_bytes} bytes per extension)."
            )
        items[extension_id] = record
        await self._save(items)

    async def delete(self, extension_id: str, key: str) -> None:
        normalized = _normalize_key(key)
        items = await self._load()
        record = dict(items.get(extension_id, {}))
        if normalized not in record:
            return
        del record[normalized]
        if record:
            items[extension_id] = record
        else:
            items.pop(extension_id, None)
        await self._save(items)

    async def keys(self, extension_id: str) -> list[str]:
        items = await self._load()
        return sorted(items.get(extension_id, {}))

    async def clear(self, extension_id: str) -> None:
        """Drop everything an extension stored. Used on uninstall."""
        items = await self._load()
        if extension_id not in items:
            return
        del items[extension_id]
        await self._save(items)

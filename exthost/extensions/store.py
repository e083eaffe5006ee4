"""Persistence of installed extension entries in the host settings store."""

import logging
from typing import Any

from pydantic import ValidationError

from exthost.extensions.contract import SettingsStore
from exthost.extensions.models import (
    ExtensionRegistryDocument,
    ModuleSource,
    StoredExtensionEntry,
    utc_now,
)
from exthost.extensions.permissions import (
    TrustLevel,
    default_permissions,
    derive_trust,
    normalize_permissions,
)

logger = logging.getLogger(__name__)

EXTENSIONS_REGISTRY_KEY = "extensions.registry.v1"
REGISTRY_VERSION = 1


def default_entries() -> list[StoredExtensionEntry]:
    """Entries seeded into an empty registry: the bundled notes extension."""
    now = utc_now()
    source = ModuleSource(specifier="./notes.py")
    return [
        StoredExtensionEntry(
            id="builtin.notes",
            name="Notes",
            enabled=True,
            source=source,
            trust=TrustLevel.BUILTIN,
            permissions=default_permissions(TrustLevel.BUILTIN),
            created_at=now,
            updated_at=now,
        )
    ]


def _normalize_item(raw: Any) -> StoredExtensionEntry | None:
    if not isinstance(raw, dict):
        return None
    data = dict(raw)
    try:
        probe = StoredExtensionEntry.model_validate(
            {
                **data,
                "trust": data.get("trust") or TrustLevel.LOCAL_MODULE,
                "permissions": default_permissions(TrustLevel.LOCAL_MODULE),
            }
        )
    except ValidationError:
        return None
    trust_raw = data.get("trust")
    try:
        trust = TrustLevel(trust_raw) if trust_raw else derive_trust(probe.id, probe.source)
    except ValueError:
        trust = derive_trust(probe.id, probe.source)
    return probe.model_copy(
        update={
            "trust": trust,
            "permissions": normalize_permissions(data.get("permissions"), trust),
        }
    )


async def load_extension_entries(settings: SettingsStore) -> list[StoredExtensionEntry]:
    """Load and normalize stored entries.

    Malformed items are skipped and only the first item per id is kept. When
    no valid document is stored the default entries are seeded and saved.
    """
    raw = await settings.get(EXTENSIONS_REGISTRY_KEY)
    items = raw.get("items") if isinstance(raw, dict) else None
    version = raw.get("version") if isinstance(raw, dict) else None
    if not isinstance(items, list) or not isinstance(version, int) or isinstance(version, bool):
        defaults = default_entries()
        await save_extension_entries(settings, defaults)
        return defaults

    entries: list[StoredExtensionEntry] = []
    seen: set[str] = set()
    for item in items:
        entry = _normalize_item(item)
        if entry is None:
            logger.warning("Skipping malformed extension registry item")
            continue
        if entry.id in seen:
            continue
        seen.add(entry.id)
        entries.append(entry)
    return entries


async def save_extension_entries(
    settings: SettingsStore, entries: list[StoredExtensionEntry]
) -> None:
    document = ExtensionRegistryDocument(version=REGISTRY_VERSION, items=list(entries))
    await settings.set(EXTENSIONS_REGISTRY_KEY, document.model_dump(mode="json"))

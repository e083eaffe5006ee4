"""
Skill catalog exposed to extensions: bundled skills plus external ones.

Skill documents are Markdown with YAML frontmatter:

```markdown
---
name: summarize-sheet
description: "Summarize the active sheet"
---

# Instructions for the agent...
```

Bundled skills are read-only. External skills are persisted in the settings
store under skills.external.v1 and can be installed or removed by extensions
holding skills.write.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from exthost.extensions.contract import SettingsStore
from exthost.extensions.errors import ExtensionError, ExtensionValidationError

logger = logging.getLogger(__name__)

EXTERNAL_SKILLS_KEY = "skills.external.v1"
EXTERNAL_SKILLS_VERSION = 1

FRONTMATTER_PATTERN = re.compile(r"^---\s*\n(.*?)\n---\s*\n?", re.DOTALL)


@dataclass(frozen=True)
class SkillDefinition:
    name: str
    description: str
    markdown: str
    body: str
    source_kind: str = "bundled"
    location: str = ""


@dataclass(frozen=True)
class SkillSummary:
    name: str
    description: str
    source_kind: str


def parse_skill_document(
    markdown: str, source_kind: str = "external", location: str = ""
) -> SkillDefinition | None:
    """Parse frontmatter. None when it is missing or lacks name/description."""
    match = FRONTMATTER_PATTERN.match(markdown)
    if not match:
        return None
    try:
        frontmatter = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError:
        return None
    if not isinstance(frontmatter, dict):
        return None
    name = str(frontmatter.get("name") or "").strip()
    description = str(frontmatter.get("description") or "").strip()
    if not name or not description:
        return None
    return SkillDefinition(
        name=name,
        description=description,
        markdown=markdown,
        body=markdown[match.end():].lstrip(),
        source_kind=source_kind,
        location=location,
    )


def discover_bundled_skills(directory: Path) -> list[SkillDefinition]:
    """Load skills/<name>/SKILL.md files. Invalid documents are skipped with a warning."""
    skills: list[SkillDefinition] = []
    if not directory.is_dir():
        return skills
    for path in sorted(directory.glob("*/SKILL.md")):
        skill = parse_skill_document(
            path.read_text(encoding="utf-8"), source_kind="bundled", location=str(path)
        )
        if skill is None:
            logger.warning("Invalid SKILL.md frontmatter: %s", path)
            continue
        skills.append(skill)
    return skills


def _normalize_skill_name(name: str) -> str:
    trimmed = name.strip() if isinstance(name, str) else ""
    if not trimmed:
        raise ExtensionValidationError("Skill name cannot be empty.")
    return trimmed


class ExtensionSkillStore:
    def __init__(
        self, settings: SettingsStore, bundled: list[SkillDefinition] | None = None
    ) -> None:
        self._settings = settings
        self._bundled = list(bundled or [])

    async def _load_external_items(self) -> list[dict[str, Any]]:
        raw = await self._settings.get(EXTERNAL_SKILLS_KEY)
        if not isinstance(raw, dict) or raw.get("version") != EXTERNAL_SKILLS_VERSION:
            return []
        items = raw.get("items")
        if not isinstance(items, list):
            return []
        return [
            item
            for item in items
            if isinstance(item, dict)
            and isinstance(item.get("location"), str)
            and isinstance(item.get("markdown"), str)
        ]

    async def _save_external_items(self, items: list[dict[str, Any]]) -> None:
        await self._settings.set(
            EXTERNAL_SKILLS_KEY, {"version": EXTERNAL_SKILLS_VERSION, "items": items}
        )

    async def load_external(self) -> list[SkillDefinition]:
        loaded: list[SkillDefinition] = []
        for item in await self._load_external_items():
            skill = parse_skill_document(item["markdown"], location=item["location"])
            if skill is None:
                logger.warning("Invalid external SKILL.md frontmatter: %s", item["location"])
                continue
            loaded.append(skill)
        loaded.sort(key=lambda s: s.name.lower())
        return loaded

    async def merged(self) -> list[SkillDefinition]:
        """Bundled skills first; an external skill never shadows a bundled name."""
        by_name: dict[str, SkillDefinition] = {}
        for skill in self._bundled:
            by_name.setdefault(skill.name.lower(), skill)
        for skill in await self.load_external():
            by_name.setdefault(skill.name.lower(), skill)
        return list(by_name.values())

    async def list(self) -> list[SkillSummary]:
        return [
            SkillSummary(name=s.name, description=s.description, source_kind=s.source_kind)
            for s in await self.merged()
        ]

    async def read(self, name: str) -> str:
        wanted = _normalize_skill_name(name).lower()
        for skill in await self.merged():
            if skill.name.lower() == wanted:
                return skill.markdown
        raise ExtensionError(f"Skill not found: {name}")

    async def install(self, name: str, markdown: str) -> None:
        """Add or replace an external skill. Frontmatter name must match name."""
        requested = _normalize_skill_name(name)
        if not isinstance(markdown, str):
            raise ExtensionValidationError("Skill markdown must be a string.")
        skill = parse_skill_document(markdown)
        if skill is None:
            raise ExtensionValidationError(
                "Skill markdown must start with YAML frontmatter declaring name and description."
            )
        if skill.name.lower() != requested.lower():
            raise ExtensionValidationError(
                f'Skill frontmatter name "{skill.name}" does not match "{requested}".'
            )
        if any(b.name.lower() == requested.lower() for b in self._bundled):
            raise ExtensionValidationError(f"Cannot replace bundled skill: {skill.name}")

        location = f"extension:{skill.name}"
        items = []
        for item in await self._load_external_items():
            existing = parse_skill_document(item["markdown"])
            if item["location"] == location:
                continue
            if existing is not None and existing.name.lower() == requested.lower():
                continue
            items.append(item)
        items.append({"location": location, "markdown": markdown})
        await self._save_external_items(items)

    async def uninstall(self, name: str) -> None:
        requested = _normalize_skill_name(name).lower()
        if any(b.name.lower() == requested for b in self._bundled):
            raise ExtensionValidationError(f"Cannot uninstall bundled skill: {name}")
        items = await self._load_external_items()
        kept = []
        for item in items:
            parsed = parse_skill_document(item["markdown"])
            if parsed is not None and parsed.name.lower() == requested:
                continue
            kept.append(item)
        if len(kept) == len(items):
            raise ExtensionError(f"External skill not found: {name}")
        await self._save_external_items(kept)

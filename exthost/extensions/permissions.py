"""Extension trust levels and capability permissions.

Pure data and pure functions: no I/O, no runtime state. Each capability maps
to one boolean field of ExtensionPermissions through a single table that also
carries the short label shown to users.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict

from exthost.extensions.source_policy import SourceKind, classify_extension_source

if TYPE_CHECKING:
    from exthost.extensions.models import ExtensionSource

BUILTIN_ID_PREFIX = "builtin."


class Capability(str, Enum):
    COMMANDS_REGISTER = "commands.register"
    TOOLS_REGISTER = "tools.register"
    AGENT_READ = "agent.read"
    AGENT_EVENTS_READ = "agent.events.read"
    UI_OVERLAY = "ui.overlay"
    UI_WIDGET = "ui.widget"
    UI_TOAST = "ui.toast"
    LLM_COMPLETE = "llm.complete"
    HTTP_FETCH = "http.fetch"
    STORAGE_READWRITE = "storage.readwrite"
    CLIPBOARD_WRITE = "clipboard.write"
    AGENT_CONTEXT_WRITE = "agent.context.write"
    AGENT_STEER = "agent.steer"
    AGENT_FOLLOWUP = "agent.followup"
    SKILLS_READ = "skills.read"
    SKILLS_WRITE = "skills.write"
    DOWNLOAD_FILE = "download.file"


class TrustLevel(str, Enum):
    BUILTIN = "builtin"
    LOCAL_MODULE = "local-module"
    INLINE_CODE = "inline-code"
    REMOTE_URL = "remote-url"


class ExtensionPermissions(BaseModel):
    """One boolean per capability. Immutable; use set_allowed() to change."""

    model_config = ConfigDict(frozen=True, strict=True)

    commands_register: bool
    tools_register: bool
    agent_read: bool
    agent_events_read: bool
    ui_overlay: bool
    ui_widget: bool
    ui_toast: bool
    llm_complete: bool
    http_fetch: bool
    storage_readwrite: bool
    clipboard_write: bool
    agent_context_write: bool
    agent_steer: bool
    agent_followup: bool
    skills_read: bool
    skills_write: bool
    download_file: bool


@dataclass(frozen=True)
class CapabilityDescriptor:
    capability: Capability
    field: str
    label: str


_CAPABILITY_TABLE: tuple[CapabilityDescriptor, ...] = (
    CapabilityDescriptor(Capability.COMMANDS_REGISTER, "commands_register", "register commands"),
    CapabilityDescriptor(Capability.TOOLS_REGISTER, "tools_register", "register tools"),
    CapabilityDescriptor(Capability.AGENT_READ, "agent_read", "read agent state"),
    CapabilityDescriptor(Capability.AGENT_EVENTS_READ, "agent_events_read", "read agent events"),
    CapabilityDescriptor(Capability.UI_OVERLAY, "ui_overlay", "show overlays"),
    CapabilityDescriptor(Capability.UI_WIDGET, "ui_widget", "show widgets"),
    CapabilityDescriptor(Capability.UI_TOAST, "ui_toast", "show toasts"),
    CapabilityDescriptor(Capability.LLM_COMPLETE, "llm_complete", "call LLM completions"),
    CapabilityDescriptor(Capability.HTTP_FETCH, "http_fetch", "fetch external HTTP resources"),
    CapabilityDescriptor(
        Capability.STORAGE_READWRITE, "storage_readwrite", "read/write extension storage"
    ),
    CapabilityDescriptor(Capability.CLIPBOARD_WRITE, "clipboard_write", "write clipboard text"),
    CapabilityDescriptor(
        Capability.AGENT_CONTEXT_WRITE, "agent_context_write", "inject agent context"
    ),
    CapabilityDescriptor(Capability.AGENT_STEER, "agent_steer", "steer active agent runs"),
    CapabilityDescriptor(
        Capability.AGENT_FOLLOWUP, "agent_followup", "queue agent follow-up messages"
    ),
    CapabilityDescriptor(Capability.SKILLS_READ, "skills_read", "read skill catalog"),
    CapabilityDescriptor(
        Capability.SKILLS_WRITE, "skills_write", "install/uninstall external skills"
    ),
    CapabilityDescriptor(Capability.DOWNLOAD_FILE, "download_file", "trigger file downloads"),
)

_DESCRIPTORS: dict[Capability, CapabilityDescriptor] = {
    d.capability: d for d in _CAPABILITY_TABLE
}


def _check_capability_table() -> None:
    """Fail at import when the enum, the table and the model drift apart."""
    missing = [c.value for c in Capability if c not in _DESCRIPTORS]
    table_fields = {d.field for d in _CAPABILITY_TABLE}
    model_fields = set(ExtensionPermissions.model_fields)
    if missing or len(_DESCRIPTORS) != len(_CAPABILITY_TABLE) or table_fields != model_fields:
        raise RuntimeError(
            "Capability table out of sync: "
            f"unmapped={missing} "
            f"fields_without_capability={sorted(model_fields - table_fields)} "
            f"capabilities_without_field={sorted(table_fields - model_fields)}"
        )


_check_capability_table()

_TRUSTED_DEFAULTS = ExtensionPermissions(
    commands_register=True,
    tools_register=True,
    agent_read=True,
    agent_events_read=True,
    ui_overlay=True,
    ui_widget=True,
    ui_toast=True,
    llm_complete=True,
    http_fetch=True,
    storage_readwrite=True,
    clipboard_write=True,
    agent_context_write=False,
    agent_steer=False,
    agent_followup=False,
    skills_read=True,
    skills_write=False,
    download_file=True,
)

_RESTRICTED_DEFAULTS = ExtensionPermissions(
    commands_register=True,
    tools_register=False,
    agent_read=False,
    agent_events_read=False,
    ui_overlay=True,
    ui_widget=True,
    ui_toast=True,
    llm_complete=False,
    http_fetch=False,
    storage_readwrite=True,
    clipboard_write=True,
    agent_context_write=False,
    agent_steer=False,
    agent_followup=False,
    skills_read=True,
    skills_write=False,
    download_file=True,
)

_TRUST_LABELS: dict[TrustLevel, str] = {
    TrustLevel.BUILTIN: "builtin",
    TrustLevel.LOCAL_MODULE: "local module",
    TrustLevel.INLINE_CODE: "inline code",
    TrustLevel.REMOTE_URL: "remote URL",
}


def parse_capability(value: "Capability | str") -> Capability:
    """Return the Capability for a tag. Raises ValueError on unknown tags."""
    if isinstance(value, Capability):
        return value
    try:
        return Capability(value)
    except ValueError:
        raise ValueError(f"Unknown extension capability: {value}") from None


def derive_trust(entry_id: str, source: "ExtensionSource") -> TrustLevel:
    """Classify an entry's source. Computed once at install time."""
    if source.kind == "inline":
        return TrustLevel.INLINE_CODE
    kind = classify_extension_source(source.specifier)
    if kind == SourceKind.REMOTE_URL:
        return TrustLevel.REMOTE_URL
    if kind == SourceKind.BLOB_URL:
        return TrustLevel.INLINE_CODE
    if entry_id.startswith(BUILTIN_ID_PREFIX):
        return TrustLevel.BUILTIN
    return TrustLevel.LOCAL_MODULE


def default_permissions(trust: TrustLevel) -> ExtensionPermissions:
    if trust in (TrustLevel.BUILTIN, TrustLevel.LOCAL_MODULE):
        return _TRUSTED_DEFAULTS
    return _RESTRICTED_DEFAULTS


def normalize_permissions(raw: Any, trust: TrustLevel) -> ExtensionPermissions:
    """Build permissions from stored data; missing or non-bool fields use trust defaults."""
    defaults = default_permissions(trust)
    if isinstance(raw, ExtensionPermissions):
        return raw
    if not isinstance(raw, dict):
        return defaults
    values = {}
    for descriptor in _CAPABILITY_TABLE:
        value = raw.get(descriptor.field)
        values[descriptor.field] = (
            value if isinstance(value, bool) else getattr(defaults, descriptor.field)
        )
    return ExtensionPermissions(**values)


def is_allowed(permissions: ExtensionPermissions, capability: "Capability | str") -> bool:
    descriptor = _DESCRIPTORS[parse_capability(capability)]
    return getattr(permissions, descriptor.field)


def set_allowed(
    permissions: ExtensionPermissions,
    capability: "Capability | str",
    allowed: bool,
) -> ExtensionPermissions:
    """Return a copy with one capability flipped. The input is not modified."""
    descriptor = _DESCRIPTORS[parse_capability(capability)]
    return permissions.model_copy(update={descriptor.field: bool(allowed)})


def all_capabilities() -> list[Capability]:
    return [d.capability for d in _CAPABILITY_TABLE]


def granted_capabilities(permissions: ExtensionPermissions) -> list[Capability]:
    """Granted capabilities in table order, never insertion order."""
    return [d.capability for d in _CAPABILITY_TABLE if getattr(permissions, d.field)]


def describe_capability(capability: "Capability | str") -> str:
    return _DESCRIPTORS[parse_capability(capability)].label


def describe_trust(trust: TrustLevel) -> str:
    return _TRUST_LABELS[trust]

"""Extension data models: stored entries, sources, runtime status, tool shapes."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Annotated, Any, Awaitable, Callable, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from exthost.extensions.permissions import Capability, ExtensionPermissions, TrustLevel
from exthost.extensions.runtime_mode import RuntimeMode


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ModuleSource(BaseModel):
    """Module specifier: ./bundled.py, blob:<id>, or an http(s) URL."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["module"] = "module"
    specifier: str

    @field_validator("specifier")
    @classmethod
    def _strip_specifier(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("specifier cannot be empty")
        return value


class InlineSource(BaseModel):
    """Python source text supplied by the installing user."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["inline"] = "inline"
    code: str


ExtensionSource = Annotated[Union[ModuleSource, InlineSource], Field(discriminator="kind")]


class StoredExtensionEntry(BaseModel):
    """Durable record of one installed extension. id and trust never change."""

    id: str = Field(frozen=True, min_length=1)
    name: str = Field(min_length=1)
    enabled: bool = True
    source: ExtensionSource
    trust: TrustLevel = Field(frozen=True)
    permissions: ExtensionPermissions
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def touch(self) -> None:
        self.updated_at = utc_now()


class ExtensionRegistryDocument(BaseModel):
    """Versioned document persisted in the settings store."""

    version: int
    items: list[StoredExtensionEntry] = Field(default_factory=list)


@dataclass
class ExtensionCommand:
    """A slash command registered by an extension."""

    name: str
    description: str
    handler: Callable[[str], Any]
    owner_id: str


ToolExecute = Callable[..., Awaitable[Any]]


@dataclass
class ExtensionTool:
    """Host-facing tool shape. execute(tool_call_id, params, signal=None, on_update=None)."""

    name: str
    label: str
    description: str
    parameters: dict[str, Any]
    execute: ToolExecute
    owner_id: str = ""


@dataclass
class ToolResult:
    """Tool output in the host agent's content-block shape."""

    content: list[dict[str, Any]]
    details: Any = None

    @classmethod
    def text(cls, text: str, details: Any = None) -> "ToolResult":
        return cls(content=[{"type": "text", "text": text}], details=details)


@dataclass
class ExtensionRuntimeStatus:
    """Read-only snapshot of an entry plus its loaded state, for display."""

    id: str
    name: str
    enabled: bool
    loaded: bool
    source: ModuleSource | InlineSource
    source_label: str
    trust: TrustLevel
    trust_label: str
    runtime_mode: RuntimeMode
    runtime_label: str
    permissions: ExtensionPermissions
    granted_capabilities: list[Capability] = field(default_factory=list)
    effective_capabilities: list[Capability] = field(default_factory=list)
    command_names: list[str] = field(default_factory=list)
    tool_names: list[str] = field(default_factory=list)
    last_error: str | None = None

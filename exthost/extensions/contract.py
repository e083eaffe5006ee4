"""Host-facing protocols and request/response shapes.

The runtime talks to the host only through these. Anything that renders UI,
runs the agent, or moves bytes to an isolated context lives behind them.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Protocol, runtime_checkable


@runtime_checkable
class SettingsStore(Protocol):
    """Key/value persistence. Values are JSON-compatible."""

    async def get(self, key: str) -> Any:
        """Return the stored value or None."""

    async def set(self, key: str, value: Any) -> None:
        """Store a value, replacing any previous one."""


@runtime_checkable
class HostAgent(Protocol):
    """The host's active agent, as far as extensions can see it."""

    session_id: str | None

    def subscribe(self, handler: Callable[[Any], None]) -> Callable[[], None]:
        """Subscribe to agent events. Returns an unsubscribe callable."""

    def append_message(self, message: dict[str, Any]) -> None:
        """Add a message to the agent's context without starting a turn."""

    def steer(self, message: dict[str, Any]) -> None:
        """Interrupt the running turn with a message."""

    def follow_up(self, message: dict[str, Any]) -> None:
        """Queue a message to run after the current turn."""


@runtime_checkable
class HostUI(Protocol):
    """Rendering layer. Owner ids let the host clear an extension's surfaces."""

    def show_overlay(self, owner_id: str, content: Any) -> None: ...

    def dismiss_overlay(self, owner_id: str) -> None: ...

    def show_widget(self, owner_id: str, content: Any) -> None: ...

    def dismiss_widget(self, owner_id: str) -> None: ...

    def clear_widgets(self, owner_id: str) -> None: ...

    def toast(self, message: str) -> None: ...

    async def write_clipboard(self, text: str) -> None: ...

    def download_file(self, filename: str, content: str, mime_type: str | None) -> None: ...


@runtime_checkable
class LoadedExtensionHandle(Protocol):
    """Lifecycle handle from the loader or the sandbox. deactivate() is idempotent."""

    async def deactivate(self) -> None: ...


HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD"]


@dataclass
class HttpRequestOptions:
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    body: str | bytes | None = None
    timeout_ms: int | None = None


@dataclass(frozen=True)
class HttpResponse:
    status: int
    status_text: str
    headers: dict[str, str]
    body: str


@dataclass(frozen=True)
class LlmMessage:
    role: Literal["user", "assistant"]
    content: str


@dataclass
class LlmCompletionRequest:
    messages: list[LlmMessage]
    system_prompt: str | None = None
    model: str | None = None
    max_tokens: int | None = None
    session_id: str | None = None


@dataclass(frozen=True)
class LlmCompletionResult:
    content: str
    model: str
    usage: dict[str, Any] | None = None

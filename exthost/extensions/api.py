"""ExtensionAPI: the object passed to activate(api). Everything an extension can do goes through it.

Each member checks its capability before touching any host callback, then
delegates to the callback the host wired into HostBindings. A callback the
host did not wire fails with HostUnsupportedError, never AttributeError.
"""

import inspect
import logging
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable

from exthost.extensions.contract import (
    HostAgent,
    HttpRequestOptions,
    HttpResponse,
    LlmCompletionRequest,
    LlmCompletionResult,
    LlmMessage,
)
from exthost.extensions.errors import (
    CapabilityDeniedError,
    ExtensionValidationError,
    HostUnsupportedError,
)
from exthost.extensions.models import ExtensionCommand, ExtensionTool, ToolResult
from exthost.extensions.permissions import Capability, parse_capability
from exthost.logging_config import extension_logger

_DEFAULT_TOOL_PARAMETERS: dict[str, Any] = {"type": "object", "properties": {}}


@dataclass
class HostBindings:
    """Host callbacks bound to one extension. Unset callbacks mean "not supported"."""

    extension_id: str = ""
    extension_name: str = ""
    get_agent: Callable[[], HostAgent] | None = None
    register_command: Callable[[ExtensionCommand], None] | None = None
    register_tool: Callable[[ExtensionTool], None] | None = None
    unregister_tool: Callable[[str], None] | None = None
    subscribe_agent_events: Callable[[Callable[[Any], None]], Callable[[], None]] | None = None
    llm_complete: Callable[[LlmCompletionRequest], Awaitable[LlmCompletionResult]] | None = None
    http_fetch: Callable[[str, HttpRequestOptions | None], Awaitable[HttpResponse]] | None = None
    storage_get: Callable[[str], Awaitable[Any]] | None = None
    storage_set: Callable[[str, Any], Awaitable[None]] | None = None
    storage_delete: Callable[[str], Awaitable[None]] | None = None
    storage_keys: Callable[[], Awaitable[list[str]]] | None = None
    clipboard_write_text: Callable[[str], Awaitable[None]] | None = None
    inject_agent_context: Callable[[str], None] | None = None
    steer_agent: Callable[[str], None] | None = None
    follow_up_agent: Callable[[str], None] | None = None
    list_skills: Callable[[], Awaitable[list[Any]]] | None = None
    read_skill: Callable[[str], Awaitable[str]] | None = None
    install_skill: Callable[[str, str], Awaitable[None]] | None = None
    uninstall_skill: Callable[[str], Awaitable[None]] | None = None
    download_file: Callable[[str, str, str | None], None] | None = None
    show_overlay: Callable[[Any], None] | None = None
    dismiss_overlay: Callable[[], None] | None = None
    show_widget: Callable[[Any], None] | None = None
    dismiss_widget: Callable[[], None] | None = None
    toast: Callable[[str], None] | None = None
    is_capability_enabled: Callable[[Capability], bool] | None = None
    format_capability_error: Callable[[Capability], str] | None = None
    # Host kill-switch: False turns every capability check into a pass.
    capability_gate_enabled: bool = True
    logger: logging.Logger | None = None


class _Gate:
    def __init__(self, bindings: HostBindings) -> None:
        self.bindings = bindings

    def assert_capability(self, capability: Capability) -> None:
        if not self.bindings.capability_gate_enabled:
            return
        check = self.bindings.is_capability_enabled
        if check is None or check(capability):
            return
        fmt = self.bindings.format_capability_error
        message = fmt(capability) if fmt else f"Extension capability denied: {capability.value}"
        raise CapabilityDeniedError(capability.value, message)

    def require(self, name: str) -> Callable[..., Any]:
        callback = getattr(self.bindings, name)
        if callback is None:
            raise HostUnsupportedError(f"Host does not support {name}()")
        return callback


def _require_text(value: Any, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ExtensionValidationError(f"{label} cannot be empty.")
    return value


def _definition_field(definition: Any, key: str) -> Any:
    if isinstance(definition, Mapping):
        return definition.get(key)
    return getattr(definition, key, None)


def _call_with_supported_args(fn: Callable[..., Any], *args: Any) -> Any:
    """Call fn with as many leading positional args as it accepts."""
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return fn(*args)
    positional = 0
    for param in sig.parameters.values():
        if param.kind == inspect.Parameter.VAR_POSITIONAL:
            return fn(*args)
        if param.kind in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
        ):
            positional += 1
    return fn(*args[:positional])


def _to_tool_result(result: Any) -> ToolResult:
    if isinstance(result, ToolResult):
        return result
    if isinstance(result, Mapping) and isinstance(result.get("content"), list):
        return ToolResult(content=list(result["content"]), details=result.get("details"))
    if result is None:
        return ToolResult.text("")
    return ToolResult.text(result if isinstance(result, str) else str(result))


def _coerce_llm_request(request: Any) -> LlmCompletionRequest:
    if isinstance(request, LlmCompletionRequest):
        raw_messages: Any = request.messages
        base = request
    elif isinstance(request, Mapping):
        raw_messages = request.get("messages")
        base = LlmCompletionRequest(
            messages=[],
            system_prompt=request.get("system_prompt"),
            model=request.get("model"),
            max_tokens=request.get("max_tokens"),
        )
    else:
        raise ExtensionValidationError("llm.complete request must be a mapping or LlmCompletionRequest")
    if not isinstance(raw_messages, (list, tuple)) or not raw_messages:
        raise ExtensionValidationError("llm.complete requires at least one message.")
    messages: list[LlmMessage] = []
    for item in raw_messages:
        role = item.role if isinstance(item, LlmMessage) else _definition_field(item, "role")
        content = item.content if isinstance(item, LlmMessage) else _definition_field(item, "content")
        if role not in ("user", "assistant"):
            raise ExtensionValidationError(f"Unsupported llm.complete message role: {role!r}")
        messages.append(LlmMessage(role=role, content=_require_text(content, "Message content")))
    return replace(base, messages=messages)


def _coerce_http_options(options: Any) -> HttpRequestOptions | None:
    if options is None or isinstance(options, HttpRequestOptions):
        return options
    if isinstance(options, Mapping):
        return HttpRequestOptions(
            method=str(options.get("method", "GET")),
            headers=dict(options.get("headers") or {}),
            body=options.get("body"),
            timeout_ms=options.get("timeout_ms"),
        )
    raise ExtensionValidationError("http.fetch options must be a mapping or HttpRequestOptions")


class AgentAPI:
    def __init__(self, gate: _Gate) -> None:
        self._gate = gate

    @property
    def raw(self) -> HostAgent:
        """The host agent itself. Needs agent.read and agent.events.read."""
        self._gate.assert_capability(Capability.AGENT_READ)
        self._gate.assert_capability(Capability.AGENT_EVENTS_READ)
        return self._gate.require("get_agent")()

    def inject_context(self, content: str) -> None:
        self._gate.assert_capability(Capability.AGENT_CONTEXT_WRITE)
        text = _require_text(content, "agent.inject_context content")
        self._gate.require("inject_agent_context")(text)

    def steer(self, content: str) -> None:
        self._gate.assert_capability(Capability.AGENT_STEER)
        text = _require_text(content, "agent.steer content")
        self._gate.require("steer_agent")(text)

    def follow_up(self, content: str) -> None:
        self._gate.assert_capability(Capability.AGENT_FOLLOWUP)
        text = _require_text(content, "agent.follow_up content")
        self._gate.require("follow_up_agent")(text)


class LlmAPI:
    def __init__(self, gate: _Gate) -> None:
        self._gate = gate

    async def complete(self, request: LlmCompletionRequest | Mapping[str, Any]) -> LlmCompletionResult:
        self._gate.assert_capability(Capability.LLM_COMPLETE)
        return await self._gate.require("llm_complete")(_coerce_llm_request(request))


class HttpAPI:
    def __init__(self, gate: _Gate) -> None:
        self._gate = gate

    async def fetch(
        self, url: str, options: HttpRequestOptions | Mapping[str, Any] | None = None
    ) -> HttpResponse:
        self._gate.assert_capability(Capability.HTTP_FETCH)
        return await self._gate.require("http_fetch")(url, _coerce_http_options(options))


class StorageAPI:
    """Key/value storage. The host partitions it by extension id."""

    def __init__(self, gate: _Gate) -> None:
        self._gate = gate

    async def get(self, key: str) -> Any:
        self._gate.assert_capability(Capability.STORAGE_READWRITE)
        return await self._gate.require("storage_get")(key)

    async def set(self, key: str, value: Any) -> None:
        self._gate.assert_capability(Capability.STORAGE_READWRITE)
        await self._gate.require("storage_set")(key, value)

    async def delete(self, key: str) -> None:
        self._gate.assert_capability(Capability.STORAGE_READWRITE)
        await self._gate.require("storage_delete")(key)

    async def keys(self) -> list[str]:
        self._gate.assert_capability(Capability.STORAGE_READWRITE)
        return await self._gate.require("storage_keys")()


class ClipboardAPI:
    def __init__(self, gate: _Gate) -> None:
        self._gate = gate

    async def write_text(self, text: str) -> None:
        self._gate.assert_capability(Capability.CLIPBOARD_WRITE)
        if not isinstance(text, str):
            raise ExtensionValidationError("clipboard.write_text expects a string")
        await self._gate.require("clipboard_write_text")(text)


class DownloadAPI:
    def __init__(self, gate: _Gate) -> None:
        self._gate = gate

    def download(self, filename: str, content: str, mime_type: str | None = None) -> None:
        self._gate.assert_capability(Capability.DOWNLOAD_FILE)
        name = _require_text(filename, "Download filename").strip()
        self._gate.require("download_file")(name, content, mime_type)


class SkillsAPI:
    def __init__(self, gate: _Gate) -> None:
        self._gate = gate

    async def list(self) -> list[Any]:
        self._gate.assert_capability(Capability.SKILLS_READ)
        return await self._gate.require("list_skills")()

    async def read(self, name: str) -> str:
        self._gate.assert_capability(Capability.SKILLS_READ)
        return await self._gate.require("read_skill")(name)

    async def install(self, name: str, markdown: str) -> None:
        self._gate.assert_capability(Capability.SKILLS_WRITE)
        await self._gate.require("install_skill")(name, markdown)

    async def uninstall(self, name: str) -> None:
        self._gate.assert_capability(Capability.SKILLS_WRITE)
        await self._gate.require("uninstall_skill")(name)


class _SurfaceAPI:
    def __init__(self, gate: _Gate, capability: Capability, show: str, dismiss: str) -> None:
        self._gate = gate
        self._capability = capability
        self._show = show
        self._dismiss = dismiss

    def show(self, content: Any) -> None:
        self._gate.assert_capability(self._capability)
        self._gate.require(self._show)(content)

    def dismiss(self) -> None:
        self._gate.assert_capability(self._capability)
        self._gate.require(self._dismiss)()


class ExtensionAPI:
    """Capability-gated API handed to an extension's activate(api).

    Example extension:
        def activate(api):
            api.register_command("hello", lambda args: api.toast("Hello!"), "Say hello")
    """

    def __init__(self, bindings: HostBindings) -> None:
        self._gate = _Gate(bindings)
        self.extension_id = bindings.extension_id
        self.logger = bindings.logger or extension_logger(bindings.extension_id)
        self.agent = AgentAPI(self._gate)
        self.llm = LlmAPI(self._gate)
        self.http = HttpAPI(self._gate)
        self.storage = StorageAPI(self._gate)
        self.clipboard = ClipboardAPI(self._gate)
        self.download = DownloadAPI(self._gate)
        self.skills = SkillsAPI(self._gate)
        self.overlay = _SurfaceAPI(self._gate, Capability.UI_OVERLAY, "show_overlay", "dismiss_overlay")
        self.widget = _SurfaceAPI(self._gate, Capability.UI_WIDGET, "show_widget", "dismiss_widget")

    def assert_capability(self, capability: Capability | str) -> None:
        self._gate.assert_capability(parse_capability(capability))

    def register_command(
        self, name: str, handler: Callable[[str], Any], description: str = ""
    ) -> None:
        """Register a slash command. Fails if the name is owned by another source."""
        self._gate.assert_capability(Capability.COMMANDS_REGISTER)
        command_name = _require_text(name, "Command name").strip()
        if not callable(handler):
            raise ExtensionValidationError(f"Command /{command_name} handler must be callable")
        register = self._gate.require("register_command")
        register(
            ExtensionCommand(
                name=command_name,
                description=description or "",
                handler=handler,
                owner_id=self.extension_id,
            )
        )

    def register_tool(self, name: str, definition: Any) -> None:
        """Register an agent tool. definition provides execute(params, signal?, on_update?)."""
        self._gate.assert_capability(Capability.TOOLS_REGISTER)
        tool_name = _require_text(name, "Tool name").strip()
        ext_execute = _definition_field(definition, "execute")
        if not callable(ext_execute):
            if _definition_field(definition, "handler") is not None:
                raise ExtensionValidationError(
                    f'Tool "{tool_name}" has no execute function: '
                    "use execute(params, signal?, on_update?) instead of handler."
                )
            raise ExtensionValidationError(
                f'Tool "{tool_name}" must define execute(params, signal?, on_update?).'
            )
        parameters = _definition_field(definition, "parameters")
        if parameters is None:
            parameters = dict(_DEFAULT_TOOL_PARAMETERS)
        elif not isinstance(parameters, Mapping):
            raise ExtensionValidationError(f'Tool "{tool_name}" parameters must be a JSON schema mapping')
        register = self._gate.require("register_tool")

        async def execute(
            tool_call_id: str,
            params: Any,
            signal: Any = None,
            on_update: Callable[[Any], None] | None = None,
        ) -> ToolResult:
            result = _call_with_supported_args(ext_execute, params, signal, on_update)
            if inspect.isawaitable(result):
                result = await result
            return _to_tool_result(result)

        register(
            ExtensionTool(
                name=tool_name,
                label=_definition_field(definition, "label") or tool_name,
                description=_definition_field(definition, "description") or "",
                parameters=dict(parameters),
                execute=execute,
                owner_id=self.extension_id,
            )
        )

    def unregister_tool(self, name: str) -> None:
        self._gate.assert_capability(Capability.TOOLS_REGISTER)
        tool_name = _require_text(name, "Tool name").strip()
        self._gate.require("unregister_tool")(tool_name)

    def toast(self, message: str) -> None:
        self._gate.assert_capability(Capability.UI_TOAST)
        self._gate.require("toast")(str(message))

    def on_agent_event(self, handler: Callable[[Any], None]) -> Callable[[], None]:
        """Subscribe to agent events. The returned unsubscribe is idempotent."""
        self._gate.assert_capability(Capability.AGENT_EVENTS_READ)
        if not callable(handler):
            raise ExtensionValidationError("on_agent_event handler must be callable")
        unsubscribe = self._gate.require("subscribe_agent_events")(handler)
        done = False

        def _unsubscribe() -> None:
            nonlocal done
            if done:
                return
            done = True
            unsubscribe()

        return _unsubscribe


def create_extension_api(bindings: HostBindings) -> ExtensionAPI:
    return ExtensionAPI(bindings)

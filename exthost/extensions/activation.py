"""Activation session and the per-extension host bridge.

An ActivationSession collects everything one activation registers. While
activate(api) runs (ACTIVATING) names are claimed at once, so conflicts
surface at the offending call, but tools are held back and published
together by commit(). After commit (LIVE) every tool change is published
immediately and schedules its own runtime tool refresh.
"""

import functools
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable

from exthost.extensions.api import HostBindings
from exthost.extensions.contract import (
    HostAgent,
    HostUI,
    LlmCompletionRequest,
    LlmCompletionResult,
    LoadedExtensionHandle,
)
from exthost.extensions.egress import ExtensionHttpClient
from exthost.extensions.errors import ExtensionError
from exthost.extensions.helpers import create_extension_agent_message, extension_llm_session_id
from exthost.extensions.models import ExtensionCommand, ExtensionTool, StoredExtensionEntry
from exthost.extensions.namespace import ExtensionNamespace
from exthost.extensions.permissions import Capability, describe_capability, is_allowed
from exthost.extensions.skills_store import ExtensionSkillStore
from exthost.extensions.storage_store import ExtensionStorageStore
from exthost.logging_config import extension_logger


class ActivationPhase(str, Enum):
    ACTIVATING = "activating"
    LIVE = "live"


@dataclass(eq=False)
class LoadedExtensionState:
    """Everything one activation owns. Identity doubles as the namespace claim token."""

    entry_id: str
    command_names: set[str] = field(default_factory=set)
    tool_names: set[str] = field(default_factory=set)
    event_unsubscribers: list[Callable[[], Any]] = field(default_factory=list)
    handle: LoadedExtensionHandle | None = None
    inline_url: str | None = None
    closed: bool = False


class ActivationSession:
    def __init__(
        self,
        state: LoadedExtensionState,
        namespace: ExtensionNamespace,
        schedule_refresh: Callable[[], None],
    ) -> None:
        self.state = state
        self.phase = ActivationPhase.ACTIVATING
        self._namespace = namespace
        self._schedule_refresh = schedule_refresh
        self._pending_tools: dict[str, ExtensionTool] = {}

    def ensure_open(self) -> None:
        if self.state.closed:
            raise ExtensionError(f'Extension "{self.state.entry_id}" is no longer active')

    def guard(self, fn: Callable[..., Any]) -> Callable[..., Any]:
        """Wrap a host binding so it refuses to run once the extension is torn down."""

        @functools.wraps(fn)
        def _guarded(*args: Any, **kwargs: Any) -> Any:
            self.ensure_open()
            return fn(*args, **kwargs)

        return _guarded

    def register_command(self, command: ExtensionCommand) -> None:
        self.ensure_open()
        self._namespace.check_command(command.name, self.state.entry_id, self.state.command_names)
        self._namespace.claim_command(command, self.state)
        self.state.command_names.add(command.name)

    def register_tool(self, tool: ExtensionTool) -> None:
        self.ensure_open()
        self._namespace.check_tool(tool.name, self.state.entry_id, self.state.tool_names)
        self._namespace.claim_tool(tool.name, self.state.entry_id, self.state)
        self.state.tool_names.add(tool.name)
        if self.phase == ActivationPhase.ACTIVATING:
            self._pending_tools[tool.name] = tool
            return
        self._namespace.publish_tool(tool)
        self._schedule_refresh()

    def unregister_tool(self, name: str) -> None:
        self.ensure_open()
        if name not in self.state.tool_names:
            return
        self.state.tool_names.discard(name)
        self._pending_tools.pop(name, None)
        removed = self._namespace.release_tool(name, self.state)
        if removed and self.phase == ActivationPhase.LIVE:
            self._schedule_refresh()

    def track_unsubscriber(self, unsubscribe: Callable[[], Any]) -> Callable[[], None]:
        """Record an agent event unsubscribe; the returned callable removes and runs it once.

        A subscription that lands after teardown is undone at once.
        """
        if self.state.closed:
            unsubscribe()
            self.ensure_open()
        self.state.event_unsubscribers.append(unsubscribe)

        def _remove() -> None:
            if unsubscribe not in self.state.event_unsubscribers:
                return
            self.state.event_unsubscribers.remove(unsubscribe)
            unsubscribe()

        return _remove

    def commit(self) -> bool:
        """Publish the tools collected during activation. True when any were published."""
        changed = bool(self._pending_tools)
        for tool in self._pending_tools.values():
            self._namespace.publish_tool(tool)
        self._pending_tools.clear()
        self.phase = ActivationPhase.LIVE
        return changed


@dataclass
class HostServices:
    """Host-side collaborators shared by every extension bridge."""

    get_active_agent: Callable[[], HostAgent | None]
    http: ExtensionHttpClient
    storage: ExtensionStorageStore
    skills: ExtensionSkillStore
    llm_complete: Callable[[LlmCompletionRequest], Awaitable[LlmCompletionResult]] | None = None
    ui: HostUI | None = None
    capability_gate_enabled: bool = True

    def require_agent(self) -> HostAgent:
        agent = self.get_active_agent()
        if agent is None:
            raise ExtensionError("No active runtime available for extension activation")
        return agent


def format_capability_error(entry: StoredExtensionEntry, capability: Capability) -> str:
    return (
        f'Extension "{entry.name}" is not allowed to {describe_capability(capability)} '
        f"({capability.value}). Grant it in the extension's permissions."
    )


def build_host_bindings(
    entry: StoredExtensionEntry,
    session: ActivationSession,
    services: HostServices,
) -> HostBindings:
    """Wire one entry's HostBindings. Capability checks read entry.permissions at call time."""
    ext_id = entry.id

    def subscribe_agent_events(handler: Callable[[Any], None]) -> Callable[[], None]:
        return session.track_unsubscriber(services.require_agent().subscribe(handler))

    def inject_agent_context(content: str) -> None:
        message = create_extension_agent_message(entry.name, "agent.inject_context content", content)
        services.require_agent().append_message(message)

    def steer_agent(content: str) -> None:
        message = create_extension_agent_message(entry.name, "agent.steer content", content)
        services.require_agent().steer(message)

    def follow_up_agent(content: str) -> None:
        message = create_extension_agent_message(entry.name, "agent.follow_up content", content)
        services.require_agent().follow_up(message)

    llm_complete: Callable[[LlmCompletionRequest], Awaitable[LlmCompletionResult]] | None = None
    if services.llm_complete is not None:
        host_complete = services.llm_complete

        async def _llm_complete(request: LlmCompletionRequest) -> LlmCompletionResult:
            agent = services.get_active_agent()
            session_id = extension_llm_session_id(agent.session_id if agent is not None else None, ext_id)
            return await host_complete(replace(request, session_id=session_id))

        llm_complete = session.guard(_llm_complete)

    async def storage_get(key: str) -> Any:
        return await services.storage.get(ext_id, key)

    async def storage_set(key: str, value: Any) -> None:
        await services.storage.set(ext_id, key, value)

    async def storage_delete(key: str) -> None:
        await services.storage.delete(ext_id, key)

    async def storage_keys() -> list[str]:
        return await services.storage.keys(ext_id)

    guard = session.guard
    bindings = HostBindings(
        extension_id=ext_id,
        extension_name=entry.name,
        get_agent=guard(services.require_agent),
        register_command=session.register_command,
        register_tool=session.register_tool,
        unregister_tool=session.unregister_tool,
        subscribe_agent_events=guard(subscribe_agent_events),
        llm_complete=llm_complete,
        http_fetch=guard(services.http.fetch),
        storage_get=guard(storage_get),
        storage_set=guard(storage_set),
        storage_delete=guard(storage_delete),
        storage_keys=guard(storage_keys),
        inject_agent_context=guard(inject_agent_context),
        steer_agent=guard(steer_agent),
        follow_up_agent=guard(follow_up_agent),
        list_skills=guard(services.skills.list),
        read_skill=guard(services.skills.read),
        install_skill=guard(services.skills.install),
        uninstall_skill=guard(services.skills.uninstall),
        is_capability_enabled=lambda capability: is_allowed(entry.permissions, capability),
        format_capability_error=lambda capability: format_capability_error(entry, capability),
        capability_gate_enabled=services.capability_gate_enabled,
        logger=extension_logger(ext_id),
    )

    ui = services.ui
    if ui is not None:
        bindings.show_overlay = guard(lambda content: ui.show_overlay(ext_id, content))
        bindings.dismiss_overlay = guard(lambda: ui.dismiss_overlay(ext_id))
        bindings.show_widget = guard(lambda content: ui.show_widget(ext_id, content))
        bindings.dismiss_widget = guard(lambda: ui.dismiss_widget(ext_id))
        bindings.toast = guard(ui.toast)
        bindings.clipboard_write_text = guard(ui.write_clipboard)
        bindings.download_file = guard(ui.download_file)
    return bindings

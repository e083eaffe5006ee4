"""Extension runtime manager.

Responsibilities:
- load the persisted extension registry
- activate/deactivate extensions with failure isolation
- track extension-owned commands, tools and subscriptions for clean unload
- expose the extension tool list so the host can refresh agent toolsets
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Awaitable, Callable

from exthost.extensions.activation import (
    ActivationSession,
    HostServices,
    LoadedExtensionState,
    build_host_bindings,
)
from exthost.extensions.backends import (
    ExtensionExecutionBackend,
    HostBackend,
    SandboxActivator,
    SandboxBackend,
)
from exthost.extensions.config import RuntimeConfig
from exthost.extensions.contract import (
    HostAgent,
    HostUI,
    LlmCompletionRequest,
    LlmCompletionResult,
    SettingsStore,
)
from exthost.extensions.egress import ExtensionHttpClient
from exthost.extensions.errors import (
    ExtensionError,
    ExtensionNotFoundError,
    ExtensionTeardownError,
    error_message,
)
from exthost.extensions.helpers import (
    describe_extension_source,
    normalize_extension_name,
    normalize_inline_code,
    normalize_module_specifier,
    normalize_remote_url,
)
from exthost.extensions.inline import InlineSourceRegistry
from exthost.extensions.models import (
    ExtensionCommand,
    ExtensionRuntimeStatus,
    ExtensionSource,
    ExtensionTool,
    InlineSource,
    ModuleSource,
    StoredExtensionEntry,
    utc_now,
)
from exthost.extensions.module_loader import ExtensionModuleImporter, discover_bundled_importers
from exthost.extensions.namespace import ExtensionNamespace
from exthost.extensions.permissions import (
    Capability,
    all_capabilities,
    default_permissions,
    derive_trust,
    describe_trust,
    granted_capabilities,
    is_allowed,
    parse_capability,
    set_allowed,
)
from exthost.extensions.runtime_mode import (
    RuntimeMode,
    describe_runtime_mode,
    resolve_runtime_mode,
)
from exthost.extensions.skills_store import ExtensionSkillStore, SkillDefinition
from exthost.extensions.storage_store import ExtensionStorageStore
from exthost.extensions.store import load_extension_entries, save_extension_entries

logger = logging.getLogger(__name__)

ManagerListener = Callable[[], None]

DEFAULT_BUNDLED_DIR = Path(__file__).resolve().parent.parent / "bundled"


class ExtensionRuntimeManager:
    def __init__(
        self,
        settings: SettingsStore,
        get_active_agent: Callable[[], HostAgent | None],
        refresh_runtime_tools: Callable[[], Awaitable[None]],
        reserved_tool_names: Iterable[str] = (),
        config: RuntimeConfig | None = None,
        *,
        reserved_command_names: Iterable[str] = (),
        ui: HostUI | None = None,
        llm_complete: Callable[[LlmCompletionRequest], Awaitable[LlmCompletionResult]] | None = None,
        sandbox_activator: SandboxActivator | None = None,
        importer: ExtensionModuleImporter | None = None,
        http_client: ExtensionHttpClient | None = None,
        bundled_skills: list[SkillDefinition] | None = None,
        namespace: ExtensionNamespace | None = None,
    ) -> None:
        self._settings = settings
        self._get_active_agent = get_active_agent
        self._refresh_runtime_tools = refresh_runtime_tools
        self._config = config or RuntimeConfig()
        self._namespace = namespace or ExtensionNamespace(
            reserved_tool_names, reserved_command_names
        )
        self._ui = ui
        if importer is None:
            bundled_dir = self._config.bundled_dir or DEFAULT_BUNDLED_DIR
            importer = ExtensionModuleImporter(
                bundled=discover_bundled_importers(bundled_dir),
                inline_registry=InlineSourceRegistry(),
                allow_remote_urls=self._config.allow_remote_urls,
            )
        self._importer = importer
        self._storage = ExtensionStorageStore(
            settings, max_bytes=self._config.storage.max_bytes_per_extension
        )
        self._services = HostServices(
            get_active_agent=get_active_agent,
            http=http_client or ExtensionHttpClient(self._config.http),
            storage=self._storage,
            skills=ExtensionSkillStore(settings, bundled_skills),
            llm_complete=llm_complete,
            ui=ui,
            capability_gate_enabled=self._config.capability_gate_enabled,
        )
        self._backends: dict[RuntimeMode, ExtensionExecutionBackend] = {
            RuntimeMode.HOST: HostBackend(importer),
            RuntimeMode.SANDBOX_IFRAME: SandboxBackend(sandbox_activator),
        }

        self._listeners: list[ManagerListener] = []
        self._active: dict[str, LoadedExtensionState] = {}
        self._generations: dict[str, int] = {}
        self._last_errors: dict[str, str] = {}
        self._refresh_tasks: set[asyncio.Task[None]] = set()
        self._entries: list[StoredExtensionEntry] = []
        self._initialized = False

    @property
    def namespace(self) -> ExtensionNamespace:
        return self._namespace

    @property
    def config(self) -> RuntimeConfig:
        return self._config

    def subscribe(self, listener: ManagerListener) -> Callable[[], None]:
        """Call listener after every state change. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def list(self) -> list[ExtensionRuntimeStatus]:
        statuses = []
        for entry in self._entries:
            state = self._active.get(entry.id)
            mode = resolve_runtime_mode(entry.trust, self._config.sandbox_enabled)
            granted = granted_capabilities(entry.permissions)
            statuses.append(
                ExtensionRuntimeStatus(
                    id=entry.id,
                    name=entry.name,
                    enabled=entry.enabled,
                    loaded=state is not None,
                    source=entry.source,
                    source_label=describe_extension_source(entry.source),
                    trust=entry.trust,
                    trust_label=describe_trust(entry.trust),
                    runtime_mode=mode,
                    runtime_label=describe_runtime_mode(mode),
                    permissions=entry.permissions,
                    granted_capabilities=granted,
                    effective_capabilities=(
                        granted if self._config.capability_gate_enabled else all_capabilities()
                    ),
                    command_names=sorted(state.command_names) if state else [],
                    tool_names=sorted(state.tool_names) if state else [],
                    last_error=self._last_errors.get(entry.id),
                )
            )
        return statuses

    def get_registered_tools(self) -> list[ExtensionTool]:
        return list(self._namespace.tools.values())

    def get_registered_commands(self) -> list[ExtensionCommand]:
        return list(self._namespace.commands.values())

    async def run_command(self, name: str, args: str = "") -> Any:
        command = self._namespace.commands.get(name.strip().lstrip("/"))
        if command is None:
            raise ExtensionError(f"Unknown extension command: /{name}")
        result = command.handler(args)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def initialize(self) -> None:
        if self._initialized:
            return
        self._entries = await load_extension_entries(self._settings)
        for entry in self._entries:
            if entry.enabled:
                await self._try_activate(entry)
        self._initialized = True
        self._notify()

    async def install_from_code(self, name: str, code: str) -> str:
        return await self._install_entry(
            normalize_extension_name(name), InlineSource(code=normalize_inline_code(code))
        )

    async def install_from_url(self, name: str, url: str) -> str:
        return await self._install_entry(
            normalize_extension_name(name), ModuleSource(specifier=normalize_remote_url(url))
        )

    async def install_from_module(self, name: str, specifier: str) -> str:
        return await self._install_entry(
            normalize_extension_name(name),
            ModuleSource(specifier=normalize_module_specifier(specifier)),
        )

    async def set_enabled(self, entry_id: str, enabled: bool) -> None:
        entry = self._require_entry(entry_id)
        if entry.enabled == enabled:
            return
        entry.enabled = enabled
        entry.touch()
        await self._persist()
        try:
            if enabled:
                await self._try_activate(entry)
            else:
                await self.deactivate_entry(entry.id)
        finally:
            self._notify()

    async def set_capability(
        self, entry_id: str, capability: Capability | str, allowed: bool
    ) -> None:
        """Grant or revoke one capability. An active extension is reloaded to pick it up."""
        cap = parse_capability(capability)
        entry = self._require_entry(entry_id)
        if is_allowed(entry.permissions, cap) == allowed:
            return
        entry.permissions = set_allowed(entry.permissions, cap, allowed)
        entry.touch()
        await self._persist()
        if entry.id in self._active:
            await self.reload(entry.id)
        else:
            self._notify()

    async def reload(self, entry_id: str) -> None:
        entry = self._require_entry(entry_id)
        try:
            await self.deactivate_entry(entry.id)
            if entry.enabled:
                await self._try_activate(entry)
        finally:
            self._notify()

    async def uninstall(self, entry_id: str) -> None:
        """Remove an entry and its storage. Teardown failures are raised after removal."""
        entry = self._require_entry(entry_id)
        teardown_error: ExtensionTeardownError | None = None
        try:
            await self.deactivate_entry(entry.id)
        except ExtensionTeardownError as e:
            teardown_error = e
        self._entries = [e for e in self._entries if e.id != entry.id]
        self._last_errors.pop(entry.id, None)
        self._generations.pop(entry.id, None)
        await self._storage.clear(entry.id)
        await self._persist()
        self._notify()
        if teardown_error is not None:
            raise teardown_error

    async def activate_entry(self, entry: StoredExtensionEntry) -> None:
        """Activate entry, replacing any live activation. Raises on failure after cleanup."""
        generation = self._generations.get(entry.id, 0) + 1
        self._generations[entry.id] = generation
        await self.deactivate_entry(entry.id)

        state = LoadedExtensionState(entry_id=entry.id)
        session = ActivationSession(state, self._namespace, self._schedule_tool_refresh)
        bindings = build_host_bindings(entry, session, self._services)
        mode = resolve_runtime_mode(entry.trust, self._config.sandbox_enabled)
        backend = self._backends[mode]

        try:
            state.handle = await backend.activate(entry, state, bindings)
            if self._generations.get(entry.id) != generation:
                # A newer activation of this entry started meanwhile; it wins.
                logger.debug("Discarding superseded activation of %s", entry.id)
                await self._cleanup_state(state)
                return
            self._active[entry.id] = state
            if session.commit():
                await self._refresh_runtime_tools()
        except Exception:
            if self._active.get(entry.id) is state:
                del self._active[entry.id]
            try:
                await self._cleanup_state(state)
            except ExtensionTeardownError as cleanup_error:
                logger.warning(
                    "Extension cleanup after failed activation also failed: %s", cleanup_error
                )
            raise

    async def deactivate_entry(self, entry_id: str) -> None:
        state = self._active.pop(entry_id, None)
        if state is None:
            return
        await self._cleanup_state(state)

    async def flush_tool_refreshes(self) -> None:
        """Wait for refreshes scheduled by live tool registrations."""
        while self._refresh_tasks:
            await asyncio.gather(*list(self._refresh_tasks), return_exceptions=True)

    def _schedule_tool_refresh(self) -> None:
        task = asyncio.get_running_loop().create_task(self._refresh_runtime_tools())
        self._refresh_tasks.add(task)
        task.add_done_callback(self._on_refresh_done)

    def _on_refresh_done(self, task: asyncio.Task[None]) -> None:
        self._refresh_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("Runtime tool refresh failed: %s", error_message(error))

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.warning("Extension manager listener failed: %s", error_message(e))

    def _require_entry(self, entry_id: str) -> StoredExtensionEntry:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        raise ExtensionNotFoundError(f"Extension not found: {entry_id}")

    async def _persist(self) -> None:
        await save_extension_entries(self._settings, self._entries)

    async def _install_entry(self, name: str, source: ExtensionSource) -> str:
        entry_id = f"ext.{uuid.uuid4()}"
        trust = derive_trust(entry_id, source)
        now = utc_now()
        entry = StoredExtensionEntry(
            id=entry_id,
            name=name,
            enabled=True,
            source=source,
            trust=trust,
            permissions=default_permissions(trust),
            created_at=now,
            updated_at=now,
        )
        self._entries.append(entry)
        await self._persist()
        await self._try_activate(entry)
        self._notify()
        return entry_id

    async def _try_activate(self, entry: StoredExtensionEntry) -> None:
        try:
            await self.activate_entry(entry)
        except Exception as e:
            message = error_message(e)
            self._last_errors[entry.id] = message
            logger.warning('Failed to load extension "%s": %s', entry.name, message)
        else:
            self._last_errors.pop(entry.id, None)

    async def _cleanup_state(self, state: LoadedExtensionState) -> None:
        """Release everything state owns. Every step runs; failures are raised together."""
        failures: list[str] = []
        state.closed = True

        if state.handle is not None:
            try:
                await state.handle.deactivate()
            except Exception as e:
                failures.append(error_message(e))

        if self._ui is not None:
            try:
                self._ui.clear_widgets(state.entry_id)
            except Exception as e:
                failures.append(error_message(e))

        for unsubscribe in list(state.event_unsubscribers):
            try:
                unsubscribe()
            except Exception as e:
                failures.append(error_message(e))
        state.event_unsubscribers.clear()

        for command_name in state.command_names:
            self._namespace.release_command(command_name, state)
        state.command_names.clear()

        tools_changed = False
        for tool_name in state.tool_names:
            tools_changed = self._namespace.release_tool(tool_name, state) or tools_changed
        state.tool_names.clear()

        if state.inline_url is not None:
            self._importer.inline_registry.revoke_url(state.inline_url)
            state.inline_url = None

        if tools_changed:
            try:
                await self._refresh_runtime_tools()
            except Exception as e:
                failures.append(error_message(e))

        if failures:
            raise ExtensionTeardownError("Extension teardown failed", failures)

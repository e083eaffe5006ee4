"""Execution backends: where an activation actually runs.

HostBackend loads the module in this process through the module loader.
SandboxBackend hands the source and the full host bindings to an external
sandbox activator; the transport behind it is the host's business.
"""

import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol

from exthost.extensions.activation import LoadedExtensionState
from exthost.extensions.api import HostBindings, create_extension_api
from exthost.extensions.contract import LoadedExtensionHandle
from exthost.extensions.errors import ExtensionLoadError
from exthost.extensions.models import ExtensionSource, StoredExtensionEntry
from exthost.extensions.module_loader import ExtensionModuleImporter, load_extension


@dataclass(frozen=True)
class SandboxActivationRequest:
    instance_id: str
    extension_name: str
    source: ExtensionSource
    bindings: HostBindings


SandboxActivator = Callable[[SandboxActivationRequest], Awaitable[LoadedExtensionHandle]]


class ExtensionExecutionBackend(Protocol):
    async def activate(
        self,
        entry: StoredExtensionEntry,
        state: LoadedExtensionState,
        bindings: HostBindings,
    ) -> LoadedExtensionHandle: ...


class HostBackend:
    def __init__(self, importer: ExtensionModuleImporter) -> None:
        self._importer = importer

    async def activate(
        self,
        entry: StoredExtensionEntry,
        state: LoadedExtensionState,
        bindings: HostBindings,
    ) -> LoadedExtensionHandle:
        api = create_extension_api(bindings)
        if entry.source.kind == "inline":
            # Revoked by the manager on teardown.
            state.inline_url = self._importer.inline_registry.create_url(entry.source.code)
            specifier = state.inline_url
        else:
            specifier = entry.source.specifier
        return await load_extension(api, specifier, self._importer)


class SandboxBackend:
    def __init__(self, activator: SandboxActivator | None = None) -> None:
        self._activator = activator

    async def activate(
        self,
        entry: StoredExtensionEntry,
        state: LoadedExtensionState,
        bindings: HostBindings,
    ) -> LoadedExtensionHandle:
        if self._activator is None:
            raise ExtensionLoadError(
                "Sandbox runtime is not available. Disable extensions.sandbox_enabled "
                "to run untrusted extensions in the host runtime."
            )
        request = SandboxActivationRequest(
            instance_id=f"{entry.id}:{uuid.uuid4().hex[:12]}",
            extension_name=entry.name,
            source=entry.source,
            bindings=bindings,
        )
        return await self._activator(request)

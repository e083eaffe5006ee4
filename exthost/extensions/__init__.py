"""Extension runtime: trust model, loader, capability-gated API, runtime manager."""

from exthost.extensions.api import ExtensionAPI, HostBindings, create_extension_api
from exthost.extensions.backends import SandboxActivationRequest, SandboxActivator
from exthost.extensions.config import RuntimeConfig, load_runtime_config
from exthost.extensions.contract import (
    HostAgent,
    HostUI,
    HttpRequestOptions,
    HttpResponse,
    LlmCompletionRequest,
    LlmCompletionResult,
    LlmMessage,
    LoadedExtensionHandle,
    SettingsStore,
)
from exthost.extensions.egress import ExtensionHttpClient
from exthost.extensions.errors import (
    CapabilityDeniedError,
    EgressBlockedError,
    EgressTimeoutError,
    ExtensionError,
    ExtensionLoadError,
    ExtensionNotFoundError,
    ExtensionTeardownError,
    ExtensionValidationError,
    HostUnsupportedError,
    NamespaceConflictError,
    ResponseTooLargeError,
    StorageQuotaError,
)
from exthost.extensions.manager import ExtensionRuntimeManager
from exthost.extensions.models import (
    ExtensionCommand,
    ExtensionRuntimeStatus,
    ExtensionTool,
    InlineSource,
    ModuleSource,
    StoredExtensionEntry,
    ToolResult,
)
from exthost.extensions.module_loader import ExtensionModuleImporter, load_extension
from exthost.extensions.permissions import Capability, ExtensionPermissions, TrustLevel
from exthost.extensions.runtime_mode import RuntimeMode, resolve_runtime_mode

__all__ = [
    "Capability",
    "CapabilityDeniedError",
    "EgressBlockedError",
    "EgressTimeoutError",
    "ExtensionAPI",
    "ExtensionCommand",
    "ExtensionError",
    "ExtensionHttpClient",
    "ExtensionLoadError",
    "ExtensionModuleImporter",
    "ExtensionNotFoundError",
    "ExtensionPermissions",
    "ExtensionRuntimeManager",
    "ExtensionRuntimeStatus",
    "ExtensionTeardownError",
    "ExtensionTool",
    "ExtensionValidationError",
    "HostAgent",
    "HostBindings",
    "HostUI",
    "HostUnsupportedError",
    "HttpRequestOptions",
    "HttpResponse",
    "InlineSource",
    "LlmCompletionRequest",
    "LlmCompletionResult",
    "LlmMessage",
    "LoadedExtensionHandle",
    "ModuleSource",
    "NamespaceConflictError",
    "ResponseTooLargeError",
    "RuntimeConfig",
    "RuntimeMode",
    "SandboxActivationRequest",
    "SandboxActivator",
    "SettingsStore",
    "StorageQuotaError",
    "StoredExtensionEntry",
    "ToolResult",
    "TrustLevel",
    "create_extension_api",
    "load_extension",
    "load_runtime_config",
    "resolve_runtime_mode",
]

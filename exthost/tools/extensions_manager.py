"""extensions_manager: manage runtime extensions from chat."""

from typing import TYPE_CHECKING, Any, Callable, Literal

from pydantic import BaseModel, Field, ValidationError

from exthost.extensions.errors import ExtensionValidationError
from exthost.extensions.models import ExtensionRuntimeStatus, ExtensionTool, ToolResult

if TYPE_CHECKING:
    from exthost.extensions.manager import ExtensionRuntimeManager

TOOL_NAME = "extensions_manager"


class ExtensionsManagerParams(BaseModel):
    action: Literal["list", "install_code", "set_enabled", "set_capability", "reload", "uninstall"] = Field(
        description=(
            "list installed extensions, install_code from Python module text, set_enabled true/false, "
            "set_capability to grant or revoke one capability, reload, or uninstall by id"
        )
    )
    extension_id: str | None = Field(
        default=None, description="Target extension id for set_enabled/set_capability/reload/uninstall."
    )
    name: str | None = Field(default=None, description="Extension display name for install_code.")
    code: str | None = Field(
        default=None,
        description="Single-file Python module source defining activate(api), for install_code.",
    )
    enabled: bool | None = Field(
        default=None,
        description="Desired enabled state for set_enabled; install_code installs disabled when false.",
    )
    capability: str | None = Field(
        default=None, description="Capability tag for set_capability, e.g. tools.register."
    )
    allowed: bool | None = Field(default=None, description="Grant (true) or revoke (false) for set_capability.")
    replace_existing: bool = Field(
        default=True,
        description="When install_code, uninstall existing extensions with the same name first.",
    )


def _require_text(value: str | None, field: str) -> str:
    if value is None:
        raise ExtensionValidationError(f"{field} is required.")
    trimmed = value.strip()
    if not trimmed:
        raise ExtensionValidationError(f"{field} cannot be empty.")
    return trimmed


def _require_bool(value: bool | None, field: str) -> bool:
    if value is None:
        raise ExtensionValidationError(f"{field} must be true or false.")
    return value


def _capability_summary(status: ExtensionRuntimeStatus) -> str:
    caps = [c.value for c in status.effective_capabilities]
    return ", ".join(caps) if caps else "(none)"


def summarize_status(status: ExtensionRuntimeStatus) -> str:
    if not status.enabled:
        state = "disabled"
    elif status.loaded:
        state = "enabled, loaded"
    else:
        state = "enabled, not loaded"
    parts = [
        f"- {status.name} ({status.id})",
        f"  - State: {state}",
        f"  - Source: {status.source_label}",
        f"  - Trust: {status.trust_label}",
        f"  - Runtime: {status.runtime_label}",
        f"  - Effective capabilities: {_capability_summary(status)}",
    ]
    if status.last_error:
        parts.append(f"  - Last error: {status.last_error}")
    return "\n".join(parts)


def _find_status(manager: "ExtensionRuntimeManager", entry_id: str) -> ExtensionRuntimeStatus | None:
    return next((s for s in manager.list() if s.id == entry_id), None)


async def _install_code(manager: "ExtensionRuntimeManager", params: ExtensionsManagerParams) -> str:
    name = _require_text(params.name, "name")
    code = _require_text(params.code, "code")
    existing = [s for s in manager.list() if s.name.lower() == name.lower()]
    if existing and not params.replace_existing:
        ids = ", ".join(s.id for s in existing)
        raise ExtensionValidationError(
            f'Extension name "{name}" already exists ({ids}). Set replace_existing=true to replace it.'
        )
    for status in existing:
        await manager.uninstall(status.id)

    new_id = await manager.install_from_code(name, code)
    if params.enabled is False:
        await manager.set_enabled(new_id, False)

    lines = [f'Installed extension "{name}" as {new_id}.']
    if existing:
        suffix = "" if len(existing) == 1 else "s"
        lines.append(f"Replaced {len(existing)} existing extension{suffix} with the same name.")
    else:
        lines.append("No existing extensions were replaced.")
    installed = _find_status(manager, new_id)
    if installed is not None:
        lines.append(
            f"State: {'enabled' if installed.enabled else 'disabled'} "
            f"({'loaded' if installed.loaded else 'not loaded'})."
        )
        lines.append(f"Effective capabilities: {_capability_summary(installed)}.")
        if installed.last_error:
            lines.append(f"Last error: {installed.last_error}")
    return "\n".join(lines)


async def run_extensions_manager(
    manager: "ExtensionRuntimeManager", params: ExtensionsManagerParams
) -> str:
    """Perform one action and return the text shown to the agent."""
    if params.action == "list":
        statuses = manager.list()
        if not statuses:
            return "No extensions installed."
        return "Installed extensions:\n" + "\n".join(summarize_status(s) for s in statuses)

    if params.action == "install_code":
        return await _install_code(manager, params)

    extension_id = _require_text(params.extension_id, "extension_id")

    if params.action == "set_enabled":
        enabled = _require_bool(params.enabled, "enabled")
        await manager.set_enabled(extension_id, enabled)
        return f"Extension {extension_id} {'enabled' if enabled else 'disabled'}."

    if params.action == "set_capability":
        capability = _require_text(params.capability, "capability")
        allowed = _require_bool(params.allowed, "allowed")
        await manager.set_capability(extension_id, capability, allowed)
        verb = "Granted" if allowed else "Revoked"
        return f"{verb} {capability} for extension {extension_id}."

    if params.action == "reload":
        await manager.reload(extension_id)
        status = _find_status(manager, extension_id)
        if status is not None and status.last_error:
            return f"Reloaded extension {extension_id} with error: {status.last_error}"
        return f"Reloaded extension {extension_id}."

    await manager.uninstall(extension_id)
    return f"Uninstalled extension {extension_id}."


def make_extensions_manager_tool(
    get_manager: Callable[[], "ExtensionRuntimeManager | None"],
) -> ExtensionTool:
    """Host tool letting the agent list and manage extensions in chat."""

    async def execute(
        tool_call_id: str,
        params: Any,
        signal: Any = None,
        on_update: Callable[[Any], None] | None = None,
    ) -> ToolResult:
        manager = get_manager()
        if manager is None:
            raise ExtensionValidationError("Extension manager is not available in this runtime.")
        try:
            parsed = ExtensionsManagerParams.model_validate(params or {})
        except ValidationError as e:
            raise ExtensionValidationError(f"Invalid extensions_manager parameters: {e}") from e
        return ToolResult.text(await run_extensions_manager(manager, parsed))

    return ExtensionTool(
        name=TOOL_NAME,
        label="Extensions Manager",
        description=(
            "List and manage runtime extensions (install from code, enable/disable, grant "
            "capabilities, reload, uninstall). Useful when a user asks you to create an "
            "extension directly in chat."
        ),
        parameters=ExtensionsManagerParams.model_json_schema(),
        execute=execute,
    )

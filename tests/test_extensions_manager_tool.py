"""Tests for the extensions_manager host tool and the runner's manager wiring."""

import logging

import pytest

from exthost.extensions.config import RuntimeConfig
from exthost.extensions.errors import ExtensionNotFoundError, ExtensionValidationError
from exthost.runner import _build_manager, shutdown_extensions
from exthost.settings import get_default_settings
from exthost.storage import MemorySettingsStore
from exthost.tools.extensions_manager import (
    TOOL_NAME,
    ExtensionsManagerParams,
    make_extensions_manager_tool,
    run_extensions_manager,
)

HELLO_CODE = 'def activate(api):\n    api.register_command("hello", lambda args: None)\n'


async def _run(manager, **params) -> str:
    return await run_extensions_manager(manager, ExtensionsManagerParams(**params))


class TestRunExtensionsManager:
    @pytest.mark.asyncio
    async def test_list_empty(self, make_manager) -> None:
        assert await _run(make_manager(), action="list") == "No extensions installed."

    @pytest.mark.asyncio
    async def test_list_builtin(self, make_manager) -> None:
        manager = make_manager()
        await manager.initialize()
        text = await _run(manager, action="list")
        assert text.startswith("Installed extensions:\n- Notes (builtin.notes)")
        assert "  - State: enabled, loaded" in text
        assert "  - Trust: builtin" in text
        assert "  - Runtime: host runtime" in text
        assert "tools.register" in text

    @pytest.mark.asyncio
    async def test_install_code_replaces_same_name(self, make_manager) -> None:
        manager = make_manager()
        first = await _run(manager, action="install_code", name="Hello", code=HELLO_CODE)
        assert "No existing extensions were replaced." in first
        assert "State: enabled (loaded)." in first

        second = await _run(manager, action="install_code", name="hello", code=HELLO_CODE)
        assert "Replaced 1 existing extension with the same name." in second
        assert len(manager.list()) == 1

    @pytest.mark.asyncio
    async def test_install_code_without_replace(self, make_manager) -> None:
        manager = make_manager()
        await _run(manager, action="install_code", name="Hello", code=HELLO_CODE)
        with pytest.raises(ExtensionValidationError, match="already exists"):
            await _run(
                manager, action="install_code", name="Hello", code=HELLO_CODE, replace_existing=False
            )

    @pytest.mark.asyncio
    async def test_install_disabled(self, make_manager) -> None:
        manager = make_manager()
        text = await _run(
            manager, action="install_code", name="Hello", code=HELLO_CODE, enabled=False
        )
        assert "State: disabled (not loaded)." in text
        assert manager.get_registered_commands() == []

    @pytest.mark.asyncio
    async def test_install_reports_sandbox_error(self, make_manager) -> None:
        manager = make_manager(config=RuntimeConfig())
        text = await _run(manager, action="install_code", name="Hello", code=HELLO_CODE)
        assert "Last error: Sandbox runtime is not available" in text

    @pytest.mark.asyncio
    async def test_lifecycle_actions(self, make_manager) -> None:
        manager = make_manager()
        await manager.initialize()

        assert (
            await _run(manager, action="set_enabled", extension_id="builtin.notes", enabled=False)
            == "Extension builtin.notes disabled."
        )
        assert (
            await _run(
                manager,
                action="set_capability",
                extension_id="builtin.notes",
                capability="agent.steer",
                allowed=True,
            )
            == "Granted agent.steer for extension builtin.notes."
        )
        await _run(manager, action="set_enabled", extension_id="builtin.notes", enabled=True)
        assert (
            await _run(manager, action="reload", extension_id="builtin.notes")
            == "Reloaded extension builtin.notes."
        )
        assert (
            await _run(manager, action="uninstall", extension_id="builtin.notes")
            == "Uninstalled extension builtin.notes."
        )
        assert manager.list() == []

    @pytest.mark.asyncio
    async def test_missing_arguments(self, make_manager) -> None:
        manager = make_manager()
        with pytest.raises(ExtensionValidationError, match="extension_id is required"):
            await _run(manager, action="reload")
        with pytest.raises(ExtensionValidationError, match="enabled must be true or false"):
            await _run(manager, action="set_enabled", extension_id="x")
        with pytest.raises(ExtensionNotFoundError):
            await _run(manager, action="uninstall", extension_id="ext.missing")


class TestExtensionsManagerTool:
    def test_tool_shape(self) -> None:
        tool = make_extensions_manager_tool(lambda: None)
        assert tool.name == TOOL_NAME
        assert "action" in tool.parameters["properties"]

    @pytest.mark.asyncio
    async def test_execute(self, make_manager) -> None:
        manager = make_manager()
        tool = make_extensions_manager_tool(lambda: manager)
        result = await tool.execute("call-1", {"action": "list"})
        assert result.content == [{"type": "text", "text": "No extensions installed."}]

    @pytest.mark.asyncio
    async def test_execute_invalid_params(self, make_manager) -> None:
        manager = make_manager()
        tool = make_extensions_manager_tool(lambda: manager)
        with pytest.raises(ExtensionValidationError, match="Invalid extensions_manager parameters"):
            await tool.execute("call-1", {"action": "explode"})

    @pytest.mark.asyncio
    async def test_execute_without_manager(self) -> None:
        tool = make_extensions_manager_tool(lambda: None)
        with pytest.raises(ExtensionValidationError, match="not available"):
            await tool.execute("call-1", {"action": "list"})


class TestRunnerManager:
    @pytest.mark.asyncio
    async def test_build_manager_reserves_tool_name(self) -> None:
        manager = _build_manager(get_default_settings(), MemorySettingsStore())
        assert TOOL_NAME in manager.namespace.reserved_tool_names
        await manager.initialize()
        text = await _run(manager, action="list")
        assert "- Notes (builtin.notes)" in text
        assert "  - State: enabled, loaded" in text
        await manager.deactivate_entry("builtin.notes")
        await manager.flush_tool_refreshes()

    @pytest.mark.asyncio
    async def test_shutdown_continues_past_failing_teardown(self, make_manager, caplog) -> None:
        manager = make_manager()
        await manager.install_from_code(
            "Fragile",
            "def activate(api):\n    def cleanup():\n        raise RuntimeError('stuck')\n    return cleanup\n",
        )
        await manager.install_from_code("Steady", HELLO_CODE)
        assert all(s.loaded for s in manager.list())

        with caplog.at_level(logging.WARNING, logger="exthost.runner"):
            await shutdown_extensions(manager)

        assert [s.loaded for s in manager.list()] == [False, False]
        assert manager.get_registered_commands() == []
        assert 'Failed to tear down extension "Fragile"' in caplog.text
        assert "stuck" in caplog.text

"""Tests for the extension module loader: import policy, activator lookup, cleanup handles."""

from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest

from exthost.extensions.errors import (
    ExtensionLoadError,
    ExtensionTeardownError,
    ExtensionValidationError,
)
from exthost.extensions.inline import InlineSourceRegistry
from exthost.extensions.module_loader import (
    ExtensionModuleImporter,
    collect_activation_cleanups,
    create_loaded_handle,
    discover_bundled_importers,
    get_activator,
    load_extension,
    local_import_candidates,
    module_from_source,
)
from exthost.extensions.source_policy import SourceKind

EXT_CODE = """
calls = []

def activate(api):
    api.activated = True
    return [lambda: calls.append("first"), lambda: calls.append("second")]

def deactivate():
    calls.append("module")
"""


@pytest.fixture
def bundled_dir(tmp_path: Path) -> Path:
    (tmp_path / "hello.py").write_text(
        "def activate(api):\n    api.seen = 'hello'\n", encoding="utf-8"
    )
    (tmp_path / "_private.py").write_text("x = 1\n", encoding="utf-8")
    return tmp_path


class TestDiscovery:
    def test_discovers_public_modules(self, bundled_dir: Path) -> None:
        importers = discover_bundled_importers(bundled_dir)
        assert list(importers) == ["./hello.py"]
        mod = importers["./hello.py"]()
        assert callable(mod.activate)

    def test_missing_directory(self, tmp_path: Path) -> None:
        assert discover_bundled_importers(tmp_path / "nope") == {}

    def test_candidates(self) -> None:
        assert local_import_candidates("./a.py") == ["./a.py", "./a"]
        assert local_import_candidates("./a") == ["./a", "./a.py"]


class TestImporter:
    @pytest.mark.asyncio
    async def test_local_module_without_suffix(self, bundled_dir: Path) -> None:
        importer = ExtensionModuleImporter(bundled=discover_bundled_importers(bundled_dir))
        mod = await importer.import_module("./hello", SourceKind.LOCAL_MODULE)
        assert callable(mod.activate)

    @pytest.mark.asyncio
    async def test_unbundled_local_module_lists_available(self, bundled_dir: Path) -> None:
        importer = ExtensionModuleImporter(bundled=discover_bundled_importers(bundled_dir))
        with pytest.raises(ExtensionLoadError, match=r"Available modules: \./hello\.py"):
            await importer.import_module("./missing.py", SourceKind.LOCAL_MODULE)

    @pytest.mark.asyncio
    async def test_remote_blocked_without_opt_in(self) -> None:
        fetch = MagicMock()
        importer = ExtensionModuleImporter(fetch_remote=fetch)
        with pytest.raises(ExtensionLoadError, match="extensions.allow_remote_urls"):
            await importer.import_module("https://example.com/ext.py", SourceKind.REMOTE_URL)
        fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_remote_with_opt_in(self, httpx_mock, caplog) -> None:
        httpx_mock.add_response(url="https://example.com/ext.py", text="def activate(api):\n    pass\n")
        importer = ExtensionModuleImporter(allow_remote_urls=True)
        with caplog.at_level("WARNING"):
            mod = await importer.import_module("https://example.com/ext.py", SourceKind.REMOTE_URL)
        assert callable(mod.activate)
        assert "explicit opt-in" in caplog.text

    @pytest.mark.asyncio
    async def test_remote_fetch_failure(self, httpx_mock) -> None:
        httpx_mock.add_response(url="https://example.com/ext.py", status_code=404)
        importer = ExtensionModuleImporter(allow_remote_urls=True)
        with pytest.raises(ExtensionLoadError, match="Failed to fetch"):
            await importer.import_module("https://example.com/ext.py", SourceKind.REMOTE_URL)

    @pytest.mark.asyncio
    async def test_blob_resolves_and_revoked_fails(self) -> None:
        registry = InlineSourceRegistry()
        url = registry.create_url("VALUE = 42\n")
        importer = ExtensionModuleImporter(inline_registry=registry)
        mod = await importer.import_module(url, SourceKind.BLOB_URL)
        assert mod.VALUE == 42
        registry.revoke_url(url)
        registry.revoke_url(url)
        with pytest.raises(ExtensionLoadError, match="not available"):
            await importer.import_module(url, SourceKind.BLOB_URL)

    @pytest.mark.asyncio
    async def test_unsupported(self) -> None:
        importer = ExtensionModuleImporter()
        with pytest.raises(ExtensionLoadError, match="Unsupported extension source"):
            await importer.import_module("notes", SourceKind.UNSUPPORTED)

    def test_inline_modules_are_not_shared(self) -> None:
        a = module_from_source("items = []\n", "<a>")
        b = module_from_source("items = []\n", "<a>")
        a.items.append(1)
        assert b.items == []


class TestActivation:
    def test_get_activator_falls_back_to_default(self) -> None:
        fallback = lambda api: None  # noqa: E731
        assert get_activator(SimpleNamespace(default=fallback)) is fallback
        assert get_activator(SimpleNamespace()) is None

    def test_collect_cleanups(self) -> None:
        fn = lambda: None  # noqa: E731
        assert collect_activation_cleanups(None) == []
        assert collect_activation_cleanups(fn) == [fn]
        assert collect_activation_cleanups((fn, fn)) == [fn, fn]
        with pytest.raises(ExtensionValidationError):
            collect_activation_cleanups(42)
        with pytest.raises(ExtensionValidationError, match="invalid cleanup entry"):
            collect_activation_cleanups([fn, "nope"])

    @pytest.mark.asyncio
    async def test_load_inline_runs_cleanups_in_reverse_then_deactivate(self) -> None:
        registry = InlineSourceRegistry()
        url = registry.create_url(EXT_CODE)
        importer = ExtensionModuleImporter(inline_registry=registry)
        api = SimpleNamespace()
        handle = await load_extension(api, url, importer)
        assert api.activated is True

        mod_calls = handle._module_deactivate.__globals__["calls"]
        await handle.deactivate()
        assert mod_calls == ["second", "first", "module"]
        await handle.deactivate()
        assert mod_calls == ["second", "first", "module"]

    @pytest.mark.asyncio
    async def test_missing_activate(self) -> None:
        importer = ExtensionModuleImporter()
        with pytest.raises(ExtensionValidationError, match="must export an activate"):
            await load_extension(SimpleNamespace(), "x = 1\n", importer, SourceKind.INLINE)

    @pytest.mark.asyncio
    async def test_async_activator(self) -> None:
        seen = []

        async def activate(api):
            seen.append(api)

            async def cleanup():
                seen.append("cleanup")

            return cleanup

        handle = await load_extension("api", activate, ExtensionModuleImporter())
        await handle.deactivate()
        assert seen == ["api", "cleanup"]

    @pytest.mark.asyncio
    async def test_teardown_aggregates_failures(self) -> None:
        ran = []

        def bad() -> None:
            raise RuntimeError("cleanup boom")

        def module_deactivate() -> None:
            ran.append("module")
            raise ValueError("deactivate boom")

        handle = create_loaded_handle([lambda: ran.append("good"), bad], module_deactivate)
        with pytest.raises(ExtensionTeardownError) as excinfo:
            await handle.deactivate()
        assert ran == ["good", "module"]
        assert excinfo.value.failures == ["cleanup boom", "deactivate boom"]
        assert str(excinfo.value).startswith("Extension cleanup failed:\n- cleanup boom")

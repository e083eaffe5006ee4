"""Shared fakes for extension runtime tests: host agent, host UI, manager factory."""

from pathlib import Path
from typing import Any, Callable

import pytest

from exthost.extensions.config import RuntimeConfig
from exthost.extensions.inline import InlineSourceRegistry
from exthost.extensions.manager import ExtensionRuntimeManager
from exthost.extensions.module_loader import ExtensionModuleImporter, discover_bundled_importers
from exthost.storage import MemorySettingsStore

BUNDLED_DIR = Path(__file__).resolve().parent.parent / "exthost" / "bundled"


class FakeAgent:
    def __init__(self, session_id: str | None = "session-1") -> None:
        self.session_id = session_id
        self.handlers: list[Callable[[Any], None]] = []
        self.appended: list[dict] = []
        self.steered: list[dict] = []
        self.followed_up: list[dict] = []
        self.fail_unsubscribe = False

    def subscribe(self, handler: Callable[[Any], None]) -> Callable[[], None]:
        self.handlers.append(handler)

        def unsubscribe() -> None:
            if self.fail_unsubscribe:
                raise RuntimeError("unsubscribe exploded")
            if handler in self.handlers:
                self.handlers.remove(handler)

        return unsubscribe

    def emit(self, event: Any) -> None:
        for handler in list(self.handlers):
            handler(event)

    def append_message(self, message: dict) -> None:
        self.appended.append(message)

    def steer(self, message: dict) -> None:
        self.steered.append(message)

    def follow_up(self, message: dict) -> None:
        self.followed_up.append(message)


class FakeUI:
    def __init__(self) -> None:
        self.overlays: dict[str, Any] = {}
        self.widgets: dict[str, Any] = {}
        self.toasts: list[str] = []
        self.clipboard: list[str] = []
        self.downloads: list[tuple[str, str, str | None]] = []
        self.cleared: list[str] = []

    def show_overlay(self, owner_id: str, content: Any) -> None:
        self.overlays[owner_id] = content

    def dismiss_overlay(self, owner_id: str) -> None:
        self.overlays.pop(owner_id, None)

    def show_widget(self, owner_id: str, content: Any) -> None:
        self.widgets[owner_id] = content

    def dismiss_widget(self, owner_id: str) -> None:
        self.widgets.pop(owner_id, None)

    def clear_widgets(self, owner_id: str) -> None:
        self.cleared.append(owner_id)
        self.widgets.pop(owner_id, None)

    def toast(self, message: str) -> None:
        self.toasts.append(message)

    async def write_clipboard(self, text: str) -> None:
        self.clipboard.append(text)

    def download_file(self, filename: str, content: str, mime_type: str | None) -> None:
        self.downloads.append((filename, content, mime_type))


class RefreshCounter:
    def __init__(self) -> None:
        self.calls = 0
        self.error: Exception | None = None

    async def __call__(self) -> None:
        self.calls += 1
        if self.error is not None:
            raise self.error


@pytest.fixture
def settings_store() -> MemorySettingsStore:
    return MemorySettingsStore()


@pytest.fixture
def agent() -> FakeAgent:
    return FakeAgent()


@pytest.fixture
def ui() -> FakeUI:
    return FakeUI()


@pytest.fixture
def refresh() -> RefreshCounter:
    return RefreshCounter()


@pytest.fixture
def make_manager(
    settings_store: MemorySettingsStore, agent: FakeAgent, ui: FakeUI, refresh: RefreshCounter
) -> Callable[..., ExtensionRuntimeManager]:
    """Build a manager with sandboxing off, so inline code runs in the host runtime."""

    def _make(**overrides: Any) -> ExtensionRuntimeManager:
        config = overrides.pop("config", None) or RuntimeConfig(sandbox_enabled=False)
        importer = overrides.pop("importer", None) or ExtensionModuleImporter(
            bundled=discover_bundled_importers(BUNDLED_DIR),
            inline_registry=InlineSourceRegistry(),
        )
        kwargs: dict[str, Any] = {
            "settings": settings_store,
            "get_active_agent": lambda: agent,
            "refresh_runtime_tools": refresh,
            "reserved_tool_names": {"read_file"},
            "config": config,
            "ui": ui,
            "importer": importer,
        }
        kwargs.update(overrides)
        return ExtensionRuntimeManager(**kwargs)

    return _make

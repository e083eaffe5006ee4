"""Entry point for a headless extension host: load the registry, activate, report status."""

import asyncio
import logging
from pathlib import Path

from exthost.extensions import ExtensionRuntimeManager, ExtensionTeardownError, load_runtime_config
from exthost.logging_config import setup_logging
from exthost.settings import get_setting, load_settings
from exthost.storage import SqliteSettingsStore
from exthost.tools.extensions_manager import TOOL_NAME, ExtensionsManagerParams, run_extensions_manager

logger = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _build_manager(settings: dict, store: SqliteSettingsStore) -> ExtensionRuntimeManager:
    config = load_runtime_config(settings)

    async def refresh_runtime_tools() -> None:
        logger.info("Extension tools changed")

    return ExtensionRuntimeManager(
        settings=store,
        get_active_agent=lambda: None,
        refresh_runtime_tools=refresh_runtime_tools,
        reserved_tool_names={TOOL_NAME},
        config=config,
    )


async def shutdown_extensions(manager: ExtensionRuntimeManager) -> None:
    """Tear down every active extension. One failing teardown does not stop the rest."""
    for status in manager.list():
        try:
            await manager.deactivate_entry(status.id)
        except ExtensionTeardownError as e:
            logger.warning('Failed to tear down extension "%s": %s', status.name, e)
    await manager.flush_tool_refreshes()


async def main_async() -> None:
    settings = load_settings()
    setup_logging(_PROJECT_ROOT, settings)
    db_path = _PROJECT_ROOT / get_setting(settings, "settings_store.db_path", "data/settings.db")
    store = SqliteSettingsStore(db_path)
    try:
        manager = _build_manager(settings, store)
        await manager.initialize()
        print(await run_extensions_manager(manager, ExtensionsManagerParams(action="list")))
        await shutdown_extensions(manager)
    finally:
        await store.close()


def main() -> None:
    asyncio.run(main_async())

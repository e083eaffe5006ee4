"""Extension module loader: resolve a source to a module, activate it, return a handle.

An extension module exposes activate(api) (or default(api)) and optionally
deactivate(). activate may return nothing, one cleanup callable, or a list of
cleanup callables; cleanups run in reverse order on teardown, followed by the
module-level deactivate.
"""

import importlib.util
import inspect
import logging
import sys
import types
import uuid
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Awaitable, Callable

import httpx

from exthost.extensions.contract import LoadedExtensionHandle
from exthost.extensions.errors import (
    ExtensionLoadError,
    ExtensionTeardownError,
    ExtensionValidationError,
    error_message,
)
from exthost.extensions.inline import InlineSourceRegistry
from exthost.extensions.source_policy import (
    ALLOW_REMOTE_URLS_SETTING,
    SourceKind,
    classify_extension_source,
)

logger = logging.getLogger(__name__)

ModuleImporter = Callable[[], types.ModuleType]
ExtensionCleanup = Callable[[], Any]
Activator = Callable[[Any], Any]
RemoteSourceFetcher = Callable[[str], Awaitable[str]]

_REMOTE_FETCH_TIMEOUT = 15.0


def _exec_module_from_file(path: Path, module_name: str) -> types.ModuleType:
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load {path}")
    mod = importlib.util.module_from_spec(spec)
    sys.modules[spec.name] = mod
    spec.loader.exec_module(mod)
    return mod


def module_from_source(code: str, origin: str) -> types.ModuleType:
    """Execute source text as a fresh, unshared module."""
    module_name = f"exthost_ext_{uuid.uuid4().hex}"
    mod = types.ModuleType(module_name)
    mod.__file__ = origin
    compiled = compile(code, origin, "exec")
    sys.modules[module_name] = mod
    try:
        exec(compiled, mod.__dict__)
    finally:
        sys.modules.pop(module_name, None)
    return mod


def discover_bundled_importers(directory: Path) -> dict[str, ModuleImporter]:
    """Enumerate ./<name>.py importers for every bundled module in directory."""
    importers: dict[str, ModuleImporter] = {}
    if not directory.is_dir():
        return importers
    for py_file in sorted(directory.glob("*.py")):
        if py_file.name.startswith("_"):
            continue

        def importer(path: Path = py_file) -> types.ModuleType:
            return _exec_module_from_file(path, f"exthost_bundled_{path.stem}")

        importers[f"./{py_file.name}"] = importer
    return importers


def local_import_candidates(specifier: str) -> list[str]:
    """Specifier as given, plus the variant with or without the .py suffix."""
    normalized = specifier.strip()
    candidates = [normalized]
    if normalized.endswith(".py"):
        candidates.append(normalized[:-3])
    else:
        candidates.append(f"{normalized}.py")
    return candidates


async def fetch_remote_source(url: str) -> str:
    """Download remote extension source text."""
    async with httpx.AsyncClient(timeout=_REMOTE_FETCH_TIMEOUT, follow_redirects=True) as client:
        resp = await client.get(url)
        resp.raise_for_status()
        return resp.text


class ExtensionModuleImporter:
    """Resolve a classified specifier to a module. Local modules come only from the bundled catalog."""

    def __init__(
        self,
        bundled: Mapping[str, ModuleImporter] | None = None,
        inline_registry: InlineSourceRegistry | None = None,
        allow_remote_urls: bool = False,
        fetch_remote: RemoteSourceFetcher | None = None,
    ) -> None:
        self._bundled = dict(bundled or {})
        self._inline_registry = inline_registry or InlineSourceRegistry()
        self._allow_remote_urls = allow_remote_urls
        self._fetch_remote = fetch_remote or fetch_remote_source

    @property
    def inline_registry(self) -> InlineSourceRegistry:
        return self._inline_registry

    @property
    def bundled_specifiers(self) -> list[str]:
        return sorted(self._bundled)

    async def import_module(self, specifier: str, kind: SourceKind) -> types.ModuleType:
        if kind == SourceKind.INLINE:
            return module_from_source(specifier, "<inline extension>")

        if kind == SourceKind.LOCAL_MODULE:
            for candidate in local_import_candidates(specifier):
                importer = self._bundled.get(candidate)
                if importer is not None:
                    return importer()
            available = ", ".join(self.bundled_specifiers) or "(none)"
            raise ExtensionLoadError(
                f'Local extension module "{specifier}" is not bundled. '
                f"Available modules: {available}. "
                "Use a bundled module, paste code, or a remote URL (with explicit opt-in)."
            )

        if kind == SourceKind.BLOB_URL:
            code = self._inline_registry.resolve(specifier)
            if code is None:
                raise ExtensionLoadError(f'Inline extension source "{specifier}" is not available')
            return module_from_source(code, f"<{specifier}>")

        if kind == SourceKind.REMOTE_URL:
            if not self._allow_remote_urls:
                raise ExtensionLoadError(
                    "Remote extension URL imports are disabled by default. "
                    f"Set {ALLOW_REMOTE_URLS_SETTING}: true in settings to opt in (unsafe)."
                )
            logger.warning("Loading remote extension URL due to explicit opt-in: %s", specifier)
            try:
                code = await self._fetch_remote(specifier)
            except httpx.HTTPError as e:
                raise ExtensionLoadError(f"Failed to fetch extension {specifier}: {e}") from e
            return module_from_source(code, specifier)

        raise ExtensionLoadError(
            f'Unsupported extension source "{specifier}". Use a bundled module (./name.py), '
            "inline code, or a remote URL (with explicit opt-in)."
        )


def _export(mod: Any, name: str) -> Any:
    if isinstance(mod, Mapping):
        return mod.get(name)
    return getattr(mod, name, None)


def get_activator(mod: Any) -> Activator | None:
    """activate export, falling back to default."""
    activate = _export(mod, "activate")
    if callable(activate):
        return activate
    fallback = _export(mod, "default")
    if callable(fallback):
        return fallback
    return None


def get_deactivator(mod: Any) -> Callable[[], Any] | None:
    deactivate = _export(mod, "deactivate")
    return deactivate if callable(deactivate) else None


def collect_activation_cleanups(result: Any) -> list[ExtensionCleanup]:
    if result is None:
        return []
    if callable(result):
        return [result]
    if not isinstance(result, (list, tuple)):
        raise ExtensionValidationError(
            "activate(api) must return None, a cleanup function, or a list of cleanup functions"
        )
    cleanups: list[ExtensionCleanup] = []
    for value in result:
        if not callable(value):
            raise ExtensionValidationError(
                "activate(api) returned an invalid cleanup entry; expected a callable"
            )
        cleanups.append(value)
    return cleanups


async def _call_maybe_async(fn: Callable[[], Any]) -> None:
    result = fn()
    if inspect.isawaitable(result):
        await result


class _ModuleHandle:
    """Runs cleanups last-in first-out, then the module's deactivate. Once."""

    def __init__(
        self,
        cleanups: list[ExtensionCleanup],
        module_deactivate: Callable[[], Any] | None,
    ) -> None:
        self._cleanups = list(cleanups)
        self._module_deactivate = module_deactivate
        self._deactivated = False

    async def deactivate(self) -> None:
        if self._deactivated:
            return
        self._deactivated = True
        failures: list[str] = []
        for cleanup in reversed(self._cleanups):
            try:
                await _call_maybe_async(cleanup)
            except Exception as e:
                failures.append(error_message(e))
        if self._module_deactivate is not None:
            try:
                await _call_maybe_async(self._module_deactivate)
            except Exception as e:
                failures.append(error_message(e))
        if failures:
            raise ExtensionTeardownError("Extension cleanup failed", failures)


def create_loaded_handle(
    cleanups: list[ExtensionCleanup],
    module_deactivate: Callable[[], Any] | None = None,
) -> LoadedExtensionHandle:
    return _ModuleHandle(cleanups, module_deactivate)


async def load_extension(
    api: Any,
    source: str | Activator,
    importer: ExtensionModuleImporter,
    source_kind: SourceKind | None = None,
) -> LoadedExtensionHandle:
    """Import (if needed) and activate an extension. Returns its lifecycle handle."""
    module_deactivate: Callable[[], Any] | None = None
    if callable(source):
        activate: Activator | None = source
    else:
        specifier = source.strip()
        kind = source_kind or classify_extension_source(specifier)
        mod = await importer.import_module(specifier, kind)
        activate = get_activator(mod)
        if activate is None:
            label = "inline code" if kind == SourceKind.INLINE else specifier
            raise ExtensionValidationError(
                f'Extension module "{label}" must export an activate(api) function'
            )
        module_deactivate = get_deactivator(mod)

    result = activate(api)
    if inspect.isawaitable(result):
        result = await result
    cleanups = collect_activation_cleanups(result)
    return create_loaded_handle(cleanups, module_deactivate)

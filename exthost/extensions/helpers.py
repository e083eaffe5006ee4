"""Small normalization helpers shared by the runtime manager and its bridges."""

import time
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from exthost.extensions.errors import ExtensionValidationError
from exthost.extensions.models import InlineSource, ModuleSource

EXTENSION_LLM_SESSION_SEGMENT = "ext-llm"


def normalize_extension_name(name: str) -> str:
    trimmed = name.strip() if isinstance(name, str) else ""
    if not trimmed:
        raise ExtensionValidationError("Extension name cannot be empty")
    return trimmed


def normalize_inline_code(code: str) -> str:
    if not isinstance(code, str) or not code.strip():
        raise ExtensionValidationError("Extension code cannot be empty")
    return code


def normalize_module_specifier(specifier: str) -> str:
    trimmed = specifier.strip() if isinstance(specifier, str) else ""
    if not trimmed:
        raise ExtensionValidationError("Module specifier cannot be empty")
    return trimmed


def normalize_remote_url(url: str) -> str:
    try:
        parsed = urlsplit(url.strip())
    except (AttributeError, ValueError):
        raise ExtensionValidationError("Invalid URL") from None
    if parsed.scheme.lower() not in ("http", "https"):
        raise ExtensionValidationError("Extension URL must use http:// or https://")
    if not parsed.netloc:
        raise ExtensionValidationError("Invalid URL")
    return urlunsplit(parsed)


def describe_extension_source(source: ModuleSource | InlineSource) -> str:
    if source.kind == "module":
        return source.specifier
    lines = len(source.code.split("\n"))
    return f"inline code ({len(source.code)} chars, {lines} lines)"


def create_extension_agent_message(extension_name: str, label: str, content: str) -> dict[str, Any]:
    """User-role message attributed to an extension, in the host agent's message shape."""
    text = content.strip() if isinstance(content, str) else ""
    if not text:
        raise ExtensionValidationError(f"{label} cannot be empty.")
    return {
        "role": "user",
        "content": [{"type": "text", "text": f"[Extension {extension_name}]\n{text}"}],
        "timestamp": int(time.time() * 1000),
    }


def extension_llm_session_id(agent_session_id: str | None, extension_id: str) -> str:
    """Extension-scoped key for side llm.complete calls, separate from the main session."""
    session = (agent_session_id or "").strip()
    ext_segment = extension_id.strip() or "unknown-extension"
    if not session:
        return f"{EXTENSION_LLM_SESSION_SEGMENT}:{ext_segment}"
    return f"{session}::{EXTENSION_LLM_SESSION_SEGMENT}:{ext_segment}"

"""Security policy for extension module sources.

Kept intentionally small:
- local module specifiers (./, ../, /) resolve against the bundled catalog
- blob: handles point at inline code registered in-process
- remote http(s) URLs are blocked unless the host opts in explicitly
"""

from enum import Enum
from typing import Any
from urllib.parse import urlsplit

LOCAL_SPECIFIER_PREFIXES = ("./", "../", "/")
BLOB_URL_PREFIX = "blob:"
REMOTE_SCHEMES = frozenset({"http", "https"})

ALLOW_REMOTE_URLS_SETTING = "extensions.allow_remote_urls"


class SourceKind(str, Enum):
    LOCAL_MODULE = "local-module"
    INLINE = "inline"
    REMOTE_URL = "remote-url"
    BLOB_URL = "blob-url"
    UNSUPPORTED = "unsupported"


def classify_extension_source(source: str) -> SourceKind:
    """Classify a string specifier into local/blob/remote/unsupported."""
    specifier = source.strip()
    if not specifier:
        return SourceKind.UNSUPPORTED
    if specifier.startswith(LOCAL_SPECIFIER_PREFIXES):
        return SourceKind.LOCAL_MODULE
    if specifier.startswith(BLOB_URL_PREFIX):
        return SourceKind.BLOB_URL
    try:
        parsed = urlsplit(specifier)
    except ValueError:
        return SourceKind.UNSUPPORTED
    if parsed.scheme.lower() in REMOTE_SCHEMES and parsed.netloc:
        return SourceKind.REMOTE_URL
    return SourceKind.UNSUPPORTED


def is_remote_opt_in(raw: Any) -> bool:
    """Parse the explicit unsafe opt-in flag for remote extension URLs."""
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        return raw.strip().lower() in ("1", "true")
    return False

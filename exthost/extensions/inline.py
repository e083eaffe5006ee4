"""In-process registry for inline extension code, addressed by blob: handles."""

import logging
import uuid

from exthost.extensions.source_policy import BLOB_URL_PREFIX

logger = logging.getLogger(__name__)


class InlineSourceRegistry:
    """Mint, resolve and revoke blob:<uuid> handles for inline code."""

    def __init__(self) -> None:
        self._sources: dict[str, str] = {}

    def create_url(self, code: str) -> str:
        url = f"{BLOB_URL_PREFIX}{uuid.uuid4()}"
        self._sources[url] = code
        return url

    def resolve(self, url: str) -> str | None:
        return self._sources.get(url)

    def revoke_url(self, url: str) -> None:
        """Forget a handle. Revoking twice is a no-op."""
        if self._sources.pop(url, None) is not None:
            logger.debug("Revoked inline source %s", url)

    def __contains__(self, url: object) -> bool:
        return url in self._sources

    def __len__(self) -> int:
        return len(self._sources)

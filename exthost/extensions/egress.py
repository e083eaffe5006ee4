"""Outbound HTTP for extensions: SSRF screening, bounded timeouts, capped bodies.

Every extension http.fetch goes through ExtensionHttpClient. Blocked targets
fail before any socket is opened. Redirects are not followed, so a public
host cannot bounce a request onto an internal address.
"""

import asyncio
import ipaddress
import logging
import socket
from urllib.parse import quote, urlsplit

import httpx

from exthost.extensions.config import HttpEgressConfig
from exthost.extensions.contract import HttpRequestOptions, HttpResponse
from exthost.extensions.errors import (
    EgressBlockedError,
    EgressTimeoutError,
    ExtensionError,
    ExtensionValidationError,
    ResponseTooLargeError,
)

logger = logging.getLogger(__name__)

ALLOWED_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD"})
_BLOCKED_SUFFIXES = (".localhost", ".local")

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


def is_blocked_address(address: IPAddress) -> bool:
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped
    return (
        address.is_unspecified
        or address.is_loopback
        or address.is_link_local
        or address.is_private
        or address.is_reserved
    )


def _parse_address(host: str) -> IPAddress | None:
    candidate = host.split("%", 1)[0]
    try:
        return ipaddress.ip_address(candidate)
    except ValueError:
        pass
    # Shorthand IPv4 forms such as 127.1 or 2130706433.
    if candidate and all(ch in "0123456789abcdefx." for ch in candidate) and any(
        ch.isdigit() for ch in candidate
    ):
        try:
            return ipaddress.IPv4Address(socket.inet_aton(candidate))
        except OSError:
            return None
    return None


def is_blocked_hostname(hostname: str) -> bool:
    """True for local names and for literal private, loopback or link-local addresses."""
    host = hostname.strip().lower().rstrip(".")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    if not host:
        return True
    if host == "localhost" or host.endswith(_BLOCKED_SUFFIXES):
        return True
    address = _parse_address(host)
    return address is not None and is_blocked_address(address)


def validate_egress_url(url: str) -> tuple[str, str, int]:
    """Return (url, hostname, port) for an allowed target. Raises EgressBlockedError."""
    if not isinstance(url, str) or not url.strip():
        raise ExtensionValidationError("http.fetch url cannot be empty.")
    target = url.strip()
    try:
        parsed = urlsplit(target)
        port = parsed.port
    except ValueError:
        raise EgressBlockedError(f"Invalid URL: {target}") from None
    scheme = parsed.scheme.lower()
    if scheme not in ("http", "https"):
        raise EgressBlockedError(f"Only http:// and https:// URLs are allowed, got {scheme or 'none'}://")
    hostname = parsed.hostname or ""
    if is_blocked_hostname(hostname):
        raise EgressBlockedError(f"Blocked request to private or local host: {hostname or '(empty)'}")
    if port is None:
        port = 443 if scheme == "https" else 80
    return target, hostname, port


def clamp_timeout_ms(timeout_ms: int | None, config: HttpEgressConfig) -> int:
    if timeout_ms is None or isinstance(timeout_ms, bool):
        value = config.default_timeout_ms
    else:
        try:
            value = int(timeout_ms)
        except (TypeError, ValueError):
            value = config.default_timeout_ms
    return max(1, min(value, config.max_timeout_ms))


def normalize_method(method: str | None) -> str:
    value = (method or "GET").strip().upper()
    if value not in ALLOWED_METHODS:
        raise ExtensionValidationError(
            f"Unsupported HTTP method {value}; use one of {', '.join(sorted(ALLOWED_METHODS))}"
        )
    return value


def build_proxied_url(proxy_url: str, target: str) -> str:
    return f"{proxy_url.rstrip('/')}/?url={quote(target, safe='')}"


class ExtensionHttpClient:
    """Mediated fetch for extensions. One instance per runtime manager."""

    def __init__(
        self,
        config: HttpEgressConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or HttpEgressConfig()
        self._transport = transport

    @property
    def config(self) -> HttpEgressConfig:
        return self._config

    async def _check_resolved(self, hostname: str, port: int) -> None:
        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(hostname, port, type=socket.SOCK_STREAM)
        except socket.gaierror as e:
            raise EgressBlockedError(f"Could not resolve host {hostname}: {e}") from e
        for info in infos:
            address = _parse_address(str(info[4][0]))
            if address is not None and is_blocked_address(address):
                raise EgressBlockedError(
                    f"Blocked request to {hostname}: resolves to private address {address}"
                )

    async def fetch(self, url: str, options: HttpRequestOptions | None = None) -> HttpResponse:
        opts = options or HttpRequestOptions()
        target, hostname, port = validate_egress_url(url)
        method = normalize_method(opts.method)
        timeout_ms = clamp_timeout_ms(opts.timeout_ms, self._config)
        if self._config.resolve_dns:
            await self._check_resolved(hostname, port)

        request_url = target
        if self._config.proxy_url:
            request_url = build_proxied_url(self._config.proxy_url, target)

        max_bytes = self._config.max_body_bytes
        logger.debug("Extension fetch %s %s (timeout %d ms)", method, target, timeout_ms)
        try:
            async with httpx.AsyncClient(
                timeout=timeout_ms / 1000,
                transport=self._transport,
                follow_redirects=False,
            ) as client:
                async with client.stream(
                    method,
                    request_url,
                    headers=dict(opts.headers or {}),
                    content=opts.body,
                ) as resp:
                    declared = resp.headers.get("content-length")
                    if declared and declared.isdigit() and int(declared) > max_bytes:
                        raise ResponseTooLargeError(
                            f"Response from {target} exceeds {max_bytes} bytes"
                        )
                    chunks: list[bytes] = []
                    total = 0
                    async for chunk in resp.aiter_bytes():
                        total += len(chunk)
                        if total > max_bytes:
                            raise ResponseTooLargeError(
                                f"Response from {target} exceeds {max_bytes} bytes"
                            )
                        chunks.append(chunk)
                    encoding = resp.charset_encoding or "utf-8"
                    return HttpResponse(
                        status=resp.status_code,
                        status_text=resp.reason_phrase,
                        headers=dict(resp.headers),
                        body=b"".join(chunks).decode(encoding, errors="replace"),
                    )
        except httpx.TimeoutException as e:
            raise EgressTimeoutError(f"Request to {target} timed out after {timeout_ms} ms") from e
        except httpx.HTTPError as e:
            raise ExtensionError(f"Request to {target} failed: {e}") from e

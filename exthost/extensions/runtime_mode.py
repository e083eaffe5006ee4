"""Runtime mode resolver: where an extension's code executes."""

from enum import Enum

from exthost.extensions.permissions import TrustLevel


class RuntimeMode(str, Enum):
    HOST = "host"
    SANDBOX_IFRAME = "sandbox-iframe"


_SANDBOX_CANDIDATES = frozenset({TrustLevel.INLINE_CODE, TrustLevel.REMOTE_URL})

_MODE_LABELS: dict[RuntimeMode, str] = {
    RuntimeMode.HOST: "host runtime",
    RuntimeMode.SANDBOX_IFRAME: "sandbox iframe",
}


def is_sandbox_candidate(trust: TrustLevel) -> bool:
    return trust in _SANDBOX_CANDIDATES


def resolve_runtime_mode(trust: TrustLevel, sandbox_enabled: bool) -> RuntimeMode:
    """Untrusted sources go to the sandbox only when the sandbox feature is on."""
    if sandbox_enabled and is_sandbox_candidate(trust):
        return RuntimeMode.SANDBOX_IFRAME
    return RuntimeMode.HOST


def describe_runtime_mode(mode: RuntimeMode) -> str:
    return _MODE_LABELS[mode]

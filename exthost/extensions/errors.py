"""Exception classes for the extension runtime."""


class ExtensionError(Exception):
    """Base exception for all extension-related errors."""


class ExtensionValidationError(ExtensionError, ValueError):
    """Invalid names, malformed module exports, bad tool definitions."""


class CapabilityDeniedError(ExtensionError, PermissionError):
    """An extension called an API member its permissions do not grant."""

    def __init__(self, capability: str, message: str) -> None:
        super().__init__(message)
        self.capability = capability


class HostUnsupportedError(ExtensionError):
    """The host did not wire the callback an API member needs."""


class NamespaceConflictError(ExtensionError):
    """A command or tool name is reserved or owned by someone else."""


class ExtensionLoadError(ExtensionError):
    """The extension source could not be resolved to a module."""


class ExtensionNotFoundError(ExtensionError, KeyError):
    """No stored entry with the given id."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class ExtensionTeardownError(ExtensionError):
    """One or more teardown steps failed. All steps still ran."""

    def __init__(self, prefix: str, failures: list[str]) -> None:
        self.failures = list(failures)
        super().__init__(prefix + ":\n- " + "\n- ".join(self.failures))


class EgressBlockedError(ExtensionError):
    """Outbound request targets a blocked scheme or host."""


class ResponseTooLargeError(ExtensionError):
    """Outbound response body exceeded the configured limit."""


class StorageQuotaError(ExtensionError):
    """Per-extension storage quota exceeded."""


def error_message(error: BaseException) -> str:
    """Return a non-empty message for logging and last_error."""
    message = str(error).strip()
    return message or type(error).__name__


class EgressTimeoutError(ExtensionError):
    """Outbound request did not finish within its bounded timeout."""

"""Runtime configuration for the extension manager, read from the extensions: settings section."""

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from exthost.extensions.source_policy import is_remote_opt_in
from exthost.settings import get_setting


class HttpEgressConfig(BaseModel):
    """Limits for extension http.fetch."""

    default_timeout_ms: int = 15_000
    max_timeout_ms: int = 30_000
    max_body_bytes: int = 1_000_000
    proxy_url: str | None = None
    resolve_dns: bool = False

    @model_validator(mode="after")
    def _validate_timeouts(self) -> "HttpEgressConfig":
        if self.max_timeout_ms < 1 or self.default_timeout_ms < 1:
            raise ValueError("HTTP timeouts must be positive")
        if self.max_body_bytes < 1:
            raise ValueError("max_body_bytes must be positive")
        return self


class StorageConfig(BaseModel):
    max_bytes_per_extension: int = 1_000_000


class RuntimeConfig(BaseModel):
    sandbox_enabled: bool = True
    allow_remote_urls: bool = False
    # Host kill-switch. False bypasses every capability check.
    capability_gate_enabled: bool = True
    bundled_dir: Path | None = None
    http: HttpEgressConfig = Field(default_factory=HttpEgressConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @field_validator("allow_remote_urls", mode="before")
    @classmethod
    def _parse_opt_in(cls, value: Any) -> bool:
        return is_remote_opt_in(value)


def load_runtime_config(settings: dict[str, Any]) -> RuntimeConfig:
    """Build RuntimeConfig from loaded settings (see exthost.settings)."""
    section = get_setting(settings, "extensions", {}) or {}
    return RuntimeConfig.model_validate(section)

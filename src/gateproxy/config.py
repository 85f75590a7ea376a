"""Configuration management for the gateproxy forwarding proxy."""

from typing import Any

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TIMEOUT_MS = 30000


def split_csv(value: str) -> tuple[str, ...]:
    """Split a comma-separated setting, trimming whitespace and dropping empties."""
    return tuple(item.strip() for item in value.split(",") if item.strip())


class ProxyConfig(BaseSettings):
    """Immutable configuration snapshot for the forwarding proxy.

    Values come from the environment first and from a ``.env`` file in the
    working directory as a fallback. Missing values degrade to safe
    defaults: an empty allowlist denies every target, an empty API key
    disables caller authentication.
    """

    model_config = SettingsConfigDict(
        env_prefix="PROXY_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    # Pipeline settings
    allowed_hosts: str = Field(
        default="",
        validation_alias=AliasChoices("PROXY_ALLOWED_HOSTS", "ALLOWED_HOSTS"),
        description="Comma-separated exact hostnames or *.suffix wildcards",
    )
    api_key: str = Field(
        default="",
        validation_alias=AliasChoices("PROXY_API_KEY", "API_KEY"),
        description="Shared secret required from callers (empty disables auth)",
    )
    timeout_ms: int = Field(
        default=DEFAULT_TIMEOUT_MS,
        description="Deadline for the whole upstream exchange in milliseconds",
    )

    # Resource Limits
    max_json_bytes: int = Field(
        default=5 * 1024 * 1024,  # 5MB
        description="Maximum size of a JSON request body buffered for re-serialization",
        ge=1024,
    )

    # Redirect policy
    follow_redirects: bool = Field(
        default=True,
        description="Follow upstream redirects",
    )
    revalidate_redirects: bool = Field(
        default=False,
        description="Re-check every redirect hop against the host allowlist",
    )

    # Server Configuration
    host: str = Field(
        default="127.0.0.1",
        description="Host to bind the proxy server to",
    )
    port: int = Field(
        default=9000,
        description="Port to bind the proxy server to",
        ge=1,
        le=65535,
    )
    cors_allow_origins: str = Field(
        default="*",
        description="Comma-separated origins allowed by the CORS middleware",
    )

    # Logging Configuration
    logging_mode: str = Field(
        default="off",
        description="Logging mode: off, metadata, or debug"
    )

    @field_validator("timeout_ms", mode="before")
    @classmethod
    def coerce_timeout(cls, v: Any) -> int:
        """Fall back to the default timeout for non-numeric or non-positive values."""
        try:
            value = int(str(v).strip())
        except (TypeError, ValueError):
            return DEFAULT_TIMEOUT_MS
        return value if value > 0 else DEFAULT_TIMEOUT_MS

    @field_validator("logging_mode")
    @classmethod
    def validate_logging_mode(cls, v: str) -> str:
        """Validate logging mode is one of the allowed values."""
        allowed = {"off", "metadata", "debug"}
        if v not in allowed:
            raise ValueError(f"logging_mode must be one of: {allowed}")
        return v

    @property
    def allowed_host_patterns(self) -> tuple[str, ...]:
        """Allowed host patterns in configured order."""
        return split_csv(self.allowed_hosts)

    @property
    def cors_origins(self) -> list[str]:
        return list(split_csv(self.cors_allow_origins))

    @property
    def auth_required(self) -> bool:
        return bool(self.api_key)

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000


def resolve_config() -> ProxyConfig:
    """Resolve a fresh configuration snapshot from the environment."""
    return ProxyConfig()

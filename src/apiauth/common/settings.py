"""Configuration management using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="APIAUTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Protocol
    validity_window_minutes: float = Field(
        default=5.0,
        description="Allowed clock skew (minutes) between the request Date and server time",
    )
    valid_content_media_types: tuple[str, ...] = Field(
        default=(
            "application/x-www-form-urlencoded",
            "application/json",
            "text/plain",
        ),
        description="Media types accepted for signed request bodies",
    )
    authentication_scheme: str = Field(
        default="ApiAuth",
        description="Authorization scheme token carrying the signature",
    )
    username_header: str = Field(
        default="X-ApiAuth-Username",
        description="Header carrying the principal name",
    )
    unauthorized_message: str = Field(
        default="Unauthorized request",
        description="Message returned with 401 responses",
    )
    debug_diagnostics: bool = Field(
        default=False,
        description="Include operator diagnostics (canonical string, expected signature) in 401 bodies",
    )

    # Replay protection
    replay_cache_storage: Literal["memory", "sqlite"] = Field(
        default="memory",
        description="Storage backend for the replay cache",
    )
    replay_cache_sqlite_path: str = Field(
        default="data/replay.sqlite",
        description="SQLite path for the replay cache",
    )
    replay_cache_max_entries: int | None = Field(
        default=None,
        description="Max signatures held in memory (None = bounded only by the validity window)",
    )
    replay_cache_sweep_interval: float = Field(
        default=60.0,
        description="Seconds between background sweeps of expired signatures (0 disables)",
    )

    # Secrets
    secrets: dict[str, str] = Field(
        default_factory=dict,
        description="Mapping of username to secret (JSON)",
    )
    secrets_are_passwords: bool = Field(
        default=False,
        description="Treat configured secrets as passwords and derive base64(SHA-1) keys from them",
    )

    # Server
    auth_exempt_paths: tuple[str, ...] = Field(
        default=("/health", "/metrics"),
        description="Paths exempt from authentication",
    )
    server_host: str = Field(
        default="0.0.0.0",
        description="Host for the demo API server",
    )
    server_port: int = Field(
        default=8080,
        description="Port for the demo API server",
    )

    # Client
    http_timeout: float = Field(
        default=30.0,
        description="HTTP request timeout in seconds",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Log level",
    )
    log_json: bool = Field(
        default=False,
        description="Render logs as JSON",
    )

    # Tracing
    tracing_enabled: bool = Field(
        default=False,
        description="Enable OpenTelemetry tracing",
    )
    tracing_otlp_endpoint: str | None = Field(
        default=None,
        description="OTLP collector endpoint (e.g. http://localhost:4317)",
    )
    tracing_console: bool = Field(
        default=False,
        description="Emit traces to console (debug only)",
    )
    tracing_service_name: str | None = Field(
        default=None,
        description="Service name for tracing (defaults to apiauth-server)",
    )

    @property
    def validity_window_seconds(self) -> float:
        """Validity window expressed in seconds."""
        return self.validity_window_minutes * 60.0


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()

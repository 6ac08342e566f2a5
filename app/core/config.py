"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Remote store credentials are intentionally re-read on demand (see
``build_remote_store_settings``) so a freshly built limiter always reflects
the current environment.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


APP_ENV = os.getenv("APP_ENV", "development")

PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

_env_file = str(_env_path) if _env_path.is_file() else None


# Nested BaseSettings don't inherit env_file, so populate os.environ up front.
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=False)


def _build_app_settings() -> "AppSettings":
    return AppSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    return LogSettings()  # type: ignore[call-arg]


def build_remote_store_settings() -> "RemoteStoreSettings":
    """Read remote store settings from the current environment.

    Not cached: the rate limiter factory calls this every time it builds a
    fresh instance so backend selection follows environment changes.
    """

    return RemoteStoreSettings()  # type: ignore[call-arg]


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    api_key_required: bool = Field(
        True,
        description="Whether the admin endpoints require an API key",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid admin API keys",
    )

    rate_limit_enabled: bool = Field(
        True,
        description="Enable the rate limiting middleware",
    )
    rate_limit_path_prefix: str = Field(
        "/api",
        description="Only requests under this path prefix pass through the limiter",
    )
    rate_limit_methods: str = Field(
        "POST",
        description="Comma-separated HTTP methods subject to rate limiting",
    )
    rate_limit_include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* headers on regulated responses",
    )

    local_max_entries: int = Field(
        10_000,
        description="Hard cap on tracked keys in the in-memory limiter",
        ge=1,
    )
    local_cleanup_threshold: int = Field(
        8_000,
        description="Store size above which expired keys are swept before admitting requests",
        ge=0,
    )
    capacity_retry_after_seconds: int = Field(
        60,
        description="Retry-After returned when the in-memory store is at capacity",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )

    @property
    def rate_limited_methods(self) -> set[str]:
        return {m.strip().upper() for m in self.rate_limit_methods.split(",") if m.strip()}


class RemoteStoreSettings(BaseSettings):
    """Upstash-compatible Redis REST endpoint used by the distributed limiter."""

    url: str | None = Field(
        None,
        description="REST base URL of the key-value store",
    )
    token: str | None = Field(
        None,
        description="Bearer token for the REST API",
    )
    timeout_seconds: float = Field(
        2.0,
        description="Per-request timeout when talking to the store",
        gt=0,
    )
    key_prefix: str = Field(
        "ratelimit",
        description="Namespace prepended to every sorted-set key",
    )

    model_config = SettingsConfigDict(
        env_prefix="UPSTASH_REDIS_REST_",
        case_sensitive=False,
    )

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.token)


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="json or plain")
    output: str = Field("stdout", description="stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int | None = Field(
        10_485_760,
        description="Rotate the log file after this many bytes (None disables rotation)",
    )
    backup_count: int = Field(5, description="Rotated files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header carrying the correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


settings = Settings()

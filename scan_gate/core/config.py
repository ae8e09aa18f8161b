"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    api_key_required: bool = Field(
        True,
        description="Whether operator endpoints require an API key",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid operator API keys",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field(
        "json",
        description="Log line format",
    )
    output: Literal["stdout", "file"] = Field(
        "stdout",
        description="Where log lines are written",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output=file (default logs/app.log)",
    )
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file after this many bytes (0 disables rotation)",
    )
    backup_count: int = Field(5, description="Number of rotated files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header carrying the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class StoreSettings(BaseSettings):
    """Persistent store selection for counters, ledger, devices and audit."""

    backend: Literal["memory", "redis"] = Field(
        "memory",
        description="Storage backend; 'memory' is single-process only",
    )
    redis_url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL when backend=redis",
    )
    namespace: str = Field(
        "scan_gate",
        description="Prefix applied to every persisted key",
    )
    socket_timeout_seconds: float = Field(
        0.05,
        description="Per-call socket timeout; store calls gate the request path",
        gt=0,
    )
    audit_stream_maxlen: int = Field(
        100_000,
        description="Approximate cap for the audit stream (Redis XADD MAXLEN ~)",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        case_sensitive=False,
    )


class TierSettings(BaseSettings):
    """Per-tier limits. Built into an immutable table at process start."""

    anonymous_request_limit: int = Field(3, ge=1)
    anonymous_window_seconds: int = Field(3600, ge=1)
    anonymous_scan_allowance: int | None = Field(3, ge=0)

    free_request_limit: int = Field(10, ge=1)
    free_window_seconds: int = Field(86400, ge=1)
    free_scan_allowance: int | None = Field(3, ge=0)

    plus_request_limit: int = Field(100, ge=1)
    plus_window_seconds: int = Field(86400, ge=1)
    plus_scan_allowance: int | None = Field(None, ge=0)

    pro_request_limit: int = Field(1000, ge=1)
    pro_window_seconds: int = Field(86400, ge=1)
    pro_scan_allowance: int | None = Field(None, ge=0)

    admin_request_limit: int = Field(10000, ge=1)
    admin_window_seconds: int = Field(86400, ge=1)
    admin_scan_allowance: int | None = Field(None, ge=0)

    model_config = SettingsConfigDict(
        env_prefix="TIER_",
        case_sensitive=False,
    )


class AbuseSettings(BaseSettings):
    """Heuristic pre-filter configuration."""

    enabled: bool = Field(True, description="Run the abuse pre-filter")
    bot_pattern: str = Field(
        r"bot|crawler|spider|scraper|curl|wget|python|axios|fetch|headless|phantomjs|selenium|puppeteer|playwright",
        description="Case-insensitive regex of automation user-agent tokens",
    )
    local_origin_markers: str = Field(
        "localhost,127.0.0.1,0.0.0.0,[::1],10.0.2.2",
        description="Comma-separated origin substrings treated as local development",
    )
    origin_check: Literal["auto", "on", "off"] = Field(
        "auto",
        description="Origin rule mode; 'auto' enables it only when APP_ENV=production",
    )
    flag_ttl_seconds: int = Field(
        3600,
        description="How long a flagged IP stays in the short-term flag set",
        ge=1,
    )
    flag_max_entries: int = Field(
        10_000,
        description="Capacity of the short-term flag set (LRU eviction)",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="ABUSE_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Fixed-window limiter configuration."""

    enabled: bool = Field(True, description="Enforce per-identity rate limits")
    fallback: Literal["local", "allow"] = Field(
        "local",
        description="On store error: in-process counter ('local') or unconditional allow",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers",
    )
    gc_interval_seconds: int = Field(
        300,
        description="How often the in-process fallback prunes idle windows",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class QuotaSettings(BaseSettings):
    """Absolute quota ledger configuration."""

    enabled: bool = Field(True, description="Enforce the absolute scan ledger")
    fail_open_allowance: int = Field(
        1,
        description="Scans granted per identity while the ledger store is unreachable",
        ge=0,
    )
    scan_cost_cents: float = Field(
        0.2,
        description="Downstream cost of one consumed scan, in cents",
        ge=0,
    )
    daily_cost_alert_cents: float = Field(
        1000.0,
        description="Emit a cost_threshold alert when the daily total crosses this",
        ge=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="QUOTA_",
        case_sensitive=False,
    )


class IdentitySettings(BaseSettings):
    """Credential verification and profile lookup collaborators."""

    auth_verify_url: str | None = Field(
        None,
        description="Endpoint returning the authenticated user for a bearer token",
    )
    profile_store_url: str | None = Field(
        None,
        description="Base URL of the profile store (GET {url}/profiles/{user_id})",
    )
    http_timeout_seconds: float = Field(2.0, gt=0)
    static_tokens: str | None = Field(
        None,
        description="Development tokens as comma-separated token=user_id pairs",
    )
    static_profiles: str | None = Field(
        None,
        description="Development profiles as comma-separated user_id=tier pairs",
    )
    trusted_proxy_hops: int = Field(
        0,
        ge=0,
        description=(
            "Reverse proxies in front of the app. 0 uses the socket peer address; "
            "N takes the N-th X-Forwarded-For hop from the right"
        ),
    )

    model_config = SettingsConfigDict(
        env_prefix="IDENTITY_",
        case_sensitive=False,
    )


class SharingSettings(BaseSettings):
    """Account-sharing detection thresholds."""

    max_users_per_device: int = Field(5, ge=1)
    max_ips_per_user: int = Field(5, ge=1)
    ip_window_seconds: int = Field(86400, ge=1)

    model_config = SettingsConfigDict(
        env_prefix="SHARING_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.

    Environments:
    - development: Local development (DEBUG=true)
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment (uses .env.production)
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=AppSettings)
    log: LogSettings = Field(default_factory=LogSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    tiers: TierSettings = Field(default_factory=TierSettings)
    abuse: AbuseSettings = Field(default_factory=AbuseSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    quota: QuotaSettings = Field(default_factory=QuotaSettings)
    identity: IdentitySettings = Field(default_factory=IdentitySettings)
    sharing: SharingSettings = Field(default_factory=SharingSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()

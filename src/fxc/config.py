"""
Configuration management using pydantic-settings.

Loads configuration from environment variables and .env files.
Validates fields and provides typed access to settings.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from fxc.providers.registry import DEFAULT_PROVIDER, available_providers
from fxc.types import AssetPolicy, DeployMode, is_currency_code


def make_build_version(now: datetime | None = None) -> str:
    """Build stamp in ``YYYY.MM.DD.HHMM`` format."""
    return (now or datetime.now()).strftime("%Y.%m.%d.%H%M")


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Optional:
        CACHE_DIR: Directory for the key-value and asset stores
        PROVIDER: Active exchange-rate provider
        PROVIDER_API_KEY: Credential seeded into the session at startup
        RATE_STALE_HOURS: Age after which a rate is flagged stale
        HTTP_TIMEOUT_SECONDS: Explicit timeout for every network call
        ASSET_POLICY: cache_first | network_first
        DEPLOY_MODE: development | production
        LOG_LEVEL: Logging level
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    CACHE_DIR: Path = Field(default=Path(".cache"), description="Cache directory")

    # Provider
    PROVIDER: str = Field(default=DEFAULT_PROVIDER, description="Active provider name")
    PROVIDER_API_KEY: str | None = Field(
        default=None, description="Credential for providers that require one"
    )

    # Currency selection
    DEFAULT_CURRENCY: str = Field(default="USD", description="Designated default code")
    DEFAULT_TARGET_CURRENCY: str = Field(
        default="EUR", description="Preferred default target code"
    )
    SELECTION_MAX_AGE_DAYS: int = Field(
        default=30, ge=1, description="Saved currency pair expiry in days"
    )

    # Staleness horizons
    RATE_STALE_HOURS: float = Field(default=24.0, gt=0, description="Rate staleness horizon")
    CURRENCIES_STALE_HOURS: float = Field(
        default=168.0, gt=0, description="Currency list staleness horizon"
    )

    # Network
    HTTP_TIMEOUT_SECONDS: float = Field(
        default=10.0, gt=0, description="Timeout applied to every network call"
    )
    HTTP_RETRY_ATTEMPTS: int = Field(
        default=2, ge=1, le=5, description="Transport-level attempts before cache fallback"
    )

    # Asset cache agent
    ASSET_ORIGIN: str = Field(
        default="http://localhost:8000", description="The application's own origin"
    )
    ASSET_EXTERNAL_ORIGINS: list[str] = Field(
        default_factory=lambda: ["https://cdn.jsdelivr.net"],
        description="External origins whose static resources may be cached",
    )
    ASSET_POLICY: AssetPolicy = Field(
        default=AssetPolicy.NETWORK_FIRST, description="Fetch interception policy"
    )
    DEPLOY_MODE: DeployMode = Field(
        default=DeployMode.PRODUCTION, description="Deployment mode"
    )
    ASSET_MANIFEST: Path | None = Field(
        default=None, description="YAML asset manifest (built-in default if unset)"
    )
    BUILD_VERSION: str | None = Field(
        default=None,
        description="Build stamp baked into generations (stamped at install if unset)",
    )
    ASSET_BACKGROUND_REFRESH: bool = Field(
        default=True, description="Refetch cached assets in the background on a hit"
    )

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    LOG_FILE: Path | None = Field(default=None, description="JSON-lines log file")

    @field_validator("PROVIDER")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        """Validate that PROVIDER names a registered provider."""
        value = v.strip().lower()
        if value not in available_providers():
            raise ValueError(
                f"PROVIDER must be one of: {', '.join(available_providers())}"
            )
        return value

    @field_validator("DEFAULT_CURRENCY", "DEFAULT_TARGET_CURRENCY")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        """Validate that default currencies are 3-letter codes."""
        value = v.strip().upper()
        if not is_currency_code(value):
            raise ValueError("Currency defaults must be 3-letter codes")
        return value

    @field_validator("PROVIDER_API_KEY")
    @classmethod
    def blank_key_is_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()

    @property
    def store_db_path(self) -> Path:
        return self.CACHE_DIR / "store.db"

    @property
    def flat_store_path(self) -> Path:
        return self.CACHE_DIR / "store.json"

    @property
    def asset_db_path(self) -> Path:
        return self.CACHE_DIR / "assets.db"

    @property
    def build_stamp_path(self) -> Path:
        return self.CACHE_DIR / "build-version"

    @property
    def rate_stale_after(self) -> timedelta:
        return timedelta(hours=self.RATE_STALE_HOURS)

    @property
    def currencies_stale_after(self) -> timedelta:
        return timedelta(hours=self.CURRENCIES_STALE_HOURS)

    @property
    def selection_max_age(self) -> timedelta:
        return timedelta(days=self.SELECTION_MAX_AGE_DAYS)

    def ensure_directories(self) -> None:
        """Create the cache directory if it doesn't exist."""
        self.CACHE_DIR.mkdir(parents=True, exist_ok=True)

    def resolve_build_version(self, fresh: bool = False) -> str:
        """Build stamp for the current asset generation.

        An explicit BUILD_VERSION always wins. Otherwise the stamp recorded
        under CACHE_DIR is reused, so install and a later activate agree on
        the generation name. ``fresh`` stamps and records a new build.
        """
        if self.BUILD_VERSION:
            return self.BUILD_VERSION
        path = self.build_stamp_path
        if not fresh and path.exists():
            stamp = path.read_text().strip()
            if stamp:
                return stamp
        stamp = make_build_version()
        self.ensure_directories()
        path.write_text(stamp + "\n")
        return stamp

    def redacted_display(self) -> dict[str, str | int | float | None]:
        """Return settings with the credential redacted for display."""
        def redact(value: str | None) -> str | None:
            if value is None:
                return None
            return f"{value[:4]}...{value[-2:]}" if len(value) > 8 else "***"

        return {
            "CACHE_DIR": str(self.CACHE_DIR),
            "PROVIDER": self.PROVIDER,
            "PROVIDER_API_KEY": redact(self.PROVIDER_API_KEY),
            "DEFAULT_CURRENCY": self.DEFAULT_CURRENCY,
            "DEFAULT_TARGET_CURRENCY": self.DEFAULT_TARGET_CURRENCY,
            "RATE_STALE_HOURS": self.RATE_STALE_HOURS,
            "CURRENCIES_STALE_HOURS": self.CURRENCIES_STALE_HOURS,
            "HTTP_TIMEOUT_SECONDS": self.HTTP_TIMEOUT_SECONDS,
            "HTTP_RETRY_ATTEMPTS": self.HTTP_RETRY_ATTEMPTS,
            "ASSET_ORIGIN": self.ASSET_ORIGIN,
            "ASSET_POLICY": self.ASSET_POLICY.value,
            "DEPLOY_MODE": self.DEPLOY_MODE.value,
            "ASSET_MANIFEST": str(self.ASSET_MANIFEST) if self.ASSET_MANIFEST else None,
            "BUILD_VERSION": self.BUILD_VERSION,
            "LOG_LEVEL": self.LOG_LEVEL,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()

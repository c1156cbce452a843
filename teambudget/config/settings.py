"""
Configuration Management for Team Budget Tracker

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Remote relational store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    url: Optional[str] = Field(
        default=None,
        description="SQLAlchemy database URL; unset means local store only"
    )
    echo: bool = Field(
        default=False,
        description="Echo SQL statements to the log"
    )
    auto_create_schema: bool = Field(
        default=True,
        description="Create missing tables on startup"
    )
    connect_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Connection attempts made by the startup check"
    )

    @field_validator('url')
    @classmethod
    def blank_url_is_unset(cls, v: Optional[str]) -> Optional[str]:
        """Treat an empty DATABASE_URL the same as a missing one."""
        if v is not None and not v.strip():
            return None
        return v

    @property
    def is_configured(self) -> bool:
        return self.url is not None


class LocalStoreSettings(BaseSettings):
    """Local fallback store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LOCAL_STORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    directory: Optional[Path] = Field(
        default=None,
        description="Directory holding the bucket files; unset keeps buckets in memory"
    )


class IngestSettings(BaseSettings):
    """Expense ingestion endpoint configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    expense_api_token: Optional[str] = Field(
        default=None,
        description="Bearer token expected by the ingestion endpoint"
    )


class AdminSettings(BaseSettings):
    """
    Admin console credentials.

    This is a static literal comparison, not an authentication system.
    """

    model_config = SettingsConfigDict(
        env_prefix="ADMIN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    username: str = Field(default="admin")
    password: str = Field(default="654321")


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level for the structured log"
    )

    # All "today" derivations use this fixed offset, not the host timezone
    reference_utc_offset_hours: int = Field(
        default=8,
        ge=-12,
        le=14,
        description="UTC offset of the reference clock"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def local_store(self) -> LocalStoreSettings:
        return LocalStoreSettings()

    @property
    def ingest(self) -> IngestSettings:
        return IngestSettings()

    @property
    def admin(self) -> AdminSettings:
        return AdminSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("database", "local_store", "ingest", "admin", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    # A loadable but empty URL still means "no remote store"
    if results.get("database"):
        results["remote_store"] = settings.database.is_configured
    if results.get("ingest"):
        results["ingest_token"] = bool(settings.ingest.expense_api_token)

    return results

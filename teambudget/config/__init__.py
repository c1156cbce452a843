"""Configuration package."""

from teambudget.config.settings import (
    AdminSettings,
    AppSettings,
    DatabaseSettings,
    IngestSettings,
    LocalStoreSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AdminSettings",
    "AppSettings",
    "DatabaseSettings",
    "IngestSettings",
    "LocalStoreSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]

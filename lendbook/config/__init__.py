"""Configuration package."""

from lendbook.config.settings import (
    AppSettings,
    LoggingSettings,
    Settings,
    StoreSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "LoggingSettings",
    "Settings",
    "StoreSettings",
    "get_settings",
    "validate_all_settings",
]

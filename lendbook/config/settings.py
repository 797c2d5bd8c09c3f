"""
Configuration Management for Lendbook

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The engine itself takes no configuration; only the flows and the store
read these settings.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreSettings(BaseSettings):
    """Event store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LENDBOOK_STORE_",
        extra="ignore"
    )

    path: Optional[Path] = Field(
        default=None,
        description="JSON file holding the event collections (in-memory store if unset)"
    )
    history_collection: str = Field(
        default="lendbookAuditLog",
        description="Collection name for audit rows inside the JSON file"
    )


class LoggingSettings(BaseSettings):
    """Structured logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LENDBOOK_LOG_",
        extra="ignore"
    )

    level: str = Field(
        default="INFO",
        description="Standard library log level name"
    )
    format: str = Field(
        default="json",
        pattern="^(json|console)$",
        description="Renderer for log lines"
    )

    @field_validator('level')
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="LENDBOOK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Ordering of same-date history items
    history_tie_break: str = Field(
        default="insertion",
        pattern="^(insertion|kind_then_id)$",
        description="'insertion' keeps concatenation order, 'kind_then_id' forces a total order"
    )

    # Write-side behaviour
    validate_on_write: bool = Field(
        default=True,
        description="Run event-creation validation before appending events"
    )
    default_user_id: int = Field(
        default=1,
        ge=1,
        description="User id recorded in audit rows when the caller passes none"
    )
    refresh_balances_on_write: bool = Field(
        default=False,
        description="Refresh the cached Account.balance after every write"
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
    def store(self) -> StoreSettings:
        return StoreSettings()

    @property
    def logging(self) -> LoggingSettings:
        return LoggingSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

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

    for name in ("store", "logging", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except ValueError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results

"""Configuration management for sitewatch."""

from .settings import (
    APISettings,
    AppSettings,
    DatabaseSettings,
    EmailSettings,
    FetcherSettings,
    NotificationSettings,
    SchedulerSettings,
    get_settings,
    reload_settings,
    validate_settings,
)
from .types import ConfigError

__all__ = [
    "AppSettings",
    "DatabaseSettings",
    "FetcherSettings",
    "SchedulerSettings",
    "NotificationSettings",
    "EmailSettings",
    "APISettings",
    "get_settings",
    "reload_settings",
    "validate_settings",
    "ConfigError",
]

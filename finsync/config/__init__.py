"""Configuration package."""

from finsync.config.settings import (
    AppSettings,
    CacheSettings,
    GoogleSheetsSettings,
    MigrationSettings,
    NotificationSettings,
    PersistenceSettings,
    Settings,
    SyncSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "CacheSettings",
    "GoogleSheetsSettings",
    "MigrationSettings",
    "NotificationSettings",
    "PersistenceSettings",
    "Settings",
    "SyncSettings",
    "get_settings",
    "validate_all_settings",
]

"""
Configuration Management for the Finance Tracker Sync Core

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncSettings(BaseSettings):
    """Conflict resolution configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SYNC_",
        extra="ignore"
    )

    default_strategy: str = Field(
        default="last_write_wins",
        description="Strategy used when a resolve call names none"
    )

    @field_validator('default_strategy')
    @classmethod
    def validate_strategy(cls, v: str) -> str:
        allowed = {"last_write_wins", "server_wins", "client_wins", "merge", "manual"}
        value = v.strip().lower()
        if value not in allowed:
            raise ValueError(f"Unknown conflict strategy: {v}. Allowed: {sorted(allowed)}")
        return value


class PersistenceSettings(BaseSettings):
    """On-device snapshot configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PERSISTENCE_",
        extra="ignore"
    )

    data_dir: str = Field(
        default="~/.finance-tracker",
        description="Directory holding the snapshot and the backup folder"
    )
    data_file_name: str = Field(
        default="finance-tracker-data.json",
        description="File name of the full-graph snapshot"
    )
    backup_dir_name: str = Field(
        default="finance-tracker-backups",
        description="Sub-directory for manual timestamped backups"
    )
    queue_file_name: str = Field(
        default="finance-tracker-sync-queue.json",
        description="File name of the pending sync operations queue"
    )
    autosave_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        le=60.0,
        description="Quiet period after the last change before autosave fires"
    )
    autosave_enabled: bool = Field(
        default=True,
        description="Enable debounced autosave"
    )

    @property
    def data_path(self) -> Path:
        """Snapshot directory with the user's home expanded."""
        return Path(self.data_dir).expanduser()


class MigrationSettings(BaseSettings):
    """Bulk import defaults."""

    model_config = SettingsConfigDict(
        env_prefix="MIGRATION_",
        extra="ignore"
    )

    default_currency: str = Field(
        default="EGP",
        min_length=3,
        max_length=3,
        description="Currency applied to records that carry none"
    )
    default_list_name: str = Field(
        default="Default",
        description="Name of the per-user fallback todo list"
    )
    default_list_color: str = Field(
        default="indigo",
        description="Color of the fallback todo list"
    )


class CacheSettings(BaseSettings):
    """Read cache configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        extra="ignore"
    )

    ttl_seconds: int = Field(
        default=3600,
        ge=1,
        description="Lifetime of a cached read"
    )


class NotificationSettings(BaseSettings):
    """Optional user notification capability."""

    model_config = SettingsConfigDict(
        env_prefix="NOTIFICATIONS_",
        extra="ignore"
    )

    enabled: bool = Field(
        default=False,
        description="Send notifications when a backing service is configured"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # One worksheet per entity type, named <prefix><payload key>
    entity_sheet_prefix: str = Field(
        default="",
        description="Prefix for entity worksheet names"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


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

    storage_backend: str = Field(
        default="memory",
        pattern="^(memory|google_sheets)$",
        description="Entity store backend"
    )

    # Upload limits for the migration page
    max_upload_size_mb: int = Field(
        default=25,
        ge=1,
        le=200,
        description="Maximum migration file size in MB"
    )

    @property
    def max_upload_size_bytes(self) -> int:
        """Get max upload size in bytes."""
        return self.max_upload_size_mb * 1024 * 1024


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

    # Note: These are loaded lazily to allow partial configuration

    @property
    def sync(self) -> SyncSettings:
        return SyncSettings()

    @property
    def persistence(self) -> PersistenceSettings:
        return PersistenceSettings()

    @property
    def migration(self) -> MigrationSettings:
        return MigrationSettings()

    @property
    def cache(self) -> CacheSettings:
        return CacheSettings()

    @property
    def notifications(self) -> NotificationSettings:
        return NotificationSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

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

    for name in ("sync", "persistence", "migration", "cache", "notifications", "google_sheets", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results

"""Services package."""

# Storage must load before the cache: the registry wraps stores in it
from finsync.services.storage import (
    AuditStorageInterface,
    DuplicateError,
    EntityStoreInterface,
    EntityStoreRegistry,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsEntityStore,
    InMemoryAuditStorage,
    InMemoryEntityStore,
    NotFoundError,
    StorageConnectionError,
    StorageError,
)
from finsync.services.cache import CacheService, CachedEntityStore
from finsync.services.notifications import (
    LoggingNotifier,
    Notifier,
    NullNotifier,
    build_notifier,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "DuplicateError",
    "EntityStoreInterface",
    "EntityStoreRegistry",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsEntityStore",
    "InMemoryAuditStorage",
    "InMemoryEntityStore",
    "NotFoundError",
    "StorageConnectionError",
    "StorageError",
    # Cache
    "CacheService",
    "CachedEntityStore",
    # Notifications
    "LoggingNotifier",
    "Notifier",
    "NullNotifier",
    "build_notifier",
]

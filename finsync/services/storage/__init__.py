"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
In-memory and Google Sheets backends are available; both are swappable
behind EntityStoreInterface.
"""

from finsync.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    EntityStoreInterface,
    NotFoundError,
    StorageConnectionError,
    StorageError,
)
from finsync.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryEntityStore,
)
from finsync.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsEntityStore,
)
from finsync.services.storage.registry import EntityStoreRegistry

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "EntityStoreInterface",
    # Exceptions
    "DuplicateError",
    "NotFoundError",
    "StorageConnectionError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryEntityStore",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsEntityStore",
    # Registry
    "EntityStoreRegistry",
]

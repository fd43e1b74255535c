"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing and offline use
3. Add caching layers transparently
4. Keep migration and sync logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Records are plain camelCase documents; every operation is scoped to one
user. The store assigns canonical ids and owns the createdAt/updatedAt
bookkeeping on update.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional
from uuid import UUID

from finsync.models.audit import AuditEvent
from finsync.models.entities import EntityType


class EntityStoreInterface(ABC):
    """
    Abstract interface for one entity type's storage.

    Any storage implementation (Google Sheets, in-memory, etc.)
    must implement these methods. Returned documents always carry the
    canonical id under "id".
    """

    entity_type: EntityType
    unique_fields: tuple[str, ...] = ()

    @abstractmethod
    async def find_by_user(self, user_id: str) -> list[dict[str, Any]]:
        """
        List every record owned by a user, oldest first.

        Args:
            user_id: Owning user

        Returns:
            List of documents (copies; mutating them does not touch the store)
        """
        pass

    @abstractmethod
    async def find_one(self, user_id: str, record_id: str) -> Optional[dict[str, Any]]:
        """
        Retrieve one record by canonical id.

        Args:
            user_id: Owning user
            record_id: Canonical id

        Returns:
            The document if found and owned by the user, None otherwise
        """
        pass

    @abstractmethod
    async def create(self, document: dict[str, Any]) -> dict[str, Any]:
        """
        Insert a new record.

        Args:
            document: camelCase document including userId

        Returns:
            The stored document with its new canonical id

        Raises:
            DuplicateError: If a unique field combination already exists
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def update(
        self,
        user_id: str,
        record_id: str,
        changes: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Apply a partial update to one record.

        id, userId and createdAt in changes are ignored; updatedAt is set
        to the current time.

        Returns:
            The updated document

        Raises:
            NotFoundError: If the record doesn't exist for this user
            DuplicateError: If the change violates a unique constraint
        """
        pass

    @abstractmethod
    async def delete(self, user_id: str, record_id: str) -> bool:
        """
        Delete one record.

        Returns:
            True if a record was deleted
        """
        pass

    @abstractmethod
    async def delete_all_by_user(self, user_id: str) -> int:
        """
        Delete every record a user owns.

        Returns:
            Number of records deleted
        """
        pass

    async def find_first(self, user_id: str, **criteria: Any) -> Optional[dict[str, Any]]:
        """
        First record (oldest) whose fields equal all the given criteria.

        Criteria use wire (camelCase) field names.
        """
        for document in await self.find_by_user(user_id):
            if all(document.get(field) == value for field, value in criteria.items()):
                return document
        return None

    def unique_key(self, document: dict[str, Any]) -> Optional[tuple]:
        """Unique-constraint key of a document, or None if unconstrained."""
        if not self.unique_fields:
            return None
        return tuple(document.get(field) for field in self.unique_fields)


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one migration run).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class StorageConnectionError(StorageError):
    """
    Could not connect to storage backend.

    Unlike other storage errors this is systemic: it aborts a migration
    rather than being recorded against a single record.
    """
    pass

"""
In-Memory Storage Implementation

Used for tests, for the offline operator console and as the fallback when
no Google Sheets credentials are configured. Behaves like the Sheets store:
canonical ids are assigned on create, unique constraints are enforced per
user, and callers only ever see copies of the stored documents.
"""

import copy
from typing import Any, Callable, Optional
from uuid import UUID, uuid4

from finsync.models.audit import AuditEvent
from finsync.models.entities import UNIQUE_FIELDS, EntityType
from finsync.models.timestamps import utcnow
from finsync.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    EntityStoreInterface,
    NotFoundError,
)


# Fields a partial update may never overwrite
PROTECTED_FIELDS = ("id", "userId", "createdAt")


class InMemoryEntityStore(EntityStoreInterface):
    """
    Dictionary-backed store for one entity type.

    Records are kept per user in insertion order, so find_by_user returns
    them oldest first.
    """

    def __init__(
        self,
        entity_type: EntityType,
        unique_fields: Optional[tuple[str, ...]] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self.entity_type = entity_type
        self.unique_fields = (
            unique_fields if unique_fields is not None
            else UNIQUE_FIELDS.get(entity_type, ())
        )
        self._id_factory = id_factory or (lambda: uuid4().hex)
        self._records: dict[str, dict[str, dict[str, Any]]] = {}

    def _user_records(self, user_id: str) -> dict[str, dict[str, Any]]:
        return self._records.setdefault(user_id, {})

    def _check_unique(
        self,
        user_id: str,
        document: dict[str, Any],
        exclude_id: Optional[str] = None,
    ) -> None:
        key = self.unique_key(document)
        if key is None:
            return
        for record_id, existing in self._user_records(user_id).items():
            if record_id != exclude_id and self.unique_key(existing) == key:
                fields = ", ".join(
                    f"{field}={value}" for field, value in zip(self.unique_fields, key)
                )
                raise DuplicateError(
                    f"{self.entity_type.value} already has a record with {fields}"
                )

    async def find_by_user(self, user_id: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(doc) for doc in self._records.get(user_id, {}).values()]

    async def find_one(self, user_id: str, record_id: str) -> Optional[dict[str, Any]]:
        document = self._records.get(user_id, {}).get(record_id)
        return copy.deepcopy(document) if document is not None else None

    async def create(self, document: dict[str, Any]) -> dict[str, Any]:
        user_id = document["userId"]
        self._check_unique(user_id, document)

        stored = copy.deepcopy(document)
        stored["id"] = self._id_factory()
        self._user_records(user_id)[stored["id"]] = stored
        return copy.deepcopy(stored)

    async def update(
        self,
        user_id: str,
        record_id: str,
        changes: dict[str, Any],
    ) -> dict[str, Any]:
        records = self._user_records(user_id)
        if record_id not in records:
            raise NotFoundError(f"{self.entity_type.value} not found: {record_id}")

        patch = {k: v for k, v in changes.items() if k not in PROTECTED_FIELDS}
        updated = {**records[record_id], **copy.deepcopy(patch)}
        updated["updatedAt"] = utcnow()
        self._check_unique(user_id, updated, exclude_id=record_id)

        records[record_id] = updated
        return copy.deepcopy(updated)

    async def delete(self, user_id: str, record_id: str) -> bool:
        return self._records.get(user_id, {}).pop(record_id, None) is not None

    async def delete_all_by_user(self, user_id: str) -> int:
        return len(self._records.pop(user_id, {}))


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self.events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        events = sorted(self.events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]

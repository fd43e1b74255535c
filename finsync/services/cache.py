"""
Cache Service

DESIGN DECISION: The cache is an explicit instance handed to whoever needs
it, never a module-level singleton. Tests get a fresh cache per case and
the migration wipe can invalidate exactly the keys it touched.

Entries expire after a TTL measured on a monotonic clock.
"""

import copy
import time
from typing import Any, Callable, Optional

import structlog

from finsync.services.storage.interface import EntityStoreInterface


logger = structlog.get_logger(__name__)


class CacheService:
    """
    In-memory TTL cache.

    Values are stored as given; callers that need isolation must copy.
    """

    def __init__(
        self,
        ttl_seconds: float = 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        # Bumped on every invalidation; a read that started under an older
        # generation must not repopulate the key
        self._generations: dict[str, int] = {}
        self._epoch = 0

    @staticmethod
    def make_key(*parts: Any) -> str:
        """Join key parts with ':' (e.g. make_key("clients", "u1") -> "clients:u1")."""
        return ":".join(str(part) for part in parts)

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ttl = self._ttl if ttl_seconds is None else ttl_seconds
        self._entries[key] = (self._clock() + ttl, value)

    def generation(self, key: str) -> tuple[int, int]:
        """Token that changes whenever key is invalidated."""
        return self._epoch, self._generations.get(key, 0)

    def set_if_current(self, key: str, value: Any, generation: tuple[int, int]) -> bool:
        """Store value only if key was not invalidated since generation was taken."""
        if self.generation(key) != generation:
            return False
        self.set(key, value)
        return True

    def _bump(self, key: str) -> None:
        self._generations[key] = self._generations.get(key, 0) + 1

    def delete(self, key: str) -> bool:
        self._bump(key)
        return self._entries.pop(key, None) is not None

    def clear_prefix(self, prefix: str) -> int:
        """Drop every key starting with prefix; returns how many were dropped."""
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        # Also covers keys with a read in flight but no entry yet
        self._epoch += 1
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()
        self._epoch += 1

    def __len__(self) -> int:
        return len(self._entries)


class CachedEntityStore(EntityStoreInterface):
    """
    Read-through cache in front of an entity store.

    Only find_by_user is cached (it is what every other read reduces to).
    Any write for a user invalidates that user's entry for this type.
    """

    def __init__(self, store: EntityStoreInterface, cache: CacheService):
        self._store = store
        self._cache = cache
        self.entity_type = store.entity_type
        self.unique_fields = store.unique_fields

    @property
    def inner(self) -> EntityStoreInterface:
        return self._store

    def _key(self, user_id: str) -> str:
        return self._cache.make_key(self.entity_type.value, user_id)

    def _invalidate(self, user_id: str) -> None:
        self._cache.delete(self._key(user_id))

    async def find_by_user(self, user_id: str) -> list[dict[str, Any]]:
        cached = self._cache.get(self._key(user_id))
        if cached is not None:
            return copy.deepcopy(cached)

        key = self._key(user_id)
        generation = self._cache.generation(key)
        documents = await self._store.find_by_user(user_id)
        self._cache.set_if_current(key, copy.deepcopy(documents), generation)
        return documents

    async def find_one(self, user_id: str, record_id: str) -> Optional[dict[str, Any]]:
        for document in await self.find_by_user(user_id):
            if document.get("id") == record_id:
                return document
        return None

    async def create(self, document: dict[str, Any]) -> dict[str, Any]:
        try:
            return await self._store.create(document)
        finally:
            self._invalidate(document["userId"])

    async def update(
        self,
        user_id: str,
        record_id: str,
        changes: dict[str, Any],
    ) -> dict[str, Any]:
        try:
            return await self._store.update(user_id, record_id, changes)
        finally:
            self._invalidate(user_id)

    async def delete(self, user_id: str, record_id: str) -> bool:
        try:
            return await self._store.delete(user_id, record_id)
        finally:
            self._invalidate(user_id)

    async def delete_all_by_user(self, user_id: str) -> int:
        try:
            deleted = await self._store.delete_all_by_user(user_id)
        finally:
            self._invalidate(user_id)
        logger.debug(
            "cache_invalidated",
            entity_type=self.entity_type.value,
            user_id=user_id,
        )
        return deleted

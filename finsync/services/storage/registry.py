"""
Entity Store Registry

One store per entity type, looked up by EntityType. The migration importer,
the savings ledger and the reconciler all receive the registry instead of
twelve separate stores.
"""

from typing import Any, Callable, Iterator, Optional

from finsync.models.entities import EntityType
from finsync.services.cache import CacheService, CachedEntityStore
from finsync.services.storage.interface import EntityStoreInterface


StoreFactory = Callable[[EntityType], EntityStoreInterface]


class EntityStoreRegistry:
    """Mapping of EntityType to its store."""

    def __init__(self, factory: StoreFactory):
        self._stores: dict[EntityType, EntityStoreInterface] = {
            entity_type: factory(entity_type) for entity_type in EntityType
        }

    @classmethod
    def in_memory(cls) -> "EntityStoreRegistry":
        """Registry of in-memory stores (tests, offline use)."""
        from finsync.services.storage.memory import InMemoryEntityStore

        return cls(InMemoryEntityStore)

    @classmethod
    def google_sheets(cls, client: Optional[Any] = None) -> "EntityStoreRegistry":
        """Registry of Sheets-backed stores sharing one client connection."""
        from finsync.services.storage.google_sheets import (
            GoogleSheetsClient,
            GoogleSheetsEntityStore,
        )

        client = client or GoogleSheetsClient()
        return cls(lambda entity_type: GoogleSheetsEntityStore(entity_type, client))

    def with_cache(self, cache: CacheService) -> "EntityStoreRegistry":
        """New registry whose stores read through the given cache."""
        return EntityStoreRegistry(
            lambda entity_type: CachedEntityStore(self._stores[entity_type], cache)
        )

    def __getitem__(self, entity_type: EntityType) -> EntityStoreInterface:
        return self._stores[entity_type]

    def __iter__(self) -> Iterator[EntityType]:
        return iter(self._stores)

    def items(self):
        return self._stores.items()

    async def export_user_graph(self, user_id: str) -> dict[str, list[dict[str, Any]]]:
        """
        Every record a user owns, keyed by payload key.

        The shape matches a migration payload, so an export can be
        re-imported as-is.
        """
        return {
            entity_type.value: await store.find_by_user(user_id)
            for entity_type, store in self._stores.items()
        }

"""
Tests for storage, caching and locking

Test strategy:
1. In-memory store: user scoping, copies, unique constraints
2. Sheets store against a fake worksheet (no real API calls)
3. Read-through cache invalidation and TTL expiry
4. Keyed locks serialize per key and clean up after themselves
"""

import asyncio
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from finsync.concurrency import KeyedLock, LockManager
from finsync.config import NotificationSettings
from finsync.models.audit import AuditEventBuilder
from finsync.models.entities import EntityType
from finsync.services import (
    CacheService,
    CachedEntityStore,
    LoggingNotifier,
    NullNotifier,
    build_notifier,
)
from finsync.services.storage import (
    DuplicateError,
    EntityStoreRegistry,
    GoogleSheetsAuditStorage,
    GoogleSheetsEntityStore,
    InMemoryAuditStorage,
    InMemoryEntityStore,
    NotFoundError,
    StorageError,
)
from finsync.services.storage.google_sheets import AUDIT_COLUMNS, ENTITY_COLUMNS


class TestInMemoryEntityStore:
    """Tests for the in-memory store."""

    def test_create_assigns_id(self):
        """The store assigns the canonical id."""
        store = InMemoryEntityStore(EntityType.CLIENTS)
        created = asyncio.run(store.create({"userId": "u1", "name": "Acme"}))
        assert created["id"]
        assert created["name"] == "Acme"

    def test_reads_are_user_scoped(self):
        """Another user's record is invisible."""
        store = InMemoryEntityStore(EntityType.CLIENTS)

        async def scenario():
            created = await store.create({"userId": "u1", "name": "Acme"})
            return (
                await store.find_one("u2", created["id"]),
                await store.find_by_user("u2"),
            )

        assert asyncio.run(scenario()) == (None, [])

    def test_returns_copies(self):
        """Mutating a returned document does not touch the store."""
        store = InMemoryEntityStore(EntityType.CLIENTS)

        async def scenario():
            created = await store.create({"userId": "u1", "services": ["fb_ads"]})
            created["services"].append("strategy")
            return await store.find_one("u1", created["id"])

        assert asyncio.run(scenario())["services"] == ["fb_ads"]

    def test_unique_per_user(self):
        """Invoice numbers are unique per user, not globally."""
        store = InMemoryEntityStore(EntityType.INVOICES)

        async def scenario():
            await store.create({"userId": "u1", "invoiceNumber": "INV-1"})
            await store.create({"userId": "u2", "invoiceNumber": "INV-1"})
            await store.create({"userId": "u1", "invoiceNumber": "INV-1"})

        with pytest.raises(DuplicateError, match="invoiceNumber=INV-1"):
            asyncio.run(scenario())

    def test_update_protects_identity(self):
        """id, userId and createdAt can't be patched; updatedAt is bumped."""
        store = InMemoryEntityStore(EntityType.CLIENTS)

        async def scenario():
            created = await store.create({"userId": "u1", "name": "A", "createdAt": "then"})
            updated = await store.update(
                "u1", created["id"], {"name": "B", "id": "x", "userId": "u2", "createdAt": "now"}
            )
            return created, updated

        created, updated = asyncio.run(scenario())
        assert updated["name"] == "B"
        assert updated["id"] == created["id"]
        assert updated["userId"] == "u1"
        assert updated["createdAt"] == "then"
        assert "updatedAt" in updated

    def test_update_missing(self):
        """Updating an unknown record raises NotFoundError."""
        store = InMemoryEntityStore(EntityType.CLIENTS)
        with pytest.raises(NotFoundError):
            asyncio.run(store.update("u1", "nope", {"name": "x"}))

    def test_delete_all_by_user(self):
        """Only the given user's records are removed."""
        store = InMemoryEntityStore(EntityType.TODOS)

        async def scenario():
            for user_id in ("u1", "u1", "u2"):
                await store.create({"userId": user_id})
            deleted = await store.delete_all_by_user("u1")
            return deleted, await store.find_by_user("u2")

        deleted, remaining = asyncio.run(scenario())
        assert deleted == 2
        assert len(remaining) == 1

    def test_find_first(self):
        """The oldest record matching all criteria."""
        store = InMemoryEntityStore(EntityType.OPENING_BALANCES)

        async def scenario():
            await store.create({"userId": "u1", "periodType": "monthly", "period": "2024-01"})
            wanted = await store.create({"userId": "u1", "periodType": "yearly", "period": "2024-01"})
            found = await store.find_first("u1", periodType="yearly", period="2024-01")
            missing = await store.find_first("u1", periodType="yearly", period="2023")
            return wanted, found, missing

        wanted, found, missing = asyncio.run(scenario())
        assert found["id"] == wanted["id"]
        assert missing is None


class FakeWorksheet:
    """Just enough of gspread.Worksheet for the Sheets stores."""

    def __init__(self, columns):
        self.rows = [list(columns)]

    def get_all_values(self):
        return [list(row) for row in self.rows]

    def append_row(self, row, value_input_option=None):
        self.rows.append([str(value) for value in row])

    def update(self, range_name, values, value_input_option=None):
        index = int(range_name.split(":")[0][1:])
        self.rows[index - 1] = [str(value) for value in values[0]]

    def delete_rows(self, index):
        del self.rows[index - 1]


class TimeoutAfterAppendWorksheet(FakeWorksheet):
    """Worksheet whose append lands but whose response never arrives."""

    def __init__(self, columns):
        super().__init__(columns)
        self.appends = 0

    def append_row(self, row, value_input_option=None):
        self.appends += 1
        super().append_row(row, value_input_option)
        raise TimeoutError("Read timed out")


class FakeSheetsClient:
    """Stands in for GoogleSheetsClient; one fake worksheet per entity type."""

    def __init__(self):
        self.sheets = {}
        self.audit = FakeWorksheet(AUDIT_COLUMNS)

    def get_entity_sheet(self, entity_type):
        return self.sheets.setdefault(entity_type, FakeWorksheet(ENTITY_COLUMNS))

    def get_audit_sheet(self):
        return self.audit


class TestGoogleSheetsEntityStore:
    """Tests for the Sheets store against a fake worksheet."""

    def test_round_trip(self):
        """Documents come back from their JSON column."""
        client = FakeSheetsClient()
        store = GoogleSheetsEntityStore(EntityType.CLIENTS, client)

        async def scenario():
            created = await store.create({"userId": "u1", "name": "Acme", "rating": 4})
            return created, await store.find_one("u1", created["id"])

        created, found = asyncio.run(scenario())
        assert found == created
        assert client.sheets[EntityType.CLIENTS].rows[1][1] == "u1"

    def test_update_and_delete(self):
        """Updates rewrite the row in place; deletes remove it."""
        store = GoogleSheetsEntityStore(EntityType.CLIENTS, FakeSheetsClient())

        async def scenario():
            created = await store.create({"userId": "u1", "name": "A"})
            updated = await store.update("u1", created["id"], {"name": "B", "id": "hijack"})
            deleted = await store.delete("u1", created["id"])
            return created, updated, deleted, await store.find_by_user("u1")

        created, updated, deleted, remaining = asyncio.run(scenario())
        assert updated["name"] == "B"
        assert updated["id"] == created["id"]
        assert deleted is True
        assert remaining == []

    def test_update_missing(self):
        """Unknown records raise NotFoundError without retrying."""
        store = GoogleSheetsEntityStore(EntityType.CLIENTS, FakeSheetsClient())
        with pytest.raises(NotFoundError):
            asyncio.run(store.update("u1", "nope", {"name": "x"}))

    def test_unique_constraint(self):
        """Duplicate opening balance periods are refused."""
        store = GoogleSheetsEntityStore(EntityType.OPENING_BALANCES, FakeSheetsClient())

        async def scenario():
            await store.create({"userId": "u1", "periodType": "monthly", "period": "2024-01"})
            await store.create({"userId": "u1", "periodType": "monthly", "period": "2024-01"})

        with pytest.raises(DuplicateError):
            asyncio.run(scenario())

    def test_delete_all_by_user(self):
        """Interleaved rows of two users are removed correctly."""
        client = FakeSheetsClient()
        store = GoogleSheetsEntityStore(EntityType.TODOS, client)

        async def scenario():
            for user_id in ("u1", "u2", "u1", "u2", "u1"):
                await store.create({"userId": user_id})
            deleted = await store.delete_all_by_user("u1")
            return deleted, await store.find_by_user("u2")

        deleted, remaining = asyncio.run(scenario())
        assert deleted == 3
        assert len(remaining) == 2
        assert len(client.sheets[EntityType.TODOS].rows) == 3

    def test_failed_append_is_not_repeated(self):
        """An error after the row landed surfaces once; the row is not appended twice."""
        client = FakeSheetsClient()
        sheet = client.sheets[EntityType.CLIENTS] = TimeoutAfterAppendWorksheet(ENTITY_COLUMNS)
        store = GoogleSheetsEntityStore(EntityType.CLIENTS, client)

        with pytest.raises(StorageError, match="timed out"):
            asyncio.run(store.create({"userId": "u1", "name": "Acme"}))

        assert sheet.appends == 1
        assert len(sheet.rows) == 2

    def test_audit_storage(self):
        """Audit events survive a trip through the sheet."""
        storage = GoogleSheetsAuditStorage(FakeSheetsClient())
        correlation_id = uuid4()
        event = AuditEventBuilder.data_wiped("u1", {"clients": 2}, 2, correlation_id)

        async def scenario():
            assert await storage.append_event(event) is True
            return await storage.get_events_by_correlation_id(correlation_id)

        events = asyncio.run(scenario())
        assert len(events) == 1
        assert events[0].event_id == event.event_id
        assert events[0].details == {"deleted": {"clients": 2}, "total": 2}


class TestCacheService:
    """Tests for the TTL cache."""

    def test_expiry(self):
        """Entries vanish once their TTL has passed."""
        now = [0.0]
        cache = CacheService(ttl_seconds=10, clock=lambda: now[0])
        cache.set("k", "v")
        assert cache.get("k") == "v"
        now[0] = 10.0
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_clear_prefix(self):
        """Prefix clearing drops only matching keys."""
        cache = CacheService()
        cache.set(CacheService.make_key("clients", "u1"), [])
        cache.set(CacheService.make_key("clients", "u2"), [])
        cache.set(CacheService.make_key("income", "u1"), [])
        assert cache.clear_prefix("clients:") == 2
        assert len(cache) == 1

    def test_set_if_current_after_invalidation(self):
        """A value read before an invalidation is not stored."""
        cache = CacheService()
        generation = cache.generation("clients:u1")
        cache.delete("clients:u1")
        assert cache.set_if_current("clients:u1", ["stale"], generation) is False
        assert cache.get("clients:u1") is None

        generation = cache.generation("clients:u1")
        cache.clear_prefix("clients:")
        assert cache.set_if_current("clients:u1", ["stale"], generation) is False

        generation = cache.generation("clients:u1")
        assert cache.set_if_current("clients:u1", ["fresh"], generation) is True
        assert cache.get("clients:u1") == ["fresh"]


class CountingStore(InMemoryEntityStore):
    """In-memory store that counts list reads."""

    def __init__(self, entity_type):
        super().__init__(entity_type)
        self.reads = 0

    async def find_by_user(self, user_id):
        self.reads += 1
        return await super().find_by_user(user_id)


class GatedStore(InMemoryEntityStore):
    """In-memory store whose list reads stall until the gate opens."""

    def __init__(self, entity_type):
        super().__init__(entity_type)
        self.gate = None
        self.reading = None

    async def find_by_user(self, user_id):
        documents = await super().find_by_user(user_id)
        if self.gate is not None:
            self.reading.set()
            await self.gate.wait()
        return documents


class TestCachedEntityStore:
    """Tests for the read-through cache wrapper."""

    def test_reads_are_cached(self):
        """Repeated reads hit the inner store once."""
        inner = CountingStore(EntityType.CLIENTS)
        store = CachedEntityStore(inner, CacheService())

        async def scenario():
            await store.create({"userId": "u1", "name": "A"})
            await store.find_by_user("u1")
            await store.find_by_user("u1")

        asyncio.run(scenario())
        assert inner.reads == 1

    def test_writes_invalidate(self):
        """A write makes the next read go to the store."""
        store = CachedEntityStore(InMemoryEntityStore(EntityType.CLIENTS), CacheService())

        async def scenario():
            created = await store.create({"userId": "u1", "name": "A"})
            await store.find_by_user("u1")
            await store.update("u1", created["id"], {"name": "B"})
            return await store.find_one("u1", created["id"])

        assert asyncio.run(scenario())["name"] == "B"

    def test_cached_results_are_copies(self):
        """Callers can't corrupt the cache."""
        store = CachedEntityStore(InMemoryEntityStore(EntityType.CLIENTS), CacheService())

        async def scenario():
            await store.create({"userId": "u1", "name": "A"})
            first = await store.find_by_user("u1")
            first[0]["name"] = "mutated"
            return await store.find_by_user("u1")

        assert asyncio.run(scenario())[0]["name"] == "A"

    def test_failed_write_still_invalidates(self):
        """A rejected write drops the cached entry too."""
        cache = CacheService()
        store = CachedEntityStore(InMemoryEntityStore(EntityType.INVOICES), cache)

        async def scenario():
            await store.create({"userId": "u1", "invoiceNumber": "INV-1"})
            await store.find_by_user("u1")
            with pytest.raises(DuplicateError):
                await store.create({"userId": "u1", "invoiceNumber": "INV-1"})

        asyncio.run(scenario())
        assert len(cache) == 0

    def test_write_during_read_is_not_hidden(self):
        """A read that overlaps a write does not cache its older result."""
        inner = GatedStore(EntityType.CLIENTS)
        store = CachedEntityStore(inner, CacheService())

        async def scenario():
            inner.gate = asyncio.Event()
            inner.reading = asyncio.Event()
            slow_read = asyncio.create_task(store.find_by_user("u1"))
            await inner.reading.wait()
            await store.create({"userId": "u1", "name": "A"})
            inner.gate.set()
            stale = await slow_read
            inner.gate = None
            return stale, await store.find_by_user("u1")

        stale, fresh = asyncio.run(scenario())
        assert stale == []
        assert [doc["name"] for doc in fresh] == ["A"]


class TestEntityStoreRegistry:
    """Tests for the per-type store registry."""

    def test_one_store_per_type(self):
        """Every entity type has its own store."""
        registry = EntityStoreRegistry.in_memory()
        assert list(registry) == list(EntityType)
        assert registry[EntityType.INVOICES].unique_fields == ("invoiceNumber",)

    def test_with_cache_wraps_same_stores(self):
        """The cached registry shares the underlying stores."""
        registry = EntityStoreRegistry.in_memory()
        cached = registry.with_cache(CacheService())
        assert cached[EntityType.CLIENTS].inner is registry[EntityType.CLIENTS]

    def test_export_user_graph(self):
        """Exports use payload keys and include empty types."""
        registry = EntityStoreRegistry.in_memory()

        async def scenario():
            await registry[EntityType.CLIENTS].create({"userId": "u1", "name": "A"})
            return await registry.export_user_graph("u1")

        graph = asyncio.run(scenario())
        assert set(graph) == {t.value for t in EntityType}
        assert len(graph["clients"]) == 1
        assert graph["todos"] == []


class TestKeyedLock:
    """Tests for keyed asyncio locks."""

    def test_same_key_serializes(self):
        """Holders of one key never overlap."""
        locks = KeyedLock()
        order = []

        async def worker(name):
            async with locks.acquire("k"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        async def scenario():
            await asyncio.gather(worker("a"), worker("b"))

        asyncio.run(scenario())
        assert order == ["a-in", "a-out", "b-in", "b-out"]
        assert len(locks) == 0

    def test_different_keys_run_together(self):
        """Different keys don't block each other."""
        locks = KeyedLock()
        order = []

        async def worker(key):
            async with locks.acquire(key):
                order.append(f"{key}-in")
                await asyncio.sleep(0.01)
                order.append(f"{key}-out")

        async def scenario():
            await asyncio.gather(worker("a"), worker("b"))

        asyncio.run(scenario())
        assert order[:2] == ["a-in", "b-in"]

    def test_lock_released_on_error(self):
        """An exception inside the block frees the key."""
        locks = LockManager()

        async def scenario():
            with pytest.raises(RuntimeError):
                async with locks.for_user("u1"):
                    raise RuntimeError("boom")
            return locks.users.locked("u1")

        assert asyncio.run(scenario()) is False
        assert len(locks.users) == 0


class TestNotifiers:
    """Tests for the notification capability."""

    def test_disabled_by_default(self):
        """No settings, no notifications."""
        assert isinstance(build_notifier(), NullNotifier)
        assert isinstance(build_notifier(NotificationSettings(enabled=False)), NullNotifier)

    def test_enabled(self):
        """The flag turns on the logging notifier."""
        notifier = build_notifier(NotificationSettings(enabled=True))
        assert isinstance(notifier, LoggingNotifier)
        asyncio.run(notifier.notify("u1", "Done", "All good", {"imported": 3}))
        assert notifier.sent[0]["data"] == {"imported": 3}


class TestInMemoryAuditStorage:
    """Tests for the in-memory audit log."""

    def test_recent_events_newest_first(self):
        """Recent events come back newest first."""
        storage = InMemoryAuditStorage()
        older = AuditEventBuilder.backup_created("a").model_copy(
            update={"timestamp": datetime(2024, 1, 1, tzinfo=timezone.utc)}
        )
        newer = AuditEventBuilder.backup_created("b").model_copy(
            update={"timestamp": datetime(2024, 2, 1, tzinfo=timezone.utc)}
        )

        async def scenario():
            await storage.append_event(newer)
            await storage.append_event(older)
            return await storage.get_recent_events(limit=1)

        assert asyncio.run(scenario()) == [newer]

    def test_events_by_correlation_id(self):
        """Only events of one run are returned."""
        storage = InMemoryAuditStorage()
        correlation_id = uuid4()

        async def scenario():
            await storage.append_event(AuditEventBuilder.data_wiped("u1", {}, 0, correlation_id))
            await storage.append_event(AuditEventBuilder.data_wiped("u1", {}, 0, uuid4()))
            return await storage.get_events_by_correlation_id(correlation_id)

        events = asyncio.run(scenario())
        assert [e.correlation_id for e in events] == [correlation_id]

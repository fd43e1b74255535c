"""
Tests for the local persistence layer

Test strategy:
1. Load/save round trip on the memory and file backends
2. Debounced autosave: one write per burst, state read at firing time
3. Failures never raise; they are audited and reported as None/False
"""

import asyncio
import json
from datetime import datetime, timezone
from decimal import Decimal

from finsync.audit import AuditLogger
from finsync.config import PersistenceSettings
from finsync.models.audit import AuditEventType
from finsync.persistence import (
    FileSnapshotBackend,
    LocalPersistenceLayer,
    MemorySnapshotBackend,
    backup_file_name,
)
from finsync.services.storage import InMemoryAuditStorage


SNAPSHOT = "data.json"
BACKUPS = "backups"


def make_settings(**overrides) -> PersistenceSettings:
    values = {
        "data_file_name": SNAPSHOT,
        "backup_dir_name": BACKUPS,
        "autosave_enabled": True,
        "autosave_delay_seconds": 1,
    }
    values.update(overrides)
    return PersistenceSettings(**values)


class CountingBackend(MemorySnapshotBackend):
    """Memory backend that counts writes."""

    def __init__(self):
        super().__init__()
        self.writes = 0

    def write(self, name, text):
        self.writes += 1
        super().write(name, text)


class BrokenBackend(MemorySnapshotBackend):
    """Memory backend whose disk is always full."""

    def write(self, name, text):
        raise OSError("No space left on device")

    def list(self, folder):
        raise OSError("Permission denied")


class TestLoadAndSave:
    """Tests for the snapshot round trip."""

    def test_round_trip(self):
        """Saved graphs load back with JSON-safe values."""
        layer = LocalPersistenceLayer(MemorySnapshotBackend(), settings=make_settings())
        graph = {
            "clients": [{"id": "c1", "name": "Acme"}],
            "savings": [{
                "id": "s1",
                "currentAmount": Decimal("80.50"),
                "createdAt": datetime(2024, 1, 1, tzinfo=timezone.utc),
            }],
        }

        async def scenario():
            assert await layer.save(graph) is True
            return await layer.load()

        loaded = asyncio.run(scenario())
        assert loaded["clients"] == [{"id": "c1", "name": "Acme"}]
        assert loaded["savings"][0]["currentAmount"] == "80.50"

    def test_missing_snapshot(self):
        """No snapshot yet gives None."""
        layer = LocalPersistenceLayer(MemorySnapshotBackend(), settings=make_settings())
        assert asyncio.run(layer.load()) is None

    def test_corrupt_snapshot(self):
        """Unparseable JSON gives None and is audited."""
        backend = MemorySnapshotBackend()
        backend.blobs[SNAPSHOT] = "{not json"
        storage = InMemoryAuditStorage()
        layer = LocalPersistenceLayer(
            backend, settings=make_settings(), audit_logger=AuditLogger(storage)
        )

        assert asyncio.run(layer.load()) is None
        assert storage.events[0].event_type == AuditEventType.SNAPSHOT_FAILED
        assert storage.events[0].details["operation"] == "load"

    def test_non_object_snapshot(self):
        """A JSON array is not a graph."""
        backend = MemorySnapshotBackend()
        backend.blobs[SNAPSHOT] = "[1, 2, 3]"
        layer = LocalPersistenceLayer(backend, settings=make_settings())
        assert asyncio.run(layer.load()) is None

    def test_save_uses_state_provider(self):
        """Without data, save() asks the state provider."""
        backend = MemorySnapshotBackend()
        layer = LocalPersistenceLayer(
            backend,
            state_provider=lambda: {"todos": []},
            settings=make_settings(),
        )
        assert asyncio.run(layer.save()) is True
        assert json.loads(backend.blobs[SNAPSHOT]) == {"todos": []}

    def test_save_without_state(self):
        """Nothing to save is not an error."""
        layer = LocalPersistenceLayer(MemorySnapshotBackend(), settings=make_settings())
        assert asyncio.run(layer.save()) is False

    def test_write_failure_is_tolerated(self):
        """A full disk gives False and an audit event, never an exception."""
        storage = InMemoryAuditStorage()
        layer = LocalPersistenceLayer(
            BrokenBackend(), settings=make_settings(), audit_logger=AuditLogger(storage)
        )

        assert asyncio.run(layer.save({"clients": []})) is False
        event = storage.events[0]
        assert event.event_type == AuditEventType.SNAPSHOT_FAILED
        assert event.details["operation"] == "save"
        assert "No space left" in event.error_message

    def test_file_backend(self, tmp_path):
        """Snapshots land on disk without leftover temp files."""
        layer = LocalPersistenceLayer(FileSnapshotBackend(tmp_path), settings=make_settings())

        async def scenario():
            await layer.save({"lists": [{"name": "Default"}]})
            return await layer.load()

        assert asyncio.run(scenario()) == {"lists": [{"name": "Default"}]}
        assert (tmp_path / SNAPSHOT).exists()
        assert not (tmp_path / (SNAPSHOT + ".tmp")).exists()


class TestOperationQueue:
    """Tests for the pending operations file."""

    QUEUE = "finance-tracker-sync-queue.json"

    def test_round_trip(self):
        """Saved operations load back in order, next to the snapshot."""
        backend = MemorySnapshotBackend()
        layer = LocalPersistenceLayer(backend, settings=make_settings())
        operations = [
            {"type": "delete", "entity": "todos", "recordId": "t1"},
            {"type": "create", "entity": "clients", "data": {"name": "Acme"}},
        ]

        async def scenario():
            assert await layer.save_queue(operations) is True
            return await layer.load_queue()

        assert asyncio.run(scenario()) == operations
        assert set(backend.blobs) == {self.QUEUE}

    def test_missing_queue(self):
        """No queue file is an empty queue."""
        layer = LocalPersistenceLayer(MemorySnapshotBackend(), settings=make_settings())
        assert asyncio.run(layer.load_queue()) == []

    def test_queue_without_operations(self):
        """A queue file without an operations list is empty and audited."""
        backend = MemorySnapshotBackend()
        backend.blobs[self.QUEUE] = json.dumps({"operations": "nope"})
        storage = InMemoryAuditStorage()
        layer = LocalPersistenceLayer(
            backend, settings=make_settings(), audit_logger=AuditLogger(storage)
        )

        assert asyncio.run(layer.load_queue()) == []
        assert storage.events[0].event_type == AuditEventType.SNAPSHOT_FAILED
        assert storage.events[0].details["operation"] == "load"

    def test_queue_write_failure(self):
        """A full disk gives False, never an exception."""
        layer = LocalPersistenceLayer(BrokenBackend(), settings=make_settings())
        assert asyncio.run(layer.save_queue([{"type": "delete"}])) is False


class TestAutosave:
    """Tests for the debounced autosave."""

    def test_burst_produces_one_write(self):
        """Rescheduling cancels the pending write; the last state is saved."""
        backend = CountingBackend()
        state = {"version": 0}
        layer = LocalPersistenceLayer(
            backend,
            state_provider=lambda: dict(state),
            settings=make_settings(),
            autosave_delay=0.05,
        )

        async def scenario():
            for version in range(5):
                state["version"] = version
                layer.schedule_save()
                await asyncio.sleep(0.001)
            state["version"] = 99
            await asyncio.sleep(0.3)

        asyncio.run(scenario())
        assert backend.writes == 1
        assert json.loads(backend.blobs[SNAPSHOT]) == {"version": 99}

    def test_flush_writes_immediately(self):
        """flush() runs the pending write and clears the timer."""
        backend = CountingBackend()
        layer = LocalPersistenceLayer(
            backend,
            state_provider=lambda: {"clients": []},
            settings=make_settings(),
            autosave_delay=0.05,
        )

        async def scenario():
            layer.schedule_save()
            assert layer.has_pending_save
            assert await layer.flush() is True
            assert not layer.has_pending_save
            await asyncio.sleep(0.15)

        asyncio.run(scenario())
        assert backend.writes == 1

    def test_close_drops_pending_write(self):
        """close() cancels without writing."""
        backend = CountingBackend()
        layer = LocalPersistenceLayer(
            backend,
            state_provider=lambda: {"clients": []},
            settings=make_settings(),
            autosave_delay=0.05,
        )

        async def scenario():
            layer.schedule_save()
            layer.close()
            await asyncio.sleep(0.15)

        asyncio.run(scenario())
        assert backend.writes == 0

    def test_disabled_autosave(self):
        """Disabling autosave refuses new schedules and cancels pending ones."""
        backend = CountingBackend()
        layer = LocalPersistenceLayer(
            backend,
            state_provider=lambda: {"clients": []},
            settings=make_settings(),
            autosave_delay=0.05,
        )

        async def scenario():
            layer.schedule_save()
            layer.set_autosave(False)
            assert layer.schedule_save() is False
            await asyncio.sleep(0.15)

        asyncio.run(scenario())
        assert backend.writes == 0
        assert layer.autosave_enabled is False

    def test_delay_from_settings(self):
        """The delay comes from settings unless overridden."""
        layer = LocalPersistenceLayer(
            MemorySnapshotBackend(), settings=make_settings(autosave_delay_seconds=2.5)
        )
        assert layer.autosave_delay == 2.5


class TestBackups:
    """Tests for manual backups."""

    MOMENT = datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)

    def test_backup_file_name(self):
        """Colons and dots in the timestamp become dashes."""
        assert backup_file_name(self.MOMENT) == "backup-2024-01-02T03-04-05-678Z.json"

    def test_create_backup(self):
        """The backup is written under the backup folder and audited."""
        backend = MemorySnapshotBackend()
        storage = InMemoryAuditStorage()
        layer = LocalPersistenceLayer(
            backend,
            settings=make_settings(),
            audit_logger=AuditLogger(storage),
            clock=lambda: self.MOMENT,
        )

        location = asyncio.run(layer.create_backup({"clients": []}))

        assert location == "backups/backup-2024-01-02T03-04-05-678Z.json"
        assert json.loads(backend.blobs[location]) == {"clients": []}
        assert storage.events[0].event_type == AuditEventType.BACKUP_CREATED

    def test_backup_failure(self):
        """A failed backup gives None."""
        layer = LocalPersistenceLayer(BrokenBackend(), settings=make_settings())
        assert asyncio.run(layer.create_backup({"clients": []})) is None

    def test_list_backups_newest_first(self):
        """Backups are listed newest first; other files are ignored."""
        backend = MemorySnapshotBackend()
        moments = iter([
            datetime(2024, 1, 1, tzinfo=timezone.utc),
            datetime(2024, 3, 1, tzinfo=timezone.utc),
            datetime(2024, 2, 1, tzinfo=timezone.utc),
        ])
        layer = LocalPersistenceLayer(
            backend, settings=make_settings(), clock=lambda: next(moments)
        )
        backend.blobs["backups/notes.txt"] = "x"

        async def scenario():
            for _ in range(3):
                await layer.create_backup({"clients": []})
            return await layer.list_backups()

        names = asyncio.run(scenario())
        assert [name.split("/")[-1][7:17] for name in names] == [
            "2024-03-01",
            "2024-02-01",
            "2024-01-01",
        ]

    def test_list_backups_failure(self):
        """An unreadable backup folder lists as empty."""
        layer = LocalPersistenceLayer(BrokenBackend(), settings=make_settings())
        assert asyncio.run(layer.list_backups()) == []

    def test_file_backend_backups(self, tmp_path):
        """On disk, the location is the full path."""
        layer = LocalPersistenceLayer(
            FileSnapshotBackend(tmp_path),
            settings=make_settings(),
            clock=lambda: self.MOMENT,
        )

        async def scenario():
            location = await layer.create_backup({"clients": []})
            return location, await layer.list_backups()

        location, names = asyncio.run(scenario())
        assert location == str(tmp_path / BACKUPS / "backup-2024-01-02T03-04-05-678Z.json")
        assert names == ["backups/backup-2024-01-02T03-04-05-678Z.json"]

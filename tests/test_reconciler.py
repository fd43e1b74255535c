"""
Tests for whole-graph reconciliation

Test strategy:
1. Resolved records replace their remote counterparts in place
2. Manual conflicts leave the remote copy untouched and are reported
3. Every resolution is audited; the resolved graph is snapshotted
"""

import asyncio

from finsync.audit import AuditLogger
from finsync.models.audit import AuditEventType
from finsync.models.entities import EntityType
from finsync.models.sync import ResolutionSource
from finsync.persistence import LocalPersistenceLayer, MemorySnapshotBackend
from finsync.services.storage import InMemoryAuditStorage
from finsync.sync import SyncReconciler


OLDER = "2024-01-01T00:00:00.000Z"
NEWER = "2024-02-01T00:00:00.000Z"


def local_graph():
    return {
        "clients": [
            {"id": 1, "mongoId": "c1", "name": "Local name", "updatedAt": NEWER},
            {"id": 2, "mongoId": "c2", "name": "Unchanged", "updatedAt": OLDER},
        ],
        "income": [
            {"id": 9, "mongoId": "i1", "amount": 100, "updatedAt": OLDER},
        ],
    }


def remote_graph():
    return {
        "clients": [
            {"_id": "c1", "name": "Remote name", "updatedAt": OLDER},
            {"_id": "c2", "name": "Unchanged", "updatedAt": NEWER},
            {"_id": "c3", "name": "Remote only", "updatedAt": OLDER},
        ],
        "income": [
            {"_id": "i1", "amount": 250, "updatedAt": NEWER},
        ],
    }


class TestSyncReconciler:
    """Tests for SyncReconciler.reconcile."""

    def test_last_write_wins_across_graph(self):
        """Newer copies win per record; positions are kept."""
        report = asyncio.run(SyncReconciler().reconcile(local_graph(), remote_graph()))
        clients = report.resolved_graph["clients"]

        assert [c.get("name") for c in clients] == ["Local name", "Unchanged", "Remote only"]
        assert report.resolved_graph["income"][0]["amount"] == 250
        assert report.conflict_count == 2
        assert report.unresolved_count == 0

        sources = {e.canonical_id: e.resolution.source for e in report.entries}
        assert sources == {"c1": ResolutionSource.LOCAL, "i1": ResolutionSource.SERVER}

    def test_graph_has_every_entity_type(self):
        """Types absent from both sides come back as empty lists."""
        report = asyncio.run(SyncReconciler().reconcile({}, {}))
        assert set(report.resolved_graph) == {t.value for t in EntityType}
        assert report.conflict_count == 0

    def test_inputs_not_mutated(self):
        """The remote graph passed in is not modified."""
        remote = remote_graph()
        asyncio.run(SyncReconciler().reconcile(local_graph(), remote))
        assert remote["clients"][0]["name"] == "Remote name"

    def test_manual_keeps_remote(self):
        """MANUAL leaves the remote copy and flags the entry."""
        report = asyncio.run(
            SyncReconciler().reconcile(local_graph(), remote_graph(), "manual")
        )
        assert report.resolved_graph["clients"][0]["name"] == "Remote name"
        assert report.unresolved_count == 2
        assert all(e.requires_manual_resolution for e in report.entries)

    def test_resolutions_are_audited(self):
        """One audit event per conflict, sharing a correlation id."""
        storage = InMemoryAuditStorage()
        reconciler = SyncReconciler(audit_logger=AuditLogger(storage))

        asyncio.run(reconciler.reconcile(local_graph(), remote_graph()))

        assert [e.event_type for e in storage.events] == [AuditEventType.CONFLICT_RESOLVED] * 2
        assert len({e.correlation_id for e in storage.events}) == 1

    def test_manual_conflicts_are_audited(self):
        """Manual conflicts are recorded with their changed fields."""
        storage = InMemoryAuditStorage()
        reconciler = SyncReconciler(audit_logger=AuditLogger(storage))

        asyncio.run(reconciler.reconcile(local_graph(), remote_graph(), "manual"))

        event = storage.events[0]
        assert event.event_type == AuditEventType.MANUAL_RESOLUTION_REQUIRED
        assert event.details["changed_fields"] == ["name"]

    def test_resolved_graph_is_snapshotted(self):
        """With a persistence layer the resolved graph is written."""
        backend = MemorySnapshotBackend()
        persistence = LocalPersistenceLayer(backend)
        reconciler = SyncReconciler(persistence=persistence)

        async def scenario():
            await reconciler.reconcile(local_graph(), remote_graph())
            return await persistence.load()

        snapshot = asyncio.run(scenario())
        assert snapshot["clients"][0]["name"] == "Local name"

    def test_no_conflicts_no_snapshot(self):
        """Nothing is written when the graphs agree."""
        backend = MemorySnapshotBackend()
        reconciler = SyncReconciler(persistence=LocalPersistenceLayer(backend))
        asyncio.run(reconciler.reconcile(remote_graph(), remote_graph()))
        assert backend.blobs == {}

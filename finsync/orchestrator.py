"""
Main Orchestrator for the Finance Tracker Sync Core

This module ties together all the components and defines the
end-to-end flows for:
1. Migration (export file -> wipe -> ordered reimport -> result)
2. Sync (queue replay -> push local-only records -> reconcile against the
   remote graph -> write local wins back -> snapshot)

DESIGN DECISION: The orchestrator owns the wiring:
- One lock manager shared by the importer, the savings ledger and sync
- One cache instance shared by every store
- Every flow audited through the same logger

Components never construct their own collaborators in production; the
factory at the bottom builds the whole graph from settings.
"""

from typing import Any, NamedTuple, Optional, Union

import structlog
from pydantic import ValidationError

from finsync.audit import AuditLogger
from finsync.concurrency import LockManager
from finsync.config import Settings, get_settings
from finsync.migration import MigrationImporter
from finsync.models.entities import RECORD_MODELS, EntityType
from finsync.models.migration import ImportResult, WipeResult
from finsync.models.sync import (
    OperationType,
    PendingOperation,
    ReconciliationReport,
    ResolutionSource,
    SyncResult,
)
from finsync.persistence import FileSnapshotBackend, LocalPersistenceLayer
from finsync.savings import SavingsLedgerService
from finsync.services import (
    AuditStorageInterface,
    CacheService,
    DuplicateError,
    EntityStoreRegistry,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    InMemoryAuditStorage,
    Notifier,
    NotFoundError,
    StorageError,
    build_notifier,
)
from finsync.sync import ConflictDetector, ConflictResolver, SyncReconciler
from finsync.sync.detector import CANONICAL_ID_FIELDS, canonical_id
from finsync.sync.resolver import StrategyLike


logger = structlog.get_logger(__name__)


Graph = dict[str, list[dict[str, Any]]]

# Results that keep local content and so must reach the store
_LOCAL_SOURCES = (ResolutionSource.LOCAL, ResolutionSource.MERGED)

# Failures that a retry cannot fix
_PERMANENT_ERRORS = (NotFoundError, DuplicateError, ValidationError)


def _outgoing_document(entity_type: EntityType, user_id: str, record: dict[str, Any]) -> dict:
    """Validate a local record into the document the store expects."""
    data = {k: v for k, v in record.items() if k not in CANONICAL_ID_FIELDS}
    data["userId"] = user_id
    return RECORD_MODELS[entity_type].model_validate(data).to_document()


class SyncFlow:
    """
    Orchestrates a push-then-pull sync for one user.

    Flow (under the user's lock, so it never interleaves with a migration):
    1. Replay queued operations; transient failures stay queued
    2. Push local records the store has never seen (no canonical id)
    3. Read the remote graph and reconcile the local graph against it
    4. Write resolutions that kept local content back to the store
    5. Keep the resolved graph as current state and snapshot it

    Local records carrying a canonical id the store no longer has were
    deleted remotely and are dropped. Local records that could not be
    pushed stay in the graph and are retried on the next sync.
    """

    def __init__(
        self,
        stores: EntityStoreRegistry,
        persistence: LocalPersistenceLayer,
        reconciler: SyncReconciler,
        locks: Optional[LockManager] = None,
    ):
        self._stores = stores
        self._persistence = persistence
        self._reconciler = reconciler
        self._locks = locks or LockManager()
        self._graph: Optional[Graph] = None
        self._queue: list[PendingOperation] = []
        persistence.set_state_provider(lambda: self._graph)

    @property
    def current_graph(self) -> Optional[Graph]:
        return self._graph

    @property
    def pending_operations(self) -> list[PendingOperation]:
        return list(self._queue)

    async def start(self) -> Optional[Graph]:
        """Load the last snapshot and the pending queue as current state."""
        self._graph = await self._persistence.load()
        self._queue = []
        for raw in await self._persistence.load_queue():
            try:
                operation = PendingOperation.model_validate(raw)
                EntityType(operation.entity)
            except ValueError as e:
                logger.warning("queued_operation_unreadable", error=str(e))
                continue
            self._queue.append(operation)
        return self._graph

    def mark_changed(self) -> bool:
        """Call after any local mutation; debounces the snapshot write."""
        return self._persistence.schedule_save()

    async def discard_local_state(self) -> None:
        """Forget the local graph and the queue (after a wipe or reimport)."""
        self._persistence.close()
        self._graph = None
        self._queue = []
        await self._save_queue()

    # -------------------------------------------------------------------------
    # Offline queue
    # -------------------------------------------------------------------------

    async def queue_operation(
        self,
        entity_type: Union[EntityType, str],
        operation_type: Union[OperationType, str],
        data: Optional[dict[str, Any]] = None,
        record_id: Optional[str] = None,
    ) -> PendingOperation:
        """
        Record a store write to apply on the next sync.

        Records added to the current graph are pushed without queueing;
        the queue is for writes the graph cannot express, such as deletes.
        """
        operation = PendingOperation(
            type=OperationType(operation_type),
            entity=EntityType(entity_type).value,
            record_id=record_id,
            data=dict(data or {}),
        )
        if operation.type != OperationType.CREATE and not record_id:
            raise ValueError(f"{operation.type} operations need a record id")

        self._queue.append(operation)
        await self._save_queue()
        return operation

    async def process_queue(self, user_id: str) -> int:
        """Replay queued operations; returns how many were applied."""
        async with self._locks.for_user(user_id):
            return await self._replay(user_id)

    async def _save_queue(self) -> bool:
        return await self._persistence.save_queue(
            [operation.model_dump(by_alias=True, mode="json") for operation in self._queue]
        )

    async def _apply(self, user_id: str, operation: PendingOperation) -> None:
        entity_type = EntityType(operation.entity)
        store = self._stores[entity_type]
        if operation.type == OperationType.CREATE:
            await store.create(_outgoing_document(entity_type, user_id, operation.data))
        elif operation.type == OperationType.UPDATE:
            await store.update(user_id, operation.record_id, operation.data)
        else:
            await store.delete(user_id, operation.record_id)

    async def _replay(self, user_id: str) -> int:
        if not self._queue:
            return 0

        queue, self._queue = self._queue, []
        applied = 0
        for operation in queue:
            try:
                await self._apply(user_id, operation)
                applied += 1
            except _PERMANENT_ERRORS as e:
                logger.warning(
                    "queued_operation_dropped",
                    operation=operation.type,
                    entity=operation.entity,
                    record_id=operation.record_id,
                    error=str(e),
                )
            except StorageError as e:
                operation.attempts += 1
                operation.last_error = str(e)
                self._queue.append(operation)

        await self._save_queue()
        logger.info("queue_replayed", applied=applied, pending=len(self._queue))
        return applied

    # -------------------------------------------------------------------------
    # Push / pull
    # -------------------------------------------------------------------------

    async def _push_new_records(self, user_id: str, local: Graph, errors: list[str]) -> int:
        """Create local-only records remotely and give them their canonical ids."""
        pushed = 0
        for entity_type in EntityType:
            items = local.get(entity_type.value) or []
            for index, record in enumerate(items):
                if canonical_id(record) is not None:
                    continue
                try:
                    document = _outgoing_document(entity_type, user_id, record)
                    items[index] = await self._stores[entity_type].create(document)
                    pushed += 1
                except (ValidationError, StorageError) as e:
                    errors.append(f"{entity_type.value}: {e}")
                    logger.warning("local_record_not_pushed", entity_type=entity_type.value, error=str(e))
        return pushed

    async def _write_back(
        self,
        user_id: str,
        report: ReconciliationReport,
        errors: list[str],
    ) -> int:
        """Store every resolution that kept local content; queue the ones that fail."""
        written = 0
        for entry in report.entries:
            resolution = entry.resolution
            if not resolution.resolved or resolution.source not in _LOCAL_SOURCES:
                continue

            entity_type = EntityType(entry.entity_type)
            try:
                changes = _outgoing_document(entity_type, user_id, resolution.data)
                stored = await self._stores[entity_type].update(user_id, entry.canonical_id, changes)
            except _PERMANENT_ERRORS as e:
                errors.append(f"{entity_type.value} {entry.canonical_id}: {e}")
                continue
            except StorageError as e:
                errors.append(f"{entity_type.value} {entry.canonical_id}: {e}")
                self._queue.append(PendingOperation(
                    type=OperationType.UPDATE,
                    entity=entity_type.value,
                    record_id=entry.canonical_id,
                    data=changes,
                    attempts=1,
                    last_error=str(e),
                ))
                continue

            items = report.resolved_graph[entity_type.value]
            for index, item in enumerate(items):
                if canonical_id(item) == entry.canonical_id:
                    items[index] = stored
            written += 1
        return written

    async def pull(self, user_id: str, strategy: StrategyLike = None) -> SyncResult:
        errors: list[str] = []
        async with self._locks.for_user(user_id):
            replayed = await self._replay(user_id)

            local = self._graph or {}
            pushed = await self._push_new_records(user_id, local, errors)

            remote = await self._stores.export_user_graph(user_id)
            report = await self._reconciler.reconcile(local, remote, strategy)
            written_back = await self._write_back(user_id, report, errors)

            # Records that could not be pushed survive until the next sync
            for key, items in local.items():
                if key not in report.resolved_graph:
                    continue
                report.resolved_graph[key].extend(
                    item for item in items if canonical_id(item) is None
                )

            self._graph = report.resolved_graph
            await self._save_queue()
            await self._persistence.save()

        result = SyncResult(
            report=report,
            replayed=replayed,
            pushed=pushed,
            written_back=written_back,
            pending=len(self._queue),
            errors=errors,
        )
        logger.info(
            "sync_finished",
            user_id=user_id,
            pushed=pushed,
            written_back=written_back,
            conflicts=result.conflict_count,
            pending=result.pending,
        )
        return result


class MigrationFlow:
    """
    Orchestrates the bulk import from an export file.

    Upload and wipe both replace the remote dataset, so the local graph and
    queue are discarded and rebuilt from the store; otherwise the next sync
    would push stale local records back.
    """

    def __init__(self, importer: MigrationImporter, sync_flow: Optional[SyncFlow] = None):
        self._importer = importer
        self._sync_flow = sync_flow

    @property
    def importer(self) -> MigrationImporter:
        return self._importer

    async def _refresh(self, user_id: str) -> None:
        if self._sync_flow is not None:
            await self._sync_flow.discard_local_state()
            await self._sync_flow.pull(user_id)

    async def upload(self, user_id: str, payload: Any) -> ImportResult:
        result = await self._importer.run(user_id, payload)
        await self._refresh(user_id)
        return result

    async def wipe(self, user_id: str) -> WipeResult:
        result = await self._importer.clear_all(user_id)
        await self._refresh(user_id)
        return result


class AppComponents(NamedTuple):
    stores: EntityStoreRegistry
    locks: LockManager
    audit_logger: AuditLogger
    ledger: SavingsLedgerService
    importer: MigrationImporter
    persistence: LocalPersistenceLayer
    sync_flow: SyncFlow
    migration_flow: MigrationFlow
    cache: CacheService
    notifier: Notifier
    sheets_client: Optional[GoogleSheetsClient]


def _build_storage(
    settings: Settings,
) -> tuple[EntityStoreRegistry, AuditStorageInterface, Optional[GoogleSheetsClient]]:
    if settings.app.storage_backend == "google_sheets":
        try:
            client = GoogleSheetsClient(settings.google_sheets)
            client.get_spreadsheet()
            return (
                EntityStoreRegistry.google_sheets(client),
                GoogleSheetsAuditStorage(client),
                client,
            )
        except Exception as e:
            # Storage not configured - continue with in-memory stores
            logger.warning("sheets_storage_unavailable", error=str(e), fallback="memory")

    return EntityStoreRegistry.in_memory(), InMemoryAuditStorage(), None


def create_app_components(settings: Optional[Settings] = None) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to build from; defaults to get_settings()

    Returns:
        AppComponents with every service wired to its collaborators
    """
    settings = settings or get_settings()

    raw_stores, audit_storage, sheets_client = _build_storage(settings)
    cache = CacheService(ttl_seconds=settings.cache.ttl_seconds)
    stores = raw_stores.with_cache(cache)

    audit_logger = AuditLogger(audit_storage)
    locks = LockManager()
    notifier = build_notifier(settings.notifications)

    ledger = SavingsLedgerService(stores, locks, audit_logger)
    importer = MigrationImporter(
        stores,
        ledger=ledger,
        locks=locks,
        settings=settings.migration,
        audit_logger=audit_logger,
        notifier=notifier,
    )

    persistence = LocalPersistenceLayer(
        FileSnapshotBackend(settings.persistence.data_path),
        settings=settings.persistence,
        audit_logger=audit_logger,
    )
    reconciler = SyncReconciler(
        ConflictDetector(),
        ConflictResolver(settings.sync.default_strategy),
        audit_logger=audit_logger,
    )
    sync_flow = SyncFlow(stores, persistence, reconciler, locks)
    migration_flow = MigrationFlow(importer, sync_flow)

    return AppComponents(
        stores=stores,
        locks=locks,
        audit_logger=audit_logger,
        ledger=ledger,
        importer=importer,
        persistence=persistence,
        sync_flow=sync_flow,
        migration_flow=migration_flow,
        cache=cache,
        notifier=notifier,
        sheets_client=sheets_client,
    )

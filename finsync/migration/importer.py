"""
Migration Importer

Replaces a user's entire remote dataset with a previously exported graph.

Flow:
    IDLE -> DELETING -> IMPORTING -> RECONCILING -> DONE
                 \\___________\\____________\\_____> FAILED (systemic only)

1. DELETING: every record of all twelve types is removed for the user.
2. IMPORTING: types are imported in dependency order so foreign keys can
   be rewritten from payload-local ids to the canonical ids the store
   assigns (clients before income, savings before their transactions...).
3. RECONCILING: expenses pointing at a recurring parent are linked in a
   second pass, since a parent may appear after its children.

CRITICAL: A bad record never stops the import. Its error is recorded
against its type and the loop moves on. Only precondition failures and a
store outage abort the run, and there is no rollback: records written
before an outage stay written.

DESIGN DECISION: The whole run holds the per-user lock, so ordinary writes
for the same user (e.g. a savings transaction) wait until the import is done
instead of landing between the wipe and the reimport.
"""

import json
import time
from typing import Any, Callable, Optional, Union

import structlog
from pydantic import ValidationError

from finsync.audit.logger import AuditLogger, create_correlation_id
from finsync.concurrency import LockManager
from finsync.config import MigrationSettings
from finsync.models.entities import (
    RECORD_MODELS,
    EntityType,
)
from finsync.models.migration import (
    ImportResult,
    MigrationState,
    RecordError,
    TypeImportResult,
    WipeResult,
)
from finsync.models.timestamps import utcnow
from finsync.savings.ledger import SavingsLedgerService
from finsync.services.notifications import Notifier, NullNotifier
from finsync.services.storage import (
    EntityStoreRegistry,
    StorageConnectionError,
)


logger = structlog.get_logger(__name__)

Payload = Union[dict[str, Any], str, bytes]

# Keys that belong to the exporting system, never copied into a new record
SOURCE_IDENTITY_FIELDS = ("id", "_id", "mongoId", "userId")


# =============================================================================
# EXCEPTIONS
# =============================================================================

class MigrationError(Exception):
    """Base exception for migration errors."""
    pass


class MigrationPreconditionError(MigrationError):
    """The run cannot start: no user, or the payload is not an import graph."""
    pass


class UnresolvedReferenceError(MigrationError):
    """A required foreign key did not resolve through the remap table."""
    pass


# =============================================================================
# HELPERS
# =============================================================================

def describe_error(error: Exception) -> str:
    """Short message for a per-record failure."""
    if isinstance(error, ValidationError):
        return "; ".join(
            f"{'.'.join(str(part) for part in e['loc'])}: {e['msg']}" if e["loc"] else e["msg"]
            for e in error.errors()
        )
    return str(error) or type(error).__name__


def _local_key(value: Any) -> Optional[str]:
    """Payload-local ids may be numbers or strings; compare them as text."""
    if value is None or value == "":
        return None
    return str(value)


def _clean(record: dict[str, Any]) -> dict[str, Any]:
    """
    Drop source identity and empty values so model defaults apply.

    Exports write missing optional fields as null or "", both of which mean
    "use the default" here.
    """
    return {
        key: value
        for key, value in record.items()
        if key not in SOURCE_IDENTITY_FIELDS and value is not None and value != ""
    }


def parse_payload(payload: Payload) -> dict[str, list]:
    """
    Decode and validate the import graph.

    Raises:
        MigrationPreconditionError: If the payload is not a JSON object or a
            known key holds something other than an array
    """
    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError:
            raise MigrationPreconditionError("Invalid data format: not UTF-8 text")
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as e:
            raise MigrationPreconditionError(f"Invalid data format: {e.msg}")
    if not isinstance(payload, dict):
        raise MigrationPreconditionError("Invalid data format: expected a JSON object")

    graph: dict[str, list] = {}
    for entity_type in EntityType:
        value = payload.get(entity_type.value)
        if value is None:
            graph[entity_type.value] = []
        elif isinstance(value, list):
            graph[entity_type.value] = value
        else:
            raise MigrationPreconditionError(
                f"Invalid data format: '{entity_type.value}' must be an array"
            )
    return graph


# =============================================================================
# IMPORTER
# =============================================================================

class _Run:
    """Mutable state of one import: remap tables and per-type results."""

    def __init__(self, user_id: str, correlation_id):
        self.user_id = user_id
        self.correlation_id = correlation_id
        self.remap: dict[EntityType, dict[str, str]] = {t: {} for t in EntityType}
        self.results: dict[EntityType, TypeImportResult] = {
            t: TypeImportResult() for t in EntityType
        }
        self.default_list_id: Optional[str] = None
        # (canonical expense id, payload-local parent reference)
        self.pending_parents: list[tuple[str, Any]] = []
        self.invoice_sequence = 0


class MigrationImporter:
    """
    Clean-slate importer for one user's exported graph.

    Usage:
        importer = MigrationImporter(stores, ledger, locks)
        result = await importer.run(user_id, payload)
        result.to_dict()  # {success, summary, details}
    """

    def __init__(
        self,
        stores: EntityStoreRegistry,
        ledger: Optional[SavingsLedgerService] = None,
        locks: Optional[LockManager] = None,
        settings: Optional[MigrationSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable = utcnow,
    ):
        self._stores = stores
        self._locks = locks or LockManager()
        self._audit = audit_logger or AuditLogger()
        self._ledger = ledger or SavingsLedgerService(stores, self._locks, self._audit)
        self._settings = settings or MigrationSettings()
        self._notifier = notifier or NullNotifier()
        self._clock = clock
        self._state = MigrationState.IDLE

    @property
    def state(self) -> MigrationState:
        """State of the most recent run."""
        return self._state

    def _set_state(self, state: MigrationState, user_id: Optional[str]) -> None:
        self._state = state
        logger.info("migration_state", state=state.value, user_id=user_id)

    # -------------------------------------------------------------------------
    # Wipe
    # -------------------------------------------------------------------------

    async def clear_all(self, user_id: str) -> WipeResult:
        """
        Delete every record the user owns, across all twelve types.

        Idempotent: a second call reports zero everywhere.
        """
        if not user_id:
            raise MigrationPreconditionError("Not authenticated")
        async with self._locks.for_user(user_id):
            return await self._wipe(user_id, correlation_id=None)

    async def _wipe(self, user_id: str, correlation_id) -> WipeResult:
        deleted: dict[str, int] = {}
        for entity_type in EntityType:
            deleted[entity_type.value] = await self._stores[entity_type].delete_all_by_user(user_id)

        result = WipeResult(deleted=deleted, total=sum(deleted.values()))
        await self._audit.log_data_wiped(
            user_id=user_id,
            deleted=result.deleted,
            total=result.total,
            correlation_id=correlation_id,
        )
        return result

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    async def run(self, user_id: str, payload: Payload) -> ImportResult:
        """
        Wipe the user's data and import the payload graph.

        Raises:
            MigrationPreconditionError: No user id, or malformed payload
            StorageConnectionError: The store became unreachable mid-run
        """
        correlation_id = create_correlation_id()
        try:
            if not user_id:
                raise MigrationPreconditionError("Not authenticated")
            graph = parse_payload(payload)
        except MigrationPreconditionError as e:
            self._set_state(MigrationState.FAILED, user_id or None)
            await self._audit.log_migration_failed(
                user_id or None, MigrationState.IDLE.value, str(e), correlation_id
            )
            raise

        await self._audit.log_migration_started(
            user_id=user_id,
            payload_counts={key: len(items) for key, items in graph.items() if items},
            correlation_id=correlation_id,
        )

        async with self._locks.for_user(user_id):
            try:
                self._set_state(MigrationState.DELETING, user_id)
                wiped = await self._wipe(user_id, correlation_id)

                self._set_state(MigrationState.IMPORTING, user_id)
                run = _Run(user_id, correlation_id)
                await self._import_graph(run, graph)

                self._set_state(MigrationState.RECONCILING, user_id)
                await self._link_recurring_parents(run)
            except Exception as e:
                failed_in = self._state.value
                self._set_state(MigrationState.FAILED, user_id)
                await self._audit.log_migration_failed(
                    user_id, failed_in, str(e), correlation_id
                )
                raise

            self._set_state(MigrationState.DONE, user_id)

        result = ImportResult.from_details(run.results, deleted=wiped)
        await self._audit.log_migration_completed(
            user_id=user_id,
            imported=result.summary.imported,
            errors=result.summary.errors,
            correlation_id=correlation_id,
        )
        await self._notify(user_id, result)
        return result

    async def _notify(self, user_id: str, result: ImportResult) -> None:
        try:
            await self._notifier.notify(
                user_id,
                "Data migration complete",
                f"Imported {result.summary.imported} records "
                f"({result.summary.errors} skipped)",
                data=result.summary.model_dump(),
            )
        except Exception as e:
            # The data is already imported; a failed notification changes nothing
            logger.warning("migration_notification_failed", user_id=user_id, error=str(e))

    async def _import_graph(self, run: _Run, graph: dict[str, list]) -> None:
        # Dependency order: referenced types before the types that point at them
        steps = [
            (EntityType.LISTS, self._import_list),
            (EntityType.CLIENTS, self._import_plain),
            (EntityType.INCOME, self._import_client_optional),
            (EntityType.EXPENSES, self._import_expense),
            (EntityType.INVOICES, self._import_invoice),
            (EntityType.EXPECTED_INCOME, self._import_expected_income),
            (EntityType.DEBTS, self._import_plain),
            (EntityType.GOALS, self._import_plain),
            (EntityType.TODOS, self._import_todo),
            (EntityType.SAVINGS, self._import_plain),
            (EntityType.SAVINGS_TRANSACTIONS, self._import_savings_transaction),
            (EntityType.OPENING_BALANCES, self._import_opening_balance),
        ]

        run.default_list_id = await self._ensure_default_list(run.user_id)

        for entity_type, importer in steps:
            for record in graph[entity_type.value]:
                await self._import_one(run, entity_type, record, importer)

    async def _import_one(self, run: _Run, entity_type: EntityType, record: Any, importer) -> None:
        local_id = record.get("id") if isinstance(record, dict) else None
        try:
            if not isinstance(record, dict):
                raise MigrationError("Record is not an object")
            canonical = await importer(run, entity_type, record)
        except StorageConnectionError:
            raise
        except Exception as e:
            message = describe_error(e)
            run.results[entity_type].errors.append(RecordError(id=local_id, error=message))
            await self._audit.log_record_import_failed(
                user_id=run.user_id,
                entity_type=entity_type.value,
                local_id=local_id,
                error=message,
                correlation_id=run.correlation_id,
            )
            return

        run.results[entity_type].imported += 1
        key = _local_key(local_id)
        if key is not None and canonical is not None:
            run.remap[entity_type][key] = canonical

    # -------------------------------------------------------------------------
    # Per-type importers; each returns the canonical id of the record
    # -------------------------------------------------------------------------

    def _build(self, run: _Run, entity_type: EntityType, record: dict, **overrides) -> dict:
        """Validate a cleaned payload record into a store document."""
        data = {**_clean(record), **overrides, "userId": run.user_id}
        data.setdefault("currency", self._settings.default_currency)
        return RECORD_MODELS[entity_type].model_validate(data).to_document()

    async def _create(self, run: _Run, entity_type: EntityType, document: dict) -> str:
        created = await self._stores[entity_type].create(document)
        return created["id"]

    async def _ensure_default_list(self, user_id: str) -> str:
        """The user's Default list, created if it doesn't exist yet."""
        store = self._stores[EntityType.LISTS]
        existing = await store.find_first(user_id, name=self._settings.default_list_name)
        if existing is not None:
            return existing["id"]
        created = await store.create({
            "userId": user_id,
            "name": self._settings.default_list_name,
            "color": self._settings.default_list_color,
            "createdAt": self._clock(),
            "updatedAt": self._clock(),
        })
        return created["id"]

    async def _import_list(self, run: _Run, entity_type: EntityType, record: dict) -> str:
        name = str(record.get("name") or "").strip()
        if name == self._settings.default_list_name and run.default_list_id:
            return run.default_list_id
        document = self._build(run, entity_type, record)
        return await self._create(run, entity_type, document)

    async def _import_plain(self, run: _Run, entity_type: EntityType, record: dict) -> str:
        return await self._create(run, entity_type, self._build(run, entity_type, record))

    def _client_ref(self, run: _Run, record: dict) -> Optional[str]:
        key = _local_key(record.get("clientId"))
        return run.remap[EntityType.CLIENTS].get(key) if key else None

    async def _import_client_optional(self, run: _Run, entity_type: EntityType, record: dict) -> str:
        # Income survives a dangling client reference; it just loses the link
        document = self._build(run, entity_type, record, clientId=self._client_ref(run, record))
        return await self._create(run, entity_type, document)

    async def _import_expense(self, run: _Run, entity_type: EntityType, record: dict) -> str:
        document = self._build(
            run, entity_type, record,
            clientId=self._client_ref(run, record),
            parentRecurringId=None,
        )
        canonical = await self._create(run, entity_type, document)
        parent = record.get("parentRecurringId")
        if _local_key(parent) is not None:
            run.pending_parents.append((canonical, parent))
        return canonical

    async def _import_invoice(self, run: _Run, entity_type: EntityType, record: dict) -> str:
        client_id = self._client_ref(run, record)
        if client_id is None:
            raise UnresolvedReferenceError("Client not found")

        overrides = {"clientId": client_id}
        if not str(record.get("invoiceNumber") or "").strip():
            run.invoice_sequence += 1
            overrides["invoiceNumber"] = f"INV-{int(time.time() * 1000)}-{run.invoice_sequence}"
        document = self._build(run, entity_type, record, **overrides)
        return await self._create(run, entity_type, document)

    async def _import_expected_income(self, run: _Run, entity_type: EntityType, record: dict) -> str:
        client_id = self._client_ref(run, record)
        if client_id is None:
            raise UnresolvedReferenceError("Client not found")

        document = self._build(run, entity_type, record, clientId=client_id)
        store = self._stores[entity_type]
        existing = await store.find_first(
            run.user_id, clientId=client_id, period=document["period"]
        )
        if existing is None:
            return await self._create(run, entity_type, document)

        updated = await store.update(run.user_id, existing["id"], {
            "expectedAmount": document["expectedAmount"],
            "currency": document["currency"],
            "notes": document["notes"],
            "isPaid": document["isPaid"],
        })
        return updated["id"]

    async def _import_todo(self, run: _Run, entity_type: EntityType, record: dict) -> str:
        key = _local_key(record.get("listId"))
        list_id = run.remap[EntityType.LISTS].get(key) if key else None
        list_id = list_id or run.default_list_id
        if list_id is None:
            raise UnresolvedReferenceError("No list found")

        document = self._build(run, entity_type, record, listId=list_id)
        return await self._create(run, entity_type, document)

    async def _import_savings_transaction(
        self, run: _Run, entity_type: EntityType, record: dict,
    ) -> str:
        key = _local_key(record.get("savingsId"))
        savings_id = run.remap[EntityType.SAVINGS].get(key) if key else None
        if savings_id is None:
            raise UnresolvedReferenceError("Savings not found")

        document = self._build(run, entity_type, record, savingsId=savings_id)
        canonical = await self._create(run, entity_type, document)
        await self._ledger.recompute_saving(run.user_id, savings_id)
        return canonical

    async def _import_opening_balance(self, run: _Run, entity_type: EntityType, record: dict) -> str:
        document = self._build(run, entity_type, record)
        store = self._stores[entity_type]
        existing = await store.find_first(
            run.user_id, periodType=document["periodType"], period=document["period"]
        )
        if existing is None:
            return await self._create(run, entity_type, document)

        updated = await store.update(run.user_id, existing["id"], {
            "amount": document["amount"],
            "currency": document["currency"],
            "notes": document["notes"],
        })
        return updated["id"]

    # -------------------------------------------------------------------------
    # Second pass
    # -------------------------------------------------------------------------

    async def _link_recurring_parents(self, run: _Run) -> None:
        """
        Point expenses at their recurring parent's canonical id.

        Best effort: a parent that wasn't imported leaves the link null.
        """
        store = self._stores[EntityType.EXPENSES]
        expense_ids = run.remap[EntityType.EXPENSES]

        for expense_id, parent_ref in run.pending_parents:
            parent_id = expense_ids.get(_local_key(parent_ref))
            if parent_id is None:
                await self._audit.log_parent_reference_unresolved(
                    user_id=run.user_id,
                    expense_id=expense_id,
                    parent_reference=parent_ref,
                    correlation_id=run.correlation_id,
                )
                continue
            try:
                await store.update(run.user_id, expense_id, {"parentRecurringId": parent_id})
            except StorageConnectionError:
                raise
            except Exception as e:
                logger.warning(
                    "parent_link_failed",
                    expense_id=expense_id,
                    parent_id=parent_id,
                    error=describe_error(e),
                )

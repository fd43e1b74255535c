"""
Audit Logger

DESIGN DECISION: Every significant data movement in the system is logged.
This provides:
1. Complete traceability of migrations and conflict resolutions
2. Debugging capability for partially failed imports
3. A trail the user can inspect after a wipe

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't break an import if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Any, Optional
from uuid import UUID, uuid4

import structlog

from finsync.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from finsync.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_migration_started(
        self,
        user_id: str,
        payload_counts: dict[str, int],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.migration_started(
            user_id=user_id,
            payload_counts=payload_counts,
            correlation_id=correlation_id,
        ))

    async def log_data_wiped(
        self,
        user_id: str,
        deleted: dict[str, int],
        total: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.data_wiped(
            user_id=user_id,
            deleted=deleted,
            total=total,
            correlation_id=correlation_id,
        ))

    async def log_record_import_failed(
        self,
        user_id: str,
        entity_type: str,
        local_id: Any,
        error: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.record_import_failed(
            user_id=user_id,
            entity_type=entity_type,
            local_id=local_id,
            error=error,
            correlation_id=correlation_id,
        ))

    async def log_parent_reference_unresolved(
        self,
        user_id: str,
        expense_id: str,
        parent_reference: Any,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.parent_reference_unresolved(
            user_id=user_id,
            expense_id=expense_id,
            parent_reference=parent_reference,
            correlation_id=correlation_id,
        ))

    async def log_migration_completed(
        self,
        user_id: str,
        imported: int,
        errors: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.migration_completed(
            user_id=user_id,
            imported=imported,
            errors=errors,
            correlation_id=correlation_id,
        ))

    async def log_migration_failed(
        self,
        user_id: Optional[str],
        state: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.migration_failed(
            user_id=user_id,
            state=state,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_conflict_resolved(
        self,
        entity_type: str,
        canonical_id: str,
        strategy: str,
        source: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.conflict_resolved(
            entity_type=entity_type,
            canonical_id=canonical_id,
            strategy=strategy,
            source=source,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_manual_resolution_required(
        self,
        entity_type: str,
        canonical_id: str,
        changed_fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.manual_resolution_required(
            entity_type=entity_type,
            canonical_id=canonical_id,
            changed_fields=changed_fields,
            correlation_id=correlation_id,
        ))

    async def log_snapshot_failed(
        self,
        operation: str,
        location: str,
        error_message: str,
    ) -> None:
        await self.log(AuditEventBuilder.snapshot_failed(
            operation=operation,
            location=location,
            error_message=error_message,
        ))

    async def log_backup_created(self, location: str) -> None:
        await self.log(AuditEventBuilder.backup_created(location))

    async def log_savings_recomputed(
        self,
        user_id: str,
        savings_id: str,
        current_amount: str,
        transaction_count: int,
    ) -> None:
        await self.log(AuditEventBuilder.savings_recomputed(
            user_id=user_id,
            savings_id=savings_id,
            current_amount=current_amount,
            transaction_count=transaction_count,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new operation (e.g., a migration run).
    Pass it through all subsequent operations.
    """
    return uuid4()

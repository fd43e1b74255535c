"""
Audit Models for the Sync Core

Every significant data movement is logged for audit purposes.
This provides:
1. Complete traceability of migrations, wipes and conflict resolutions
2. Debugging information when an import partially fails
3. Ability to reconstruct which source graph a user's data came from

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from finsync.models.timestamps import utcnow


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Each phase of migration, sync and local persistence has its own type.
    """
    # Migration
    MIGRATION_STARTED = "migration_started"
    DATA_WIPED = "data_wiped"
    RECORD_IMPORT_FAILED = "record_import_failed"
    PARENT_REFERENCE_UNRESOLVED = "parent_reference_unresolved"
    MIGRATION_COMPLETED = "migration_completed"
    MIGRATION_FAILED = "migration_failed"

    # Sync
    CONFLICT_RESOLVED = "conflict_resolved"
    MANUAL_RESOLUTION_REQUIRED = "manual_resolution_required"

    # Local persistence
    SNAPSHOT_FAILED = "snapshot_failed"
    BACKUP_CREATED = "backup_created"

    # Derived values
    SAVINGS_RECOMPUTED = "savings_recomputed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - whose data and which record
    user_id: Optional[str] = Field(
        default=None,
        description="Owner of the data the event touches"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Entity type payload key (e.g., 'clients', 'savings')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Canonical or payload-local id of the record"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one migration run)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, user_id, entity_type,
         entity_id, correlation_id, description, details_json, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.user_id or "",
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.migration_started(user_id, counts, correlation_id)
        event = AuditEventBuilder.conflict_resolved("clients", record_id, ...)
    """

    @staticmethod
    def migration_started(
        user_id: str,
        payload_counts: dict[str, int],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MIGRATION_STARTED,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Migration started with {sum(payload_counts.values())} records",
            details={"payload_counts": payload_counts},
        )

    @staticmethod
    def data_wiped(
        user_id: str,
        deleted: dict[str, int],
        total: int,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DATA_WIPED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Deleted {total} records",
            details={"deleted": deleted, "total": total},
        )

    @staticmethod
    def record_import_failed(
        user_id: str,
        entity_type: str,
        local_id: Any,
        error: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_IMPORT_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=str(local_id) if local_id is not None else None,
            correlation_id=correlation_id,
            description=f"Skipped {entity_type} record",
            error_message=error,
        )

    @staticmethod
    def parent_reference_unresolved(
        user_id: str,
        expense_id: str,
        parent_reference: Any,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PARENT_REFERENCE_UNRESOLVED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="expenses",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description="Recurring parent could not be linked",
            details={"parent_reference": str(parent_reference)},
        )

    @staticmethod
    def migration_completed(
        user_id: str,
        imported: int,
        errors: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MIGRATION_COMPLETED,
            severity=AuditSeverity.WARNING if errors else AuditSeverity.INFO,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Migration finished: {imported} imported, {errors} skipped",
            details={"imported": imported, "errors": errors},
        )

    @staticmethod
    def migration_failed(
        user_id: Optional[str],
        state: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MIGRATION_FAILED,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Migration aborted during {state}",
            details={"state": state},
            error_message=error_message,
        )

    @staticmethod
    def conflict_resolved(
        entity_type: str,
        canonical_id: str,
        strategy: str,
        source: str,
        reason: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONFLICT_RESOLVED,
            entity_type=entity_type,
            entity_id=canonical_id,
            correlation_id=correlation_id,
            description=f"Conflict resolved using {source} version",
            details={"strategy": strategy, "source": source, "reason": reason},
        )

    @staticmethod
    def manual_resolution_required(
        entity_type: str,
        canonical_id: str,
        changed_fields: list[str],
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MANUAL_RESOLUTION_REQUIRED,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            entity_id=canonical_id,
            correlation_id=correlation_id,
            description="Conflict waiting for a manual choice",
            details={"changed_fields": changed_fields},
        )

    @staticmethod
    def snapshot_failed(
        operation: str,
        location: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SNAPSHOT_FAILED,
            severity=AuditSeverity.WARNING,
            description=f"Local snapshot {operation} failed",
            details={"operation": operation, "location": location},
            error_message=error_message,
        )

    @staticmethod
    def backup_created(location: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKUP_CREATED,
            description=f"Backup created: {location}",
            details={"location": location},
        )

    @staticmethod
    def savings_recomputed(
        user_id: str,
        savings_id: str,
        current_amount: str,
        transaction_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVINGS_RECOMPUTED,
            severity=AuditSeverity.DEBUG,
            user_id=user_id,
            entity_type="savings",
            entity_id=savings_id,
            description=f"Balance recomputed from {transaction_count} transactions",
            details={"current_amount": current_amount},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

"""
Data Models Package

This package contains all Pydantic models used by the sync core.
All data flowing through the system must conform to these schemas.
"""

from finsync.models.entities import (
    RECORD_MODELS,
    UNIQUE_FIELDS,
    ClientRecord,
    DebtRecord,
    EntityRecord,
    EntityType,
    ExpectedIncomeRecord,
    ExpenseRecord,
    GoalPeriod,
    GoalRecord,
    IncomeRecord,
    InvoiceRecord,
    ListRecord,
    OpeningBalanceRecord,
    PaymentMethod,
    PeriodType,
    SavingRecord,
    SavingsTransactionRecord,
    TodoRecord,
    TransactionType,
    normalize_payment_method,
    normalize_period_type,
    synthesize_period_value,
)
from finsync.models.migration import (
    ImportResult,
    ImportSummary,
    MigrationState,
    RecordError,
    TypeImportResult,
    WipeResult,
)
from finsync.models.sync import (
    Conflict,
    ConflictCheck,
    ConflictResolution,
    ConflictStrategy,
    OperationType,
    PendingOperation,
    ReconciliationEntry,
    ReconciliationReport,
    ResolutionSource,
    SyncResult,
)
from finsync.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Entity models
    "RECORD_MODELS",
    "UNIQUE_FIELDS",
    "ClientRecord",
    "DebtRecord",
    "EntityRecord",
    "EntityType",
    "ExpectedIncomeRecord",
    "ExpenseRecord",
    "GoalPeriod",
    "GoalRecord",
    "IncomeRecord",
    "InvoiceRecord",
    "ListRecord",
    "OpeningBalanceRecord",
    "PaymentMethod",
    "PeriodType",
    "SavingRecord",
    "SavingsTransactionRecord",
    "TodoRecord",
    "TransactionType",
    "normalize_payment_method",
    "normalize_period_type",
    "synthesize_period_value",
    # Migration models
    "ImportResult",
    "ImportSummary",
    "MigrationState",
    "RecordError",
    "TypeImportResult",
    "WipeResult",
    # Sync models
    "Conflict",
    "ConflictCheck",
    "ConflictResolution",
    "ConflictStrategy",
    "OperationType",
    "PendingOperation",
    "ReconciliationEntry",
    "ReconciliationReport",
    "ResolutionSource",
    "SyncResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]

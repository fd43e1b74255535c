"""
Tests for the Finance Tracker Sync Core models

Test strategy:
1. Unit tests for each record model's defaults and normalizers
2. Timestamp helpers across the three shapes a date arrives in
3. Result and audit models as callers consume them
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from pydantic import ValidationError

from finsync.models import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from finsync.models.entities import (
    RECORD_MODELS,
    ClientRecord,
    EntityType,
    GoalRecord,
    IncomeRecord,
    InvoiceRecord,
    OpeningBalanceRecord,
    PaymentMethod,
    PeriodType,
    SavingRecord,
    TodoRecord,
    normalize_payment_method,
    normalize_period_type,
)
from finsync.models.migration import (
    ImportResult,
    RecordError,
    TypeImportResult,
    WipeResult,
)
from finsync.models.timestamps import coerce_datetime, parse_datetime, to_epoch_ms, to_iso_string


class TestEntityTypes:
    """Tests for the entity type catalogue."""

    def test_twelve_types_with_payload_keys(self):
        """Every type is valued by its payload key."""
        assert len(EntityType) == 12
        assert EntityType("savingsTransactions") == EntityType.SAVINGS_TRANSACTIONS
        assert EntityType("expectedIncome") == EntityType.EXPECTED_INCOME

    def test_every_type_has_a_model(self):
        """Each entity type maps to a record model."""
        assert set(RECORD_MODELS) == set(EntityType)


class TestRecordModels:
    """Tests for record defaults and validation."""

    def test_client_defaults(self):
        """A bare client gets documented defaults."""
        client = ClientRecord(user_id="u1")
        assert client.name == "Unnamed Client"
        assert client.rating == 3
        assert client.currency == "EGP"
        assert client.status == "active"

    def test_client_rating_bounds(self):
        """Ratings outside 1..5 are rejected."""
        with pytest.raises(ValidationError):
            ClientRecord(user_id="u1", rating=6)

    def test_user_id_required(self):
        """Records cannot exist without an owner."""
        with pytest.raises(ValidationError):
            ClientRecord(user_id="")

    def test_document_uses_camel_case(self):
        """to_document() emits wire field names."""
        document = IncomeRecord(user_id="u1", amount=Decimal("10")).to_document()
        assert document["userId"] == "u1"
        assert "paymentMethod" in document
        assert "isDeposit" in document
        assert "payment_method" not in document

    def test_accepts_wire_names(self):
        """Models validate from camelCase payload records."""
        income = IncomeRecord.model_validate({
            "userId": "u1",
            "clientId": "c1",
            "amount": "250.50",
            "receivedDate": "2024-05-01T10:00:00.000Z",
        })
        assert income.client_id == "c1"
        assert income.amount == Decimal("250.50")
        assert income.received_date.year == 2024

    def test_unknown_fields_ignored(self):
        """Extra keys from newer exports are dropped."""
        client = ClientRecord.model_validate({"userId": "u1", "favouriteColour": "red"})
        assert "favouriteColour" not in client.to_document()

    def test_invoice_requires_client_and_number(self):
        """Invoices are meaningless without a client and a number."""
        with pytest.raises(ValidationError):
            InvoiceRecord(user_id="u1", client_id="c1")
        with pytest.raises(ValidationError):
            InvoiceRecord(user_id="u1", invoice_number="INV-1")

    def test_todo_requires_list(self):
        """Todos must belong to a list."""
        with pytest.raises(ValidationError):
            TodoRecord(user_id="u1", title="Call the bank")


class TestNormalizers:
    """Tests for the value normalizers used on import."""

    @pytest.mark.parametrize("raw,expected", [
        ("Fawaterak International", PaymentMethod.BANK_TRANSFER),
        ("bank", PaymentMethod.BANK_TRANSFER),
        ("Vodafone Cash", PaymentMethod.VODAFONE_CASH),
        ("instapay", PaymentMethod.INSTAPAY),
        ("crypto", PaymentMethod.CASH),
        (None, PaymentMethod.CASH),
    ])
    def test_payment_method(self, raw, expected):
        """Legacy payment methods map onto the enum; unknown becomes cash."""
        assert normalize_payment_method(raw) == expected

    def test_income_normalizes_payment_method(self):
        """IncomeRecord applies the payment method normalizer."""
        income = IncomeRecord.model_validate({"userId": "u1", "paymentMethod": " Fawaterak International "})
        assert income.payment_method == "bank_transfer"

    @pytest.mark.parametrize("raw,expected", [
        ("month", PeriodType.MONTHLY),
        ("monthly", PeriodType.MONTHLY),
        ("yearly", PeriodType.YEARLY),
        ("weekly", PeriodType.MONTHLY),
        (None, PeriodType.MONTHLY),
    ])
    def test_period_type(self, raw, expected):
        """'month' and unknown values become monthly."""
        assert normalize_period_type(raw) == expected

    def test_opening_balance_normalizes_period_type(self):
        """OpeningBalanceRecord applies the period type normalizer."""
        balance = OpeningBalanceRecord.model_validate({"userId": "u1", "periodType": "month", "period": "2024-01"})
        assert balance.to_document()["periodType"] == "monthly"


class TestDerivedFields:
    """Tests for fields synthesized from other fields."""

    @pytest.mark.parametrize("period,expected", [
        ("monthly", "2024-05"),
        ("quarterly", "2024-Q2"),
        ("yearly", "2024"),
    ])
    def test_goal_period_value(self, period, expected):
        """Missing periodValue is built from createdAt."""
        goal = GoalRecord.model_validate({
            "userId": "u1",
            "period": period,
            "createdAt": "2024-05-10T08:00:00Z",
        })
        assert goal.period_value == expected

    def test_goal_keeps_given_period_value(self):
        """An explicit periodValue is not overwritten."""
        goal = GoalRecord.model_validate({
            "userId": "u1",
            "period": "yearly",
            "periodValue": "2023",
            "createdAt": "2024-05-10T08:00:00Z",
        })
        assert goal.period_value == "2023"

    def test_saving_current_amount_defaults_to_initial(self):
        """currentAmount starts at initialAmount."""
        saving = SavingRecord(user_id="u1", initial_amount=Decimal("500"))
        assert saving.current_amount == Decimal("500")
        assert saving.start_date == saving.created_at


class TestTimestamps:
    """Tests for the timestamp helpers."""

    def test_iso_string_with_z(self):
        """JavaScript-style 'Z' suffix parses as UTC."""
        moment = coerce_datetime("2024-01-01T00:00:00.000Z")
        assert moment == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_epoch_milliseconds(self):
        """Numbers are epoch milliseconds."""
        assert coerce_datetime(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)

    def test_booleans_rejected(self):
        """True is not a point in time."""
        with pytest.raises(ValueError):
            coerce_datetime(True)

    def test_parse_datetime_lenient(self):
        """parse_datetime returns None instead of raising."""
        assert parse_datetime("not a date") is None
        assert parse_datetime("") is None

    def test_to_epoch_ms(self):
        """All shapes agree on the same instant."""
        expected = 1704067200000.0
        assert to_epoch_ms("2024-01-01T00:00:00Z") == expected
        assert to_epoch_ms(datetime(2024, 1, 1)) == expected
        assert to_epoch_ms(expected) == expected
        assert to_epoch_ms("garbage") is None

    def test_to_iso_string(self):
        """UTC, millisecond precision, Z suffix."""
        moment = datetime(2024, 1, 2, 3, 4, 5, 678900, tzinfo=timezone.utc)
        assert to_iso_string(moment) == "2024-01-02T03:04:05.678Z"


class TestMigrationModels:
    """Tests for the import result shapes."""

    def test_from_details_totals(self):
        """Summary totals add up the per-type results."""
        details = {entity_type: TypeImportResult() for entity_type in EntityType}
        details[EntityType.CLIENTS] = TypeImportResult(imported=2)
        details[EntityType.INVOICES] = TypeImportResult(
            imported=1,
            errors=[RecordError(id=7, error="Client not found")],
        )

        result = ImportResult.from_details(details, deleted=WipeResult(total=3))
        assert result.success is True
        assert result.summary.imported == 3
        assert result.summary.errors == 1
        assert result.details["invoices"].errors[0].id == 7

    def test_to_dict_shape(self):
        """The uploader sees success, summary and details only."""
        details = {entity_type: TypeImportResult() for entity_type in EntityType}
        result = ImportResult.from_details(details, deleted=WipeResult())
        payload = result.to_dict()
        assert set(payload) == {"success", "summary", "details"}
        assert set(payload["details"]) == {t.value for t in EntityType}


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.BACKUP_CREATED,
            description="Backup written",
        )
        assert event.event_type == AuditEventType.BACKUP_CREATED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.DATA_WIPED,
            user_id="u1",
            description="Deleted 3 records",
            details={"total": 3},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "data_wiped"
        assert log_dict["user_id"] == "u1"
        assert log_dict["details"]["total"] == 3

    def test_audit_event_to_sheets_row(self):
        """Test conversion to sheets row."""
        event = AuditEvent(
            event_type=AuditEventType.RECORD_IMPORT_FAILED,
            entity_type="invoices",
            entity_id="7",
            description="Skipped invoices record",
            error_message="Client not found",
        )
        row = event.to_sheets_row()
        assert len(row) == 11
        assert row[2] == "record_import_failed"
        assert row[5] == "invoices"
        assert row[10] == "Client not found"

    def test_builder_migration_failed(self):
        """Test AuditEventBuilder.migration_failed."""
        correlation_id = uuid4()
        event = AuditEventBuilder.migration_failed(
            user_id="u1",
            state="importing",
            error_message="store unreachable",
            correlation_id=correlation_id,
        )
        assert event.event_type == AuditEventType.MIGRATION_FAILED
        assert event.severity == AuditSeverity.ERROR
        assert event.correlation_id == correlation_id
        assert event.details["state"] == "importing"

    def test_builder_migration_completed_severity(self):
        """Completed runs with skipped records are warnings."""
        clean = AuditEventBuilder.migration_completed("u1", 10, 0, uuid4())
        partial = AuditEventBuilder.migration_completed("u1", 10, 2, uuid4())
        assert clean.severity == AuditSeverity.INFO
        assert partial.severity == AuditSeverity.WARNING

    def test_builder_conflict_resolved(self):
        """Test AuditEventBuilder.conflict_resolved."""
        event = AuditEventBuilder.conflict_resolved(
            entity_type="clients",
            canonical_id="c1",
            strategy="last_write_wins",
            source="local",
            reason="Local version is newer",
            correlation_id=None,
        )
        assert event.entity_id == "c1"
        assert event.details["source"] == "local"

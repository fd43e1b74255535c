"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the hosted storage backend because:
1. Non-technical users can view their data directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions (the importer is best effort with no rollback anyway)
- Limited query capabilities (we filter in Python)

Each entity type gets its own worksheet. Rows hold the indexed columns we
filter on plus the full camelCase document as JSON, so adding a field to a
record model never needs a sheet migration.
"""

import json
from typing import Any, Optional
from uuid import UUID, uuid4

import gspread
import structlog
from google.oauth2.service_account import Credentials
from pydantic_core import to_jsonable_python
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from finsync.config import GoogleSheetsSettings, get_settings
from finsync.models.audit import AuditEvent, AuditEventType, AuditSeverity
from finsync.models.entities import UNIQUE_FIELDS, EntityType
from finsync.models.timestamps import parse_datetime, utcnow
from finsync.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    EntityStoreInterface,
    NotFoundError,
    StorageConnectionError,
    StorageError,
)
from finsync.services.storage.memory import PROTECTED_FIELDS


logger = structlog.get_logger(__name__)


# Column mappings for entity sheets
ENTITY_COLUMNS = [
    "id",
    "user_id",
    "created_at",
    "updated_at",
    "record_json",
]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "user_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
]

# Errors that are answers, not outages; never retried
_NON_RETRYABLE = (DuplicateError, NotFoundError, StorageConnectionError)

sheets_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_not_exception_type(_NON_RETRYABLE),
    reraise=True,
)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise StorageConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise StorageConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise StorageConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_entity_sheet(self, entity_type: EntityType) -> gspread.Worksheet:
        """Get or create the worksheet holding one entity type."""
        title = f"{self._settings.entity_sheet_prefix}{entity_type.value}"
        return self._get_or_create_sheet(title, ENTITY_COLUMNS, rows=1000)

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
        )


class GoogleSheetsEntityStore(EntityStoreInterface):
    """
    Google Sheets implementation of one entity type's store.

    Records are stored as rows with one record per row. The full document
    is JSON-serialized in the last column; dates come back as ISO strings.
    """

    def __init__(
        self,
        entity_type: EntityType,
        client: Optional[GoogleSheetsClient] = None,
    ):
        self.entity_type = entity_type
        self.unique_fields = UNIQUE_FIELDS.get(entity_type, ())
        self._client = client or GoogleSheetsClient()

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_entity_sheet(self.entity_type)

    @staticmethod
    def _document_to_row(document: dict[str, Any]) -> list:
        """Convert a document to a spreadsheet row."""
        payload = to_jsonable_python(document)
        return [
            payload["id"],
            payload["userId"],
            payload.get("createdAt") or "",
            payload.get("updatedAt") or "",
            json.dumps(payload),
        ]

    @staticmethod
    def _row_to_document(row: list) -> dict[str, Any]:
        """Convert a spreadsheet row to a document."""
        document = json.loads(row[4])
        document["id"] = row[0]
        return document

    def _user_rows(self, all_rows: list[list]) -> list[tuple[int, list]]:
        # Start from 2 (row 1 is header)
        return [
            (idx, row)
            for idx, row in enumerate(all_rows[1:], start=2)
            if len(row) >= len(ENTITY_COLUMNS) and row[0]
        ]

    def _check_unique(
        self,
        rows: list[tuple[int, list]],
        document: dict[str, Any],
        exclude_id: Optional[str] = None,
    ) -> None:
        key = self.unique_key(to_jsonable_python(document))
        if key is None:
            return
        for _, row in rows:
            if row[1] != document["userId"] or row[0] == exclude_id:
                continue
            if self.unique_key(self._row_to_document(row)) == key:
                raise DuplicateError(
                    f"{self.entity_type.value} already has a record with "
                    f"{dict(zip(self.unique_fields, key))}"
                )

    @sheets_retry
    async def find_by_user(self, user_id: str) -> list[dict[str, Any]]:
        try:
            rows = self._user_rows(self._sheet().get_all_values())
        except StorageConnectionError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list {self.entity_type.value}: {e}")

        documents = []
        for _, row in rows:
            if row[1] != user_id:
                continue
            try:
                documents.append(self._row_to_document(row))
            except json.JSONDecodeError:
                logger.warning(
                    "malformed_sheet_row",
                    entity_type=self.entity_type.value,
                    record_id=row[0],
                )
        return documents

    async def find_one(self, user_id: str, record_id: str) -> Optional[dict[str, Any]]:
        for document in await self.find_by_user(user_id):
            if document["id"] == record_id:
                return document
        return None

    @sheets_retry
    def _read_rows(self, sheet: gspread.Worksheet) -> list[list]:
        return sheet.get_all_values()

    async def create(self, document: dict[str, Any]) -> dict[str, Any]:
        # Only the read is retried; a repeated append_row would duplicate the row
        try:
            sheet = self._sheet()
            self._check_unique(self._user_rows(self._read_rows(sheet)), document)
            stored = {**document, "id": uuid4().hex}
            sheet.append_row(self._document_to_row(stored), value_input_option="RAW")
        except (DuplicateError, StorageConnectionError):
            raise
        except Exception as e:
            raise StorageError(f"Failed to save {self.entity_type.value}: {e}")
        return to_jsonable_python(stored)

    @sheets_retry
    async def update(
        self,
        user_id: str,
        record_id: str,
        changes: dict[str, Any],
    ) -> dict[str, Any]:
        try:
            sheet = self._sheet()
            rows = self._user_rows(sheet.get_all_values())

            for idx, row in rows:
                if row[0] != record_id or row[1] != user_id:
                    continue
                patch = {k: v for k, v in changes.items() if k not in PROTECTED_FIELDS}
                updated = {**self._row_to_document(row), **patch, "updatedAt": utcnow()}
                self._check_unique(rows, updated, exclude_id=record_id)
                sheet.update(
                    range_name=f"A{idx}:E{idx}",
                    values=[self._document_to_row(updated)],
                    value_input_option="RAW",
                )
                return to_jsonable_python(updated)

            raise NotFoundError(f"{self.entity_type.value} not found: {record_id}")
        except (NotFoundError, DuplicateError, StorageConnectionError):
            raise
        except Exception as e:
            raise StorageError(f"Failed to update {self.entity_type.value}: {e}")

    @sheets_retry
    async def delete(self, user_id: str, record_id: str) -> bool:
        try:
            sheet = self._sheet()
            for idx, row in self._user_rows(sheet.get_all_values()):
                if row[0] == record_id and row[1] == user_id:
                    sheet.delete_rows(idx)
                    return True
            return False
        except StorageConnectionError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete {self.entity_type.value}: {e}")

    @sheets_retry
    async def delete_all_by_user(self, user_id: str) -> int:
        try:
            sheet = self._sheet()
            indexes = [
                idx for idx, row in self._user_rows(sheet.get_all_values())
                if row[1] == user_id
            ]
            # Bottom-up so earlier deletions don't shift later row numbers
            for idx in reversed(indexes):
                sheet.delete_rows(idx)
            return len(indexes)
        except StorageConnectionError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to clear {self.entity_type.value}: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=parse_datetime(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            user_id=safe_get(4) or None,
            entity_type=safe_get(5) or None,
            entity_id=safe_get(6) or None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
        )

    def _read_events(self, matches) -> list[AuditEvent]:
        try:
            all_rows = self._client.get_audit_sheet().get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events = []
        for row in all_rows:
            if not row or not row[0] or not matches(row):
                continue
            try:
                events.append(self._row_to_event(row))
            except (ValueError, json.JSONDecodeError):
                logger.warning("malformed_audit_row", event_id=row[0])
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            # Don't raise - audit logging should not break the main flow
            logger.warning("audit_write_failed", error=str(e), event_id=str(event.event_id))
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        events = self._read_events(
            lambda row: len(row) > 7 and row[7] == str(correlation_id)
        )
        # Sort chronologically
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        """Get recent events."""
        events = self._read_events(lambda row: True)
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]

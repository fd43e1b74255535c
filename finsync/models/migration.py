"""
Migration Models

Result shapes for the clean-slate import and the wipe operation. The JSON
produced by to_dict() is the contract with whoever uploaded the export:

    {success, summary: {imported, errors}, details: {<type>: {imported, errors[]}}}
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from finsync.models.entities import EntityType


class MigrationState(str, Enum):
    """
    Import lifecycle.

    IDLE -> DELETING -> IMPORTING -> RECONCILING -> DONE
    FAILED is reached only on systemic failures, never on per-record ones.
    """
    IDLE = "idle"
    DELETING = "deleting"
    IMPORTING = "importing"
    RECONCILING = "reconciling"
    DONE = "done"
    FAILED = "failed"


class RecordError(BaseModel):
    """A single record that could not be imported."""
    id: Any = None
    error: str


class TypeImportResult(BaseModel):
    imported: int = 0
    errors: list[RecordError] = Field(default_factory=list)


class ImportSummary(BaseModel):
    imported: int = 0
    errors: int = 0


class WipeResult(BaseModel):
    """Per-type and total deleted counts for one user."""
    deleted: dict[str, int] = Field(default_factory=dict)
    total: int = 0


class ImportResult(BaseModel):
    """
    Outcome of one migration run.

    success is True whenever the run reached DONE, even if individual
    records failed; those are listed per type.
    """
    success: bool
    summary: ImportSummary
    details: dict[str, TypeImportResult]
    deleted: Optional[WipeResult] = None

    @classmethod
    def from_details(
        cls,
        details: dict[EntityType, TypeImportResult],
        deleted: Optional[WipeResult] = None,
    ) -> "ImportResult":
        """Build the result, totalling imported records and errors."""
        summary = ImportSummary(
            imported=sum(r.imported for r in details.values()),
            errors=sum(len(r.errors) for r in details.values()),
        )
        return cls(
            success=True,
            summary=summary,
            details={entity.value: result for entity, result in details.items()},
            deleted=deleted,
        )

    def to_dict(self) -> dict:
        """The import result JSON returned to the uploader."""
        return self.model_dump(include={"success", "summary", "details"})

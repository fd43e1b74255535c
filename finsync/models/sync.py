"""
Sync Models

Results of comparing and reconciling a locally cached record against the
remote canonical copy.

DESIGN DECISION: Resolution outcomes are data, not exceptions. A MANUAL
outcome is a legitimate result waiting for a human choice.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from finsync.models.timestamps import Timestamp, utcnow


class ConflictStrategy(str, Enum):
    """How a detected conflict is settled."""
    LAST_WRITE_WINS = "last_write_wins"
    SERVER_WINS = "server_wins"
    CLIENT_WINS = "client_wins"
    MERGE = "merge"
    MANUAL = "manual"


class ResolutionSource(str, Enum):
    """Which version the resolved record came from."""
    SERVER = "server"
    LOCAL = "local"
    MERGED = "merged"
    MANUAL = "manual"


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_dict(self) -> dict:
        """camelCase dictionary for callers speaking the JSON wire format."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ConflictCheck(_WireModel):
    """
    Outcome of comparing two copies of one record.

    Fingerprints cover content only; identity and timestamp fields are
    stripped before hashing.
    """
    has_conflict: bool
    local_fingerprint: str
    remote_fingerprint: str
    changed_fields: list[str] = Field(default_factory=list)
    local_only_fields: list[str] = Field(default_factory=list)
    remote_only_fields: list[str] = Field(default_factory=list)
    local_timestamp: float = 0.0
    remote_timestamp: float = 0.0


class Conflict(_WireModel):
    """A local/remote pair of the same canonical record that disagree."""
    entity_type: str
    canonical_id: str
    local_data: dict[str, Any]
    server_data: dict[str, Any]
    check: ConflictCheck


class ConflictResolution(_WireModel):
    """
    Result of a resolve call.

    resolved=False only for MANUAL; then data is None and both versions are
    attached for the caller to choose from.
    """
    resolved: bool
    data: Optional[dict[str, Any]] = None
    local_data: Optional[dict[str, Any]] = None
    server_data: Optional[dict[str, Any]] = None
    source: ResolutionSource
    reason: str
    strategy: ConflictStrategy


class ReconciliationEntry(_WireModel):
    """One conflict handled during a full-graph reconciliation."""
    entity_type: str
    canonical_id: str
    resolution: ConflictResolution
    local_timestamp: float = 0.0
    server_timestamp: float = 0.0
    requires_manual_resolution: bool = False


class ReconciliationReport(_WireModel):
    """Outcome of reconciling a whole local graph against the remote one."""
    resolved_graph: dict[str, list[dict[str, Any]]] = Field(default_factory=dict)
    entries: list[ReconciliationEntry] = Field(default_factory=list)

    @property
    def conflict_count(self) -> int:
        return len(self.entries)

    @property
    def unresolved_count(self) -> int:
        return sum(1 for entry in self.entries if entry.requires_manual_resolution)


class OperationType(str, Enum):
    """Store writes that can wait in the offline queue."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class PendingOperation(_WireModel):
    """
    A store write that could not be applied yet.

    Replayed in order at the start of the next sync; it leaves the queue
    once it succeeds or fails permanently (missing record, duplicate,
    invalid data).
    """
    type: OperationType
    entity: str
    record_id: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)
    queued_at: Timestamp = Field(default_factory=utcnow)
    attempts: int = 0
    last_error: Optional[str] = None


class SyncResult(_WireModel):
    """Outcome of one push-then-pull sync."""
    report: ReconciliationReport
    replayed: int = 0
    pushed: int = 0
    written_back: int = 0
    pending: int = 0
    errors: list[str] = Field(default_factory=list)
    finished_at: datetime = Field(default_factory=utcnow)

    @property
    def conflict_count(self) -> int:
        return self.report.conflict_count

    @property
    def unresolved_count(self) -> int:
        return self.report.unresolved_count

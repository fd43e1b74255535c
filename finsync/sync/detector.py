"""
Conflict Detector

Decides whether a locally cached record and its remote copy disagree.

DESIGN DECISION: Comparison is by content fingerprint, never by timestamp.
Identity and timestamp fields are stripped, the remaining document is
rendered canonically (sorted keys at every level, numbers as normalized
decimals, datetimes as UTC ISO strings) and hashed with SHA-256. Two copies
that differ only in key order, in 100 vs 100.0, or in Decimal("100") vs the
"100" a JSON snapshot stores for it are the same record.
"""

import hashlib
import json
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

from finsync.models.sync import Conflict, ConflictCheck
from finsync.models.timestamps import parse_datetime, to_epoch_ms, to_iso_string


# Never part of the content comparison
IDENTITY_FIELDS = frozenset({"id", "_id", "mongoId", "createdAt", "updatedAt"})

# Plain decimal literals only; "007" and "1,000" stay text
NUMBER_PATTERN = re.compile(r"^-?(0|[1-9]\d*)(\.\d+)?([eE][+-]?\d+)?$")

# Date and time, as pydantic and JavaScript render them
DATETIME_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}")

# Lookup order for a record's canonical id
CANONICAL_ID_FIELDS = ("mongoId", "_id", "id")


def canonical_id(record: dict[str, Any]) -> Optional[str]:
    """The record's store-assigned id, whichever key carries it."""
    for field in CANONICAL_ID_FIELDS:
        value = record.get(field)
        if value not in (None, ""):
            return str(value)
    return None


def record_timestamp(record: dict[str, Any]) -> float:
    """
    Document timestamp in epoch milliseconds.

    updatedAt, then createdAt, then 0. Unparseable values are skipped.
    """
    for field in ("updatedAt", "createdAt"):
        moment = to_epoch_ms(record.get(field))
        if moment is not None:
            return moment
    return 0.0


def _canonical_number(value: Any) -> str:
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        return str(value)
    if not number.is_finite():
        return str(number)
    if number == 0:
        return "0"
    return format(number.normalize(), "f")


def _canonical_string(value: str) -> Any:
    """
    Strings that are a JSON rendering of a number or a datetime compare as
    that value: a snapshot written to disk holds Decimals as "100" and
    datetimes as ISO strings, while the store hands back the objects.
    """
    if NUMBER_PATTERN.match(value):
        return {"$num": _canonical_number(value)}
    if DATETIME_PATTERN.match(value):
        moment = parse_datetime(value)
        if moment is not None:
            return to_iso_string(moment)
    return value


def canonicalize(value: Any) -> Any:
    """Render a value into a JSON-safe form where equal content is equal."""
    if isinstance(value, dict):
        return {str(k): canonicalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [canonicalize(item) for item in value]
    if isinstance(value, Enum):
        return canonicalize(value.value)
    if isinstance(value, str):
        return _canonical_string(value)
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, (int, float, Decimal)):
        return {"$num": _canonical_number(value)}
    if isinstance(value, datetime):
        return to_iso_string(value)
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def content_of(record: dict[str, Any]) -> dict[str, Any]:
    """The record minus identity and timestamp fields, canonicalized."""
    return {
        key: canonicalize(value)
        for key, value in record.items()
        if key not in IDENTITY_FIELDS
    }


def fingerprint(record: dict[str, Any]) -> str:
    """SHA-256 hex digest of the record's canonical content."""
    payload = json.dumps(
        content_of(record),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class ConflictDetector:
    """Compares single records or whole collections of one entity type."""

    def check(self, local: dict[str, Any], remote: dict[str, Any]) -> ConflictCheck:
        """Compare two copies of one record and describe how they differ."""
        local_content = content_of(local)
        remote_content = content_of(remote)
        local_fp = fingerprint(local)
        remote_fp = fingerprint(remote)

        shared = local_content.keys() & remote_content.keys()
        return ConflictCheck(
            has_conflict=local_fp != remote_fp,
            local_fingerprint=local_fp,
            remote_fingerprint=remote_fp,
            changed_fields=sorted(
                key for key in shared if local_content[key] != remote_content[key]
            ),
            local_only_fields=sorted(local_content.keys() - remote_content.keys()),
            remote_only_fields=sorted(remote_content.keys() - local_content.keys()),
            local_timestamp=record_timestamp(local),
            remote_timestamp=record_timestamp(remote),
        )

    def has_conflict(self, local: dict[str, Any], remote: dict[str, Any]) -> bool:
        return fingerprint(local) != fingerprint(remote)

    def detect(
        self,
        local_items: list[dict[str, Any]],
        remote_items: list[dict[str, Any]],
        entity_type: str,
    ) -> list[Conflict]:
        """
        Pair local and remote records by canonical id and report the pairs
        whose content differs.

        Records without an id, or present on one side only, are not
        conflicts.
        """
        remote_by_id = {}
        for item in remote_items:
            key = canonical_id(item)
            if key is not None:
                remote_by_id[key] = item

        conflicts = []
        for local in local_items:
            key = canonical_id(local)
            if key is None or key not in remote_by_id:
                continue
            remote = remote_by_id[key]
            check = self.check(local, remote)
            if check.has_conflict:
                conflicts.append(Conflict(
                    entity_type=entity_type,
                    canonical_id=key,
                    local_data=local,
                    server_data=remote,
                    check=check,
                ))
        return conflicts

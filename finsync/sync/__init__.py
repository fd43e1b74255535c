"""Conflict detection, resolution and whole-graph reconciliation."""

from finsync.sync.detector import (
    ConflictDetector,
    canonical_id,
    fingerprint,
    record_timestamp,
)
from finsync.sync.resolver import ConflictResolver, coerce_strategy
from finsync.sync.reconciler import SyncReconciler

__all__ = [
    "ConflictDetector",
    "ConflictResolver",
    "SyncReconciler",
    "canonical_id",
    "coerce_strategy",
    "fingerprint",
    "record_timestamp",
]

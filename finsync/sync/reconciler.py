"""
Sync Reconciler

Runs detection and resolution over a user's whole graph: every entity
collection of the local snapshot is compared with the remote graph, each
conflicting pair is resolved, and the resolved records replace their remote
counterparts in place. Records that need a manual choice keep the remote
version until the user picks one.
"""

import copy
from typing import Any, Optional

import structlog

from finsync.audit.logger import AuditLogger, create_correlation_id
from finsync.models.entities import EntityType
from finsync.models.sync import (
    ReconciliationEntry,
    ReconciliationReport,
    ResolutionSource,
)
from finsync.sync.detector import ConflictDetector, canonical_id
from finsync.sync.resolver import ConflictResolver, StrategyLike


logger = structlog.get_logger(__name__)

Graph = dict[str, list[dict[str, Any]]]


class SyncReconciler:
    """
    Reconciles a local graph against the remote graph.

    If a persistence layer is given, the resolved graph is written to it
    whenever at least one conflict was found.
    """

    def __init__(
        self,
        detector: Optional[ConflictDetector] = None,
        resolver: Optional[ConflictResolver] = None,
        audit_logger: Optional[AuditLogger] = None,
        persistence: Optional[Any] = None,
    ):
        self._detector = detector or ConflictDetector()
        self._resolver = resolver or ConflictResolver()
        self._audit = audit_logger or AuditLogger()
        self._persistence = persistence

    async def reconcile(
        self,
        local_graph: Graph,
        remote_graph: Graph,
        strategy: StrategyLike = None,
    ) -> ReconciliationReport:
        correlation_id = create_correlation_id()
        resolved_graph: Graph = {}
        entries: list[ReconciliationEntry] = []

        for entity_type in EntityType:
            key = entity_type.value
            remote_items = copy.deepcopy(remote_graph.get(key) or [])
            positions = {
                canonical_id(item): index
                for index, item in enumerate(remote_items)
                if canonical_id(item) is not None
            }

            conflicts = self._detector.detect(
                local_graph.get(key) or [], remote_items, key
            )
            for conflict in conflicts:
                resolution = self._resolver.resolve(
                    conflict.local_data, conflict.server_data, strategy
                )
                entry = ReconciliationEntry(
                    entity_type=key,
                    canonical_id=conflict.canonical_id,
                    resolution=resolution,
                    local_timestamp=conflict.check.local_timestamp,
                    server_timestamp=conflict.check.remote_timestamp,
                    requires_manual_resolution=not resolution.resolved,
                )
                entries.append(entry)

                if resolution.resolved:
                    remote_items[positions[conflict.canonical_id]] = resolution.data
                    await self._audit.log_conflict_resolved(
                        entity_type=key,
                        canonical_id=conflict.canonical_id,
                        strategy=resolution.strategy,
                        source=resolution.source,
                        reason=resolution.reason,
                        correlation_id=correlation_id,
                    )
                else:
                    await self._audit.log_manual_resolution_required(
                        entity_type=key,
                        canonical_id=conflict.canonical_id,
                        changed_fields=conflict.check.changed_fields,
                        correlation_id=correlation_id,
                    )

            resolved_graph[key] = remote_items

        report = ReconciliationReport(resolved_graph=resolved_graph, entries=entries)
        logger.info(
            "reconciliation_finished",
            conflicts=report.conflict_count,
            unresolved=report.unresolved_count,
            local_wins=sum(
                1 for e in entries if e.resolution.source == ResolutionSource.LOCAL
            ),
        )

        if self._persistence is not None and entries:
            await self._persistence.save(resolved_graph)

        return report

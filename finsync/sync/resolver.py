"""
Conflict Resolver

Settles one local/remote conflict under a strategy. Resolution is pure
apart from reading the clock for MERGE, and it never raises: an unknown
strategy falls back to the configured default and unparseable timestamps
count as epoch 0.
"""

import copy
from datetime import datetime
from typing import Any, Callable, Optional, Union

import structlog

from finsync.models.sync import ConflictResolution, ConflictStrategy, ResolutionSource
from finsync.models.timestamps import to_iso_string, utcnow
from finsync.sync.detector import CANONICAL_ID_FIELDS, record_timestamp


logger = structlog.get_logger(__name__)

StrategyLike = Union[ConflictStrategy, str, None]


def coerce_strategy(
    value: StrategyLike,
    default: ConflictStrategy = ConflictStrategy.LAST_WRITE_WINS,
) -> ConflictStrategy:
    """Strategy enum for a name, or the default for anything unknown."""
    if isinstance(value, ConflictStrategy):
        return value
    if value:
        try:
            return ConflictStrategy(str(value).strip().lower())
        except ValueError:
            logger.warning("unknown_conflict_strategy", strategy=str(value), fallback=default.value)
    return default


class ConflictResolver:
    """
    Resolves conflicts between a local and a remote copy of one record.

    Ties under LAST_WRITE_WINS go to the remote copy: it carries the
    canonical id and is what every other device already sees.
    """

    def __init__(
        self,
        default_strategy: StrategyLike = ConflictStrategy.LAST_WRITE_WINS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._default = coerce_strategy(default_strategy)
        self._clock = clock

    @property
    def default_strategy(self) -> ConflictStrategy:
        return self._default

    def set_default_strategy(self, strategy: StrategyLike) -> ConflictStrategy:
        """Change the default; unknown names leave it unchanged."""
        self._default = coerce_strategy(strategy, self._default)
        return self._default

    def resolve(
        self,
        local: dict[str, Any],
        remote: dict[str, Any],
        strategy: StrategyLike = None,
    ) -> ConflictResolution:
        chosen = coerce_strategy(strategy, self._default)
        handlers = {
            ConflictStrategy.LAST_WRITE_WINS: self._last_write_wins,
            ConflictStrategy.SERVER_WINS: self._server_wins,
            ConflictStrategy.CLIENT_WINS: self._client_wins,
            ConflictStrategy.MERGE: self._merge,
            ConflictStrategy.MANUAL: self._manual,
        }
        return handlers[chosen](local, remote)

    def _last_write_wins(self, local: dict, remote: dict) -> ConflictResolution:
        local_time = record_timestamp(local)
        remote_time = record_timestamp(remote)

        if local_time > remote_time:
            source = ResolutionSource.LOCAL
            reason = f"Local version is newer ({local_time:.0f} > {remote_time:.0f})"
        elif remote_time > local_time:
            source = ResolutionSource.SERVER
            reason = f"Server version is newer ({remote_time:.0f} > {local_time:.0f})"
        else:
            source = ResolutionSource.SERVER
            reason = "Same timestamp, using server version"

        winner = local if source == ResolutionSource.LOCAL else remote
        return ConflictResolution(
            resolved=True,
            data=copy.deepcopy(winner),
            source=source,
            reason=reason,
            strategy=ConflictStrategy.LAST_WRITE_WINS,
        )

    def _server_wins(self, local: dict, remote: dict) -> ConflictResolution:
        return ConflictResolution(
            resolved=True,
            data=copy.deepcopy(remote),
            source=ResolutionSource.SERVER,
            reason="Server wins strategy",
            strategy=ConflictStrategy.SERVER_WINS,
        )

    def _client_wins(self, local: dict, remote: dict) -> ConflictResolution:
        return ConflictResolution(
            resolved=True,
            data=copy.deepcopy(local),
            source=ResolutionSource.LOCAL,
            reason="Client wins strategy",
            strategy=ConflictStrategy.CLIENT_WINS,
        )

    def _merge(self, local: dict, remote: dict) -> ConflictResolution:
        """
        Start from remote; take local's non-null fields only when the local
        document is strictly newer. Field-level timestamps don't exist, so
        the document timestamp stands in for every field.
        """
        merged = copy.deepcopy(remote)
        local_newer = record_timestamp(local) > record_timestamp(remote)

        if local_newer:
            for key, value in local.items():
                if key in CANONICAL_ID_FIELDS or key in ("createdAt", "updatedAt"):
                    continue
                if value is not None:
                    merged[key] = copy.deepcopy(value)

        merged["updatedAt"] = to_iso_string(self._clock())
        return ConflictResolution(
            resolved=True,
            data=merged,
            source=ResolutionSource.MERGED,
            reason=(
                "Merged local changes into server version" if local_newer
                else "Server version is not older, kept its fields"
            ),
            strategy=ConflictStrategy.MERGE,
        )

    def _manual(self, local: dict, remote: dict) -> ConflictResolution:
        return ConflictResolution(
            resolved=False,
            local_data=copy.deepcopy(local),
            server_data=copy.deepcopy(remote),
            source=ResolutionSource.MANUAL,
            reason="Requires manual resolution",
            strategy=ConflictStrategy.MANUAL,
        )

"""
Local Persistence Layer

Keeps one full-graph JSON snapshot of the user's data on the device, so the
app starts with data before the remote store answers.

Three jobs:
1. Debounced autosave: every mutation reschedules a single pending write;
   only the last write of a burst runs, and it asks the state provider for
   the graph at firing time rather than capturing it when scheduled.
2. Manual backups: timestamped copies in a dedicated backup location.
3. Load on start: the last snapshot, or None.

The queue of sync operations still waiting for the remote store lives in
a second file next to the snapshot.

DESIGN DECISION: Persistence failures are never fatal. A full disk or a
corrupt file is logged and audited, and the caller sees "no snapshot"
(None / False). The remote store stays the source of truth.
"""

import asyncio
import json
import os
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

import structlog
from pydantic_core import to_jsonable_python

from finsync.audit.logger import AuditLogger
from finsync.config import PersistenceSettings
from finsync.models.timestamps import to_iso_string, utcnow


logger = structlog.get_logger(__name__)

StateProvider = Callable[[], Optional[dict[str, Any]]]


# =============================================================================
# BACKENDS
# =============================================================================

class SnapshotBackend(ABC):
    """
    Read/write contract for snapshot blobs.

    Names are relative, '/'-separated (e.g. "finance-tracker-backups/x.json").
    Implementations raise OSError on failure; the layer above absorbs it.
    """

    @abstractmethod
    def read(self, name: str) -> Optional[str]:
        """Blob contents, or None if it doesn't exist."""
        pass

    @abstractmethod
    def write(self, name: str, text: str) -> None:
        pass

    @abstractmethod
    def list(self, folder: str) -> list[str]:
        """Names of the blobs directly inside folder."""
        pass

    def location(self, name: str) -> str:
        """Human-readable location of a blob."""
        return name


class FileSnapshotBackend(SnapshotBackend):
    """Snapshot files under a root directory on the local filesystem."""

    def __init__(self, root: Path):
        self._root = Path(root).expanduser()

    def _path(self, name: str) -> Path:
        return self._root / name

    def read(self, name: str) -> Optional[str]:
        path = self._path(name)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def write(self, name: str, text: str) -> None:
        path = self._path(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        # Write then rename, so a crash mid-write leaves the old snapshot intact
        tmp_path = path.with_name(path.name + ".tmp")
        tmp_path.write_text(text, encoding="utf-8")
        os.replace(tmp_path, path)

    def list(self, folder: str) -> list[str]:
        directory = self._path(folder)
        if not directory.is_dir():
            return []
        return [f"{folder}/{entry.name}" for entry in directory.iterdir() if entry.is_file()]

    def location(self, name: str) -> str:
        return str(self._path(name))


class MemorySnapshotBackend(SnapshotBackend):
    """In-memory blobs; stands in for browser storage and sandboxes."""

    def __init__(self):
        self.blobs: dict[str, str] = {}

    def read(self, name: str) -> Optional[str]:
        return self.blobs.get(name)

    def write(self, name: str, text: str) -> None:
        self.blobs[name] = text

    def list(self, folder: str) -> list[str]:
        prefix = f"{folder}/"
        return [
            name for name in self.blobs
            if name.startswith(prefix) and "/" not in name[len(prefix):]
        ]


# =============================================================================
# PERSISTENCE LAYER
# =============================================================================

def backup_file_name(moment: datetime) -> str:
    """backup-<ISO timestamp with ':' and '.' replaced by '-'>.json"""
    stamp = to_iso_string(moment).replace(":", "-").replace(".", "-")
    return f"backup-{stamp}.json"


class LocalPersistenceLayer:
    """
    Snapshot persistence with debounced autosave.

    schedule_save() must be called from inside a running event loop; the
    timer lives on that loop.
    """

    def __init__(
        self,
        backend: SnapshotBackend,
        state_provider: Optional[StateProvider] = None,
        settings: Optional[PersistenceSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = utcnow,
        autosave_delay: Optional[float] = None,
    ):
        settings = settings or PersistenceSettings()
        self._backend = backend
        self._state_provider = state_provider
        self._audit = audit_logger or AuditLogger()
        self._clock = clock

        self.snapshot_name = settings.data_file_name
        self.backup_folder = settings.backup_dir_name
        self.queue_name = settings.queue_file_name
        self.autosave_delay = (
            settings.autosave_delay_seconds if autosave_delay is None else autosave_delay
        )
        self._autosave_enabled = settings.autosave_enabled

        self._timer: Optional[asyncio.TimerHandle] = None
        self._in_flight: set[asyncio.Task] = set()

    @property
    def autosave_enabled(self) -> bool:
        return self._autosave_enabled

    @property
    def has_pending_save(self) -> bool:
        return self._timer is not None

    def set_state_provider(self, provider: StateProvider) -> None:
        self._state_provider = provider

    async def _fail(self, operation: str, name: str, error: Exception) -> None:
        location = self._backend.location(name)
        logger.warning(
            "snapshot_operation_failed",
            operation=operation,
            location=location,
            error=str(error),
        )
        await self._audit.log_snapshot_failed(operation, location, str(error))

    def _current_state(self, data: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
        if data is not None:
            return data
        if self._state_provider is None:
            return None
        return self._state_provider()

    @staticmethod
    def _serialize(data: dict[str, Any]) -> str:
        return json.dumps(to_jsonable_python(data), indent=2, ensure_ascii=False)

    # -------------------------------------------------------------------------
    # Load / save
    # -------------------------------------------------------------------------

    async def load(self, name: Optional[str] = None) -> Optional[dict[str, Any]]:
        """
        The stored snapshot (or a named backup), or None.

        Missing, unreadable and corrupt snapshots all give None.
        """
        name = name or self.snapshot_name
        try:
            text = self._backend.read(name)
            if text is None:
                return None
            data = json.loads(text)
        except (OSError, ValueError) as e:
            await self._fail("load", name, e)
            return None

        if not isinstance(data, dict):
            await self._fail("load", name, ValueError("Snapshot is not a JSON object"))
            return None
        return data

    async def save(self, data: Optional[dict[str, Any]] = None) -> bool:
        """
        Write the snapshot now.

        Args:
            data: Graph to write; defaults to the state provider's current graph

        Returns:
            True if the snapshot was written
        """
        state = self._current_state(data)
        if state is None:
            logger.debug("snapshot_skipped_no_state")
            return False
        try:
            self._backend.write(self.snapshot_name, self._serialize(state))
        except (OSError, TypeError, ValueError) as e:
            await self._fail("save", self.snapshot_name, e)
            return False

        logger.debug("snapshot_saved", location=self._backend.location(self.snapshot_name))
        return True

    # -------------------------------------------------------------------------
    # Pending operations queue
    # -------------------------------------------------------------------------

    async def load_queue(self) -> list[dict[str, Any]]:
        """Queued sync operations; empty if none were saved or the file is unusable."""
        data = await self.load(self.queue_name)
        if data is None:
            return []
        operations = data.get("operations")
        if not isinstance(operations, list):
            await self._fail("load", self.queue_name, ValueError("Queue has no operations list"))
            return []
        return operations

    async def save_queue(self, operations: list[dict[str, Any]]) -> bool:
        """Replace the stored queue; False if it could not be written."""
        try:
            self._backend.write(self.queue_name, self._serialize({"operations": operations}))
        except (OSError, TypeError, ValueError) as e:
            await self._fail("save", self.queue_name, e)
            return False
        return True

    # -------------------------------------------------------------------------
    # Debounced autosave
    # -------------------------------------------------------------------------

    def schedule_save(self) -> bool:
        """
        (Re)start the autosave timer.

        Any pending timer is cancelled first, so a burst of mutations
        produces exactly one write, autosave_delay after the last of them.

        Returns:
            False if autosave is disabled
        """
        if not self._autosave_enabled:
            return False

        loop = asyncio.get_running_loop()
        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(self.autosave_delay, self._fire, loop)
        return True

    def _fire(self, loop: asyncio.AbstractEventLoop) -> None:
        self._timer = None
        task = loop.create_task(self.save())
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def flush(self) -> bool:
        """
        Run a pending autosave immediately and wait for in-flight writes.

        Returns:
            False if the forced write failed
        """
        ok = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            ok = await self.save()
        if self._in_flight:
            results = await asyncio.gather(*self._in_flight)
            ok = ok and all(results)
        return ok

    def close(self) -> None:
        """Drop a pending autosave without writing."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def set_autosave(self, enabled: bool) -> None:
        """Turn autosave on or off; turning it off cancels a pending write."""
        self._autosave_enabled = enabled
        if not enabled:
            self.close()

    # -------------------------------------------------------------------------
    # Backups
    # -------------------------------------------------------------------------

    async def create_backup(self, data: Optional[dict[str, Any]] = None) -> Optional[str]:
        """
        Write a timestamped copy of the graph to the backup location.

        Returns:
            Location of the backup, or None if it could not be written
        """
        state = self._current_state(data)
        if state is None:
            return None

        name = f"{self.backup_folder}/{backup_file_name(self._clock())}"
        try:
            self._backend.write(name, self._serialize(state))
        except (OSError, TypeError, ValueError) as e:
            await self._fail("backup", name, e)
            return None

        location = self._backend.location(name)
        await self._audit.log_backup_created(location)
        return location

    async def list_backups(self) -> list[str]:
        """Backup names, newest first."""
        try:
            names = self._backend.list(self.backup_folder)
        except OSError as e:
            await self._fail("list", self.backup_folder, e)
            return []

        backups = [
            name for name in names
            if name.rsplit("/", 1)[-1].startswith("backup-") and name.endswith(".json")
        ]
        # ISO timestamps sort chronologically as strings
        return sorted(backups, reverse=True)

"""On-device snapshot persistence."""

from finsync.persistence.local import (
    FileSnapshotBackend,
    LocalPersistenceLayer,
    MemorySnapshotBackend,
    SnapshotBackend,
    backup_file_name,
)

__all__ = [
    "FileSnapshotBackend",
    "LocalPersistenceLayer",
    "MemorySnapshotBackend",
    "SnapshotBackend",
    "backup_file_name",
]

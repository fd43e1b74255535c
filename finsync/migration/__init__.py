"""Clean-slate bulk import of an exported entity graph."""

from finsync.migration.importer import (
    MigrationError,
    MigrationImporter,
    MigrationPreconditionError,
    UnresolvedReferenceError,
    parse_payload,
)

__all__ = [
    "MigrationError",
    "MigrationImporter",
    "MigrationPreconditionError",
    "UnresolvedReferenceError",
    "parse_payload",
]

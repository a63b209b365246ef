"""Storage backends and schema migrations."""

from .schema import MIGRATIONS, Migration, SchemaMigrator
from .sqlite import SQLiteStore

__all__ = (
    "SQLiteStore",
    "SchemaMigrator",
    "Migration",
    "MIGRATIONS",
)

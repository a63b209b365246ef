"""Versioned schema migrations for the tables toolwarden owns."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..clock import Clock, format_timestamp, utc_now
from ..protocols import Storage

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Migration:
    version: int
    statements: tuple[str, ...]


MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        1,
        (
            """
            CREATE TABLE IF NOT EXISTS ApprovalRecords (
                TokenId TEXT PRIMARY KEY,
                Domain TEXT NOT NULL,
                ToolName TEXT NOT NULL,
                Scope INTEGER NOT NULL,
                ExpiresAtUtc TEXT NOT NULL,
                ApprovedAtUtc TEXT NOT NULL,
                IsConsumed INTEGER NOT NULL DEFAULT 0
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS AuditLog (
                Id TEXT PRIMARY KEY,
                CorrelationId TEXT NOT NULL,
                Domain TEXT NOT NULL,
                ToolName TEXT NOT NULL,
                Scope INTEGER NOT NULL,
                SideEffects TEXT NOT NULL,
                Succeeded INTEGER NOT NULL,
                FailureReason TEXT,
                DurationMs INTEGER NOT NULL,
                MetadataJson TEXT,
                OccurredAtUtc TEXT NOT NULL
            )
            """,
        ),
    ),
    Migration(
        2,
        (
            "CREATE INDEX IF NOT EXISTS idx_auditlog_correlation ON AuditLog (CorrelationId)",
            "CREATE INDEX IF NOT EXISTS idx_auditlog_occurred ON AuditLog (OccurredAtUtc)",
        ),
    ),
)


class SchemaMigrator:
    """Applies each migration once, recording it in SchemaMigrations."""

    def __init__(
        self,
        store: Storage,
        migrations: tuple[Migration, ...] = MIGRATIONS,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._migrations = migrations
        self._clock = clock or utc_now

    async def migrate(self) -> list[int]:
        """Apply pending migrations in version order. Returns applied versions."""
        await self._store.execute(
            """
            CREATE TABLE IF NOT EXISTS SchemaMigrations (
                Version INTEGER PRIMARY KEY,
                AppliedAtUtc TEXT NOT NULL
            )
            """
        )
        rows = await self._store.query("SELECT Version FROM SchemaMigrations ORDER BY Version")
        known = {int(row["Version"]) for row in rows}

        applied: list[int] = []
        for migration in sorted(self._migrations, key=lambda m: m.version):
            if migration.version in known:
                continue
            for sql in migration.statements:
                await self._store.execute(sql)
            await self._store.execute(
                "INSERT INTO SchemaMigrations (Version, AppliedAtUtc) VALUES (?, ?)",
                (migration.version, format_timestamp(self._clock())),
            )
            applied.append(migration.version)
            _logger.info("applied schema migration version=%s", migration.version)
        return applied

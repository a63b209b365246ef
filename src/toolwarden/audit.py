"""Append-only audit log backed by the AuditLog table."""

from __future__ import annotations

import json
from typing import Any, Mapping
from uuid import uuid4

from .clock import Clock, format_timestamp, utc_now
from .errors import AuditLogError, StorageError
from .protocols import Storage
from .types import AuditRecord, ScopeClassification

DEFAULT_RECENT_LIMIT: int = 100
MAX_RECENT_LIMIT: int = 10_000


class AuditLogWriter:
    """Writes one row per tool invocation. Rows are never updated or deleted."""

    def __init__(self, store: Storage, clock: Clock | None = None) -> None:
        self._store = store
        self._clock = clock or utc_now

    async def write(
        self,
        *,
        correlation_id: str,
        domain: str,
        tool_name: str,
        scope: ScopeClassification,
        side_effects: str,
        succeeded: bool,
        failure_reason: str | None,
        duration_ms: int,
        metadata: Mapping[str, Any] | None,
    ) -> str:
        """Append a record and return its id."""
        record_id = uuid4().hex
        try:
            metadata_json = None if metadata is None else json.dumps(dict(metadata), default=str)
            await self._store.execute(
                """
                INSERT INTO AuditLog (
                    Id, CorrelationId, Domain, ToolName, Scope, SideEffects, Succeeded,
                    FailureReason, DurationMs, MetadataJson, OccurredAtUtc
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record_id,
                    correlation_id,
                    domain,
                    tool_name,
                    int(scope),
                    side_effects,
                    1 if succeeded else 0,
                    failure_reason,
                    int(duration_ms),
                    metadata_json,
                    format_timestamp(self._clock()),
                ),
            )
        except (StorageError, TypeError, ValueError) as exc:
            raise AuditLogError(f"Failed to write audit log: {exc}") from exc
        return record_id

    async def by_correlation_id(self, correlation_id: str) -> list[AuditRecord]:
        rows = await self._store.query(
            "SELECT * FROM AuditLog WHERE CorrelationId = ? ORDER BY OccurredAtUtc ASC",
            (correlation_id,),
        )
        return [AuditRecord.from_row(row) for row in rows]

    async def recent(
        self,
        *,
        limit: int = DEFAULT_RECENT_LIMIT,
        domain: str | None = None,
        tool_name: str | None = None,
        succeeded: bool | None = None,
    ) -> list[AuditRecord]:
        """Most recent records first, optionally filtered."""
        if limit < 1 or limit > MAX_RECENT_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_RECENT_LIMIT}")
        clauses: list[str] = []
        params: list[Any] = []
        if domain is not None:
            clauses.append("Domain = ?")
            params.append(domain)
        if tool_name is not None:
            clauses.append("ToolName = ?")
            params.append(tool_name)
        if succeeded is not None:
            clauses.append("Succeeded = ?")
            params.append(1 if succeeded else 0)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        rows = await self._store.query(
            f"SELECT * FROM AuditLog {where} ORDER BY OccurredAtUtc DESC, rowid DESC LIMIT ?",
            params,
        )
        return [AuditRecord.from_row(row) for row in rows]

"""aiosqlite-backed implementation of the storage contract.

Design notes:
- One connection per statement; nothing is held across approval waits
- WAL + synchronous=FULL on every connection, like the ledger backends
- Writes serialize at the SQLite level; callers rely on row counts from
  conditional UPDATEs rather than in-process locks
"""

from __future__ import annotations

import sqlite3
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite

from ..errors import StorageError
from ..protocols import SQLParams

DEFAULT_BUSY_TIMEOUT_SECONDS: float = 5.0


@dataclass
class SQLiteStore:
    """File-backed SQLite store.

    Usage:
        store = SQLiteStore(Path("data/personal-mcp.db"))
        await SchemaMigrator(store).migrate()
        rows = await store.query("SELECT * FROM AuditLog WHERE Domain = ?", ("finance",))
    """

    path: Path
    busy_timeout: float = field(default=DEFAULT_BUSY_TIMEOUT_SECONDS)

    def __post_init__(self) -> None:
        self.path = Path(self.path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    async def execute(self, sql: str, params: SQLParams | None = None) -> int:
        """Run a single statement in its own transaction. Returns rows affected."""
        try:
            async with self._connect() as db:
                cursor = await db.execute(sql, _bind(params))
                await db.commit()
                return cursor.rowcount
        except sqlite3.Error as exc:
            raise StorageError(f"statement failed: {exc}") from exc

    async def query(self, sql: str, params: SQLParams | None = None) -> list[dict[str, Any]]:
        """Run a query and return every row as a dict keyed by column name."""
        try:
            async with self._connect() as db:
                db.row_factory = aiosqlite.Row
                async with db.execute(sql, _bind(params)) as cursor:
                    rows = await cursor.fetchall()
                return [dict(row) for row in rows]
        except sqlite3.Error as exc:
            raise StorageError(f"query failed: {exc}") from exc

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        """Open a connection for one statement. Always closes."""
        async with aiosqlite.connect(self.path, timeout=self.busy_timeout) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute("PRAGMA synchronous=FULL")
            await db.execute("PRAGMA foreign_keys=ON")
            yield db


def _bind(params: SQLParams | None) -> Any:
    if params is None:
        return ()
    if isinstance(params, (list, tuple, dict)):
        return params
    if hasattr(params, "keys"):
        return dict(params)
    return tuple(params)

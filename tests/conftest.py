from __future__ import annotations

import asyncio
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator

import pytest

from toolwarden.storage import SchemaMigrator, SQLiteStore


@pytest.fixture(scope="session", autouse=True)
def _default_database_path(tmp_path_factory: pytest.TempPathFactory) -> Iterator[None]:
    """Keep tests that read settings from the environment off the real database."""
    db_path = tmp_path_factory.mktemp("toolwarden_default") / "default.db"
    previous = os.environ.get("TOOLWARDEN_DATABASE_PATH")
    os.environ["TOOLWARDEN_DATABASE_PATH"] = str(db_path)
    try:
        yield
    finally:
        if previous is None:
            os.environ.pop("TOOLWARDEN_DATABASE_PATH", None)
        else:
            os.environ["TOOLWARDEN_DATABASE_PATH"] = previous


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 25, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "toolwarden.db"


@pytest.fixture
def store(db_path: Path) -> SQLiteStore:
    """A migrated store in a fresh database file."""
    store = SQLiteStore(db_path)
    asyncio.run(SchemaMigrator(store).migrate())
    return store

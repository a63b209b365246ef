"""Clock helpers shared by the token service, gate and audit log."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, TypeAlias

Clock: TypeAlias = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format datetime as ISO 8601 with microseconds and Z suffix.

    The fixed width keeps persisted timestamps lexicographically ordered, so
    SQL comparisons on the text columns match chronological order.
    """
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_timestamp(value: str) -> datetime:
    """Parse a timestamp written by ``format_timestamp`` (or any ISO 8601 form)."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed

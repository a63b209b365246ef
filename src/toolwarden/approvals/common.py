"""Shared approval constants and validators."""

from __future__ import annotations

from datetime import datetime, timedelta

DEFAULT_TTL_SECONDS: int = 600  # 10 minutes default
MAX_TOKEN_TTL_SECONDS: int = 86400  # 24 hour hard cap (no token outlives a day)
BINDING_SEPARATOR = "|"


def validate_nonempty_str(name: str, value: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} must be a non-empty string")


def validate_binding_part(name: str, value: str) -> None:
    """Binding fields end up in a ``|``-separated payload, so forbid the separator."""
    validate_nonempty_str(name, value)
    if BINDING_SEPARATOR in value:
        raise ValueError(f"{name} must not contain {BINDING_SEPARATOR!r}")


def capped_expiry(
    now: datetime,
    ttl: timedelta | None,
    *,
    max_ttl_seconds: int = MAX_TOKEN_TTL_SECONDS,
) -> datetime:
    """Expiry for a token issued at ``now``, never past the hard cap."""
    if ttl is None:
        ttl = timedelta(seconds=DEFAULT_TTL_SECONDS)
    return now + min(ttl, timedelta(seconds=max_ttl_seconds))

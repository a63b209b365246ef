"""Configuration for toolwarden.

Settings are plain pydantic models. ``GovernanceSettings.from_env`` overlays
``TOOLWARDEN_*`` environment variables on the defaults.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping

from pydantic import BaseModel, Field, field_validator

from .types import DEFAULT_PROJECT, DEFAULT_TENANT, ScopeClassification

ENV_PREFIX = "TOOLWARDEN_"

DEFAULT_APPROVAL_TIMEOUT_SECONDS: float = 300.0
DEFAULT_TOKEN_TTL_MINUTES: int = 10
DEFAULT_DATABASE_PATH = Path("data") / "personal-mcp.db"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class SensitiveOperation(BaseModel):
    """An operation the interactive gate treats as requiring approval."""

    model_config = {"frozen": True}

    domain: str
    operation: str
    scope: ScopeClassification
    description: str | None = None

    @field_validator("scope", mode="before")
    @classmethod
    def _parse_scope(cls, value: Any) -> ScopeClassification:
        return ScopeClassification.parse(value)


def _default_sensitive_operations() -> list[SensitiveOperation]:
    return [
        SensitiveOperation(domain="finance", operation="create_invoice", scope=ScopeClassification.WRITE),
        SensitiveOperation(domain="finance", operation="post_journal", scope=ScopeClassification.SENSITIVE),
        SensitiveOperation(domain="finance", operation="modify_account", scope=ScopeClassification.SENSITIVE),
        SensitiveOperation(domain="git", operation="merge_protected_branch", scope=ScopeClassification.SENSITIVE),
        SensitiveOperation(domain="git", operation="force_push", scope=ScopeClassification.SENSITIVE),
        SensitiveOperation(domain="git", operation="delete_branch", scope=ScopeClassification.SENSITIVE),
    ]


class GovernanceSettings(BaseModel):
    """Governance and storage settings."""

    model_config = {"frozen": True}

    enable_approval_gates: bool = True
    approval_timeout_seconds: float = DEFAULT_APPROVAL_TIMEOUT_SECONDS
    default_token_ttl_minutes: int = DEFAULT_TOKEN_TTL_MINUTES
    database_path: Path = DEFAULT_DATABASE_PATH
    signing_secret: str | None = Field(default=None, repr=False)
    active_tenant: str = DEFAULT_TENANT
    active_project: str = DEFAULT_PROJECT
    sensitive_operations: list[SensitiveOperation] = Field(default_factory=_default_sensitive_operations)

    @field_validator("approval_timeout_seconds")
    @classmethod
    def _timeout_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("approval_timeout_seconds must be positive")
        return value

    @field_validator("default_token_ttl_minutes")
    @classmethod
    def _ttl_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("default_token_ttl_minutes must be at least 1")
        return value

    @field_validator("signing_secret")
    @classmethod
    def _secret_not_blank(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: Any) -> "GovernanceSettings":
        """Build settings from ``TOOLWARDEN_*`` variables; keyword overrides win."""
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        gates = env.get(f"{ENV_PREFIX}ENABLE_APPROVAL_GATES")
        if gates is not None:
            values["enable_approval_gates"] = _parse_bool("ENABLE_APPROVAL_GATES", gates)
        timeout = env.get(f"{ENV_PREFIX}APPROVAL_TIMEOUT_SECONDS")
        if timeout is not None:
            values["approval_timeout_seconds"] = float(timeout)
        ttl = env.get(f"{ENV_PREFIX}TOKEN_TTL_MINUTES")
        if ttl is not None:
            values["default_token_ttl_minutes"] = int(ttl)
        db_path = env.get(f"{ENV_PREFIX}DATABASE_PATH")
        if db_path:
            values["database_path"] = Path(db_path)
        secret = env.get(f"{ENV_PREFIX}SIGNING_SECRET")
        if secret:
            values["signing_secret"] = secret
        tenant = env.get(f"{ENV_PREFIX}TENANT")
        if tenant:
            values["active_tenant"] = tenant
        project = env.get(f"{ENV_PREFIX}PROJECT")
        if project:
            values["active_project"] = project

        values.update(overrides)
        return cls(**values)


def _parse_bool(name: str, raw: str) -> bool:
    text = raw.strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValueError(f"{ENV_PREFIX}{name} must be a boolean, got {raw!r}")

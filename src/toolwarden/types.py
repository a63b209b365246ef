"""Typed models for toolwarden."""

from __future__ import annotations

import getpass
import json
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .clock import utc_now

DEFAULT_TENANT = "local-personal"
DEFAULT_PROJECT = "default"


class ScopeClassification(IntEnum):
    """Risk tier of an operation. Persisted as its integer value."""

    READ_ONLY = 0
    WRITE = 1
    SENSITIVE = 2

    @property
    def label(self) -> str:
        return _SCOPE_LABELS[self]

    @classmethod
    def parse(cls, value: Any) -> "ScopeClassification":
        """Accept an enum member, its integer value, or a label/name in any case."""
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise ValueError(f"invalid scope: {value!r}")
        if isinstance(value, int):
            return cls(value)
        if isinstance(value, str):
            key = value.strip().replace("_", "").replace("-", "").lower()
            if key.isdigit():
                return cls(int(key))
            for member, label in _SCOPE_LABELS.items():
                if label.lower() == key:
                    return member
        raise ValueError(f"invalid scope: {value!r}")


_SCOPE_LABELS: dict[ScopeClassification, str] = {
    ScopeClassification.READ_ONLY: "ReadOnly",
    ScopeClassification.WRITE: "Write",
    ScopeClassification.SENSITIVE: "Sensitive",
}


class ApprovalLevel(str, Enum):
    """Approval required before an operation may run."""

    NONE = "none"
    EXPLICIT_TOKEN = "explicit_token"


def _non_empty(name: str, value: str) -> str:
    if not value or not value.strip():
        raise ValueError(f"{name} must be a non-empty string")
    return value


class PolicyDescriptor(BaseModel):
    """Static policy metadata attached to a tool at registration time."""

    model_config = {"frozen": True}

    scope: ScopeClassification
    required_approval: ApprovalLevel = ApprovalLevel.NONE
    side_effects: str
    idempotent: bool = False

    @field_validator("scope", mode="before")
    @classmethod
    def _parse_scope(cls, value: Any) -> ScopeClassification:
        return ScopeClassification.parse(value)

    @field_validator("side_effects")
    @classmethod
    def _side_effects_non_empty(cls, value: str) -> str:
        return _non_empty("side_effects", value)

    @property
    def requires_token(self) -> bool:
        return self.required_approval is not ApprovalLevel.NONE


class ExecutionContext(BaseModel):
    """Per-invocation context. Folded into audit metadata, never stored directly."""

    model_config = {"frozen": True}

    active_tenant: str
    active_project: str
    correlation_id: str
    actor: str
    requested_at: datetime

    @classmethod
    def create(
        cls,
        active_tenant: str | None = None,
        active_project: str | None = None,
        actor: str | None = None,
    ) -> "ExecutionContext":
        return cls(
            active_tenant=active_tenant if active_tenant and active_tenant.strip() else DEFAULT_TENANT,
            active_project=active_project if active_project and active_project.strip() else DEFAULT_PROJECT,
            correlation_id=uuid4().hex,
            actor=actor if actor and actor.strip() else _process_owner(),
            requested_at=utc_now(),
        )


def _process_owner() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


class AuditRecord(BaseModel):
    """One append-only audit row."""

    id: str
    correlation_id: str
    domain: str
    tool_name: str
    scope: ScopeClassification
    side_effects: str
    succeeded: bool
    failure_reason: str | None = None
    duration_ms: int
    metadata: dict[str, Any] | None = None
    occurred_at: str

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "AuditRecord":
        metadata_json = row.get("MetadataJson")
        return cls(
            id=row["Id"],
            correlation_id=row["CorrelationId"],
            domain=row["Domain"],
            tool_name=row["ToolName"],
            scope=ScopeClassification(int(row["Scope"])),
            side_effects=row["SideEffects"],
            succeeded=bool(row["Succeeded"]),
            failure_reason=row.get("FailureReason"),
            duration_ms=int(row["DurationMs"]),
            metadata=json.loads(metadata_json) if metadata_json else None,
            occurred_at=row["OccurredAtUtc"],
        )


class ApprovalRequest(BaseModel):
    """A pending interactive approval request."""

    model_config = {"frozen": True}

    request_id: str
    domain: str
    tool_name: str
    scope: ScopeClassification
    parameters: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utc_now()) > self.expires_at


class ApprovalDecision(BaseModel):
    """An approver's verdict on a pending request."""

    model_config = {"frozen": True}

    request_id: str
    approved: bool
    token: str | None = None
    reason: str | None = None
    decided_at: datetime


class StructuredError(BaseModel):
    """Failure payload returned in place of ``data``."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    code: str
    message: str
    failure_reason: str | None = None
    correlation_id: str
    timestamp_utc: datetime
    metadata: dict[str, Any] | None = None


class ExecutionEnvelope(BaseModel):
    """Uniform result of one tool invocation.

    The rendered shape is identical for success and failure except that
    successful envelopes carry ``data`` and failed ones carry ``error``.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    success: bool
    correlation_id: str
    duration_ms: int
    data: Any = None
    error: StructuredError | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = self.model_dump(mode="json", by_alias=True)
        payload.pop("error" if self.success else "data", None)
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

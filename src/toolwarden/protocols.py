"""Async protocol definitions for toolwarden.

These protocols define the contract at each I/O boundary so the token service,
runner and gate can be exercised against in-memory fakes.

Design notes:
- All I/O operations are async; nothing holds a connection across an await
  that waits on a human
- @runtime_checkable is for debugging/logging convenience only, not dispatch
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any, Mapping, Protocol, Sequence, runtime_checkable

from .types import ScopeClassification

if TYPE_CHECKING:
    from .tokens import TokenVerdict

SQLParams = Sequence[Any] | Mapping[str, Any]


@runtime_checkable
class Storage(Protocol):
    """Minimal parameterized SQL contract.

    Implementations must:
    - Execute each statement in its own short-lived connection/transaction
    - Return affected row counts from ``execute`` (used for conditional writes)
    - Return rows as column-name keyed dicts from ``query``
    """

    async def execute(self, sql: str, params: SQLParams | None = None) -> int:
        """Run a statement and return the number of rows affected."""
        ...

    async def query(self, sql: str, params: SQLParams | None = None) -> list[dict[str, Any]]:
        """Run a query and return all rows."""
        ...


@runtime_checkable
class ApprovalTokens(Protocol):
    """Issues and consumes approval tokens.

    ``enforcing`` is False for the no-op mode used when approval gates are
    disabled; callers use it to short-circuit interactive waits.
    """

    enforcing: bool

    async def issue(
        self, domain: str, tool_name: str, scope: ScopeClassification, ttl: timedelta
    ) -> str:
        """Issue a token bound to (domain, tool_name, scope)."""
        ...

    async def check(
        self, token: str, domain: str, tool_name: str, scope: ScopeClassification
    ) -> "TokenVerdict":
        """Validate and consume a token, returning the verdict with its reason."""
        ...

    async def validate(
        self, token: str, domain: str, tool_name: str, scope: ScopeClassification
    ) -> bool:
        """Validate and consume a token."""
        ...


@runtime_checkable
class AuditWriter(Protocol):
    """Append-only sink for execution audit records."""

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
        """Persist one record and return its id."""
        ...

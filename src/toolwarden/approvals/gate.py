"""Interactive approval gate.

A caller asks for approval and is blocked until an external approver submits a
decision, the deadline passes, or the caller is cancelled.

Design notes:
- Waiting is a future resolved directly by ``submit_decision`` (no polling);
  ``asyncio.wait_for`` enforces the deadline and propagates cancellation
- Approved decisions carry a signed token from the token service, so the
  interactive path produces credentials the policy enforcer accepts
- When the token service is non-enforcing (gates disabled) the gate returns
  its placeholder token without prompting
- The pending entry is removed on every exit path
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any, Mapping
from uuid import uuid4

from rich.console import Console
from rich.markup import escape

from ..clock import Clock, format_timestamp, utc_now
from ..errors import ApprovalDenied, ApprovalRequired, ApprovalTimeout, PromptError, UnknownApprovalRequest
from ..policies import ApprovalPolicy, GovernancePolicy
from ..protocols import ApprovalTokens
from ..redaction import redact_parameters
from ..settings import DEFAULT_APPROVAL_TIMEOUT_SECONDS, DEFAULT_TOKEN_TTL_MINUTES, GovernanceSettings
from ..types import ApprovalDecision, ApprovalRequest, ScopeClassification
from .common import validate_nonempty_str
from .pending import PendingApprovals, deliver

_logger = logging.getLogger(__name__)


class ApprovalGate:
    """Request/decision handshake for operations that need a human decision.

    Usage:
        gate = ApprovalGate(tokens, GovernancePolicy(settings.sensitive_operations))

        # caller side (blocks until decided)
        token = await gate.request_approval("git", "git_merge", ScopeClassification.SENSITIVE,
                                            {"branch": "main"})

        # approver side (CLI, webhook, another task)
        await gate.submit_decision(request_id, approved=True)
    """

    def __init__(
        self,
        tokens: ApprovalTokens,
        policy: ApprovalPolicy,
        *,
        timeout_seconds: float = DEFAULT_APPROVAL_TIMEOUT_SECONDS,
        token_ttl: timedelta = timedelta(minutes=DEFAULT_TOKEN_TTL_MINUTES),
        console: Console | None = None,
        clock: Clock | None = None,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self._tokens = tokens
        self._policy = policy
        self._timeout_seconds = timeout_seconds
        self._token_ttl = token_ttl
        self._console = console or Console(stderr=True)
        self._clock = clock or utc_now
        self._pending = PendingApprovals()

    @classmethod
    def from_settings(
        cls,
        tokens: ApprovalTokens,
        settings: GovernanceSettings,
        *,
        console: Console | None = None,
        clock: Clock | None = None,
    ) -> "ApprovalGate":
        return cls(
            tokens,
            GovernancePolicy(settings.sensitive_operations),
            timeout_seconds=settings.approval_timeout_seconds,
            token_ttl=timedelta(minutes=settings.default_token_ttl_minutes),
            console=console,
            clock=clock,
        )

    @property
    def timeout_seconds(self) -> float:
        return self._timeout_seconds

    def requires_approval(self, domain: str, tool_name: str) -> bool:
        """True when gates are enabled and the operation is Write or Sensitive."""
        if not self._tokens.enforcing:
            return False
        return self._policy.operation_scope(domain, tool_name) >= ScopeClassification.WRITE

    def pending(self) -> list[ApprovalRequest]:
        return self._pending.snapshot()

    def is_pending(self, request_id: str) -> bool:
        return request_id in self._pending

    async def request_approval(
        self,
        domain: str,
        operation: str,
        scope: ScopeClassification,
        parameters: Mapping[str, Any] | None = None,
    ) -> str:
        """Block until a decision arrives. Returns the approval token.

        Raises:
            ApprovalDenied: the approver rejected the request
            ApprovalTimeout: no decision before the deadline
            asyncio.CancelledError: the caller was cancelled
        """
        validate_nonempty_str("domain", domain)
        validate_nonempty_str("operation", operation)
        scope = ScopeClassification.parse(scope)

        if not self._tokens.enforcing:
            return await self._tokens.issue(domain, operation, scope, self._token_ttl)

        now = self._clock()
        request = ApprovalRequest(
            request_id=uuid4().hex,
            domain=domain,
            tool_name=operation,
            scope=scope,
            parameters=redact_parameters(parameters or {}),
            created_at=now,
            expires_at=now + timedelta(seconds=self._timeout_seconds),
        )
        future: asyncio.Future[ApprovalDecision] = asyncio.get_running_loop().create_future()
        self._pending.add(request, future)
        _logger.info(
            "approval requested request_id=%s domain=%s operation=%s scope=%s",
            request.request_id,
            domain,
            operation,
            scope.label,
        )

        try:
            self._emit_prompt(request, parameters or {})
            decision = await asyncio.wait_for(future, timeout=self._timeout_seconds)
        except asyncio.TimeoutError:
            _logger.warning(
                "approval request expired request_id=%s after %ss",
                request.request_id,
                self._timeout_seconds,
            )
            raise ApprovalTimeout(
                f"Approval request {request.request_id} expired after {self._timeout_seconds} seconds"
            ) from None
        finally:
            self._pending.discard(request.request_id)

        if not decision.approved:
            raise ApprovalDenied(decision.reason)
        if not decision.token:
            raise ApprovalRequired("no approval token provided with the decision")
        return decision.token

    async def submit_decision(
        self, request_id: str, approved: bool, reason: str | None = None
    ) -> ApprovalDecision:
        """Record an approver's decision and wake the waiting caller.

        Raises:
            UnknownApprovalRequest: the id is unknown, expired or already decided
        """
        entry = self._pending.claim(request_id)
        token: str | None = None
        if approved:
            request = entry.request
            try:
                token = await self._tokens.issue(
                    request.domain, request.tool_name, request.scope, self._token_ttl
                )
            except BaseException:
                self._pending.release(request_id)
                raise

        decision = ApprovalDecision(
            request_id=request_id,
            approved=approved,
            token=token,
            reason=reason,
            decided_at=self._clock(),
        )
        if not deliver(entry.future, decision):
            raise UnknownApprovalRequest(f"Approval request {request_id} is no longer pending")
        _logger.info(
            "approval decision recorded request_id=%s approved=%s", request_id, approved
        )
        return decision

    def _emit_prompt(self, request: ApprovalRequest, parameters: Mapping[str, Any]) -> None:
        """Write the operator-visible prompt to stderr."""
        prompt = self._policy.approval_prompt(request.domain, request.tool_name, parameters)
        try:
            self._console.print()
            self._console.print(f"[bold red]{escape('[APPROVAL REQUIRED]')}[/bold red]")
            self._console.print(f"[bold]Request ID:[/bold] {escape(request.request_id)}")
            self._console.print(f"[bold]Domain:[/bold] {escape(request.domain)}")
            self._console.print(f"[bold]Operation:[/bold] {escape(request.tool_name)}")
            self._console.print(f"[bold]Scope:[/bold] {escape(request.scope.label)}")
            self._console.print(f"[bold]Expires:[/bold] {escape(format_timestamp(request.expires_at))}")
            self._console.print()
            self._console.print("[bold]Prompt:[/bold]")
            self._console.print(escape(prompt))
            self._console.print()
        except Exception as e:
            raise PromptError(f"Approval prompt failed: {e}") from e

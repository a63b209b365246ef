"""Governance tools: approval issuance and the interactive gate as callable tools."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterator

from .approvals.common import MAX_TOKEN_TTL_SECONDS
from .approvals.gate import ApprovalGate
from .protocols import ApprovalTokens
from .runner import ExecutionRunner
from .settings import DEFAULT_TOKEN_TTL_MINUTES, GovernanceSettings
from .types import ApprovalLevel, ExecutionContext, ExecutionEnvelope, PolicyDescriptor, ScopeClassification

if TYPE_CHECKING:
    from .host import ToolHost

GOVERNANCE_DOMAIN = "governance"

REQUEST_APPROVAL_POLICY = PolicyDescriptor(
    scope=ScopeClassification.READ_ONLY,
    required_approval=ApprovalLevel.NONE,
    side_effects="Creates ApprovalRecords.",
    idempotent=False,
)
SUBMIT_DECISION_POLICY = PolicyDescriptor(
    scope=ScopeClassification.READ_ONLY,
    required_approval=ApprovalLevel.NONE,
    side_effects="Resolves a pending approval request; creates an ApprovalRecord when approved.",
    idempotent=False,
)
LIST_PENDING_POLICY = PolicyDescriptor(
    scope=ScopeClassification.READ_ONLY,
    required_approval=ApprovalLevel.NONE,
    side_effects="No side effects.",
    idempotent=True,
)


class GovernanceTools:
    """Approval operations exposed through the execution runner.

    Every call is audited under the ``governance`` domain like any other tool.
    """

    def __init__(
        self,
        tokens: ApprovalTokens,
        runner: ExecutionRunner,
        gate: ApprovalGate | None = None,
        settings: GovernanceSettings | None = None,
    ) -> None:
        self._tokens = tokens
        self._runner = runner
        self._gate = gate
        self._settings = settings

    async def request_approval(
        self,
        domain: str,
        tool_name: str,
        scope: Any,
        ttl_minutes: int = DEFAULT_TOKEN_TTL_MINUTES,
    ) -> ExecutionEnvelope:
        """Issue an approval token for a write/sensitive tool."""

        async def action() -> dict[str, Any]:
            parsed = ScopeClassification.parse(scope)
            minutes = min(max(1, int(ttl_minutes)), MAX_TOKEN_TTL_SECONDS // 60)
            token = await self._tokens.issue(domain, tool_name, parsed, timedelta(minutes=minutes))
            return {
                "approvalToken": token,
                "domain": domain,
                "toolName": tool_name,
                "scope": parsed.label,
                "expiresInMinutes": minutes,
            }

        return await self._runner.run(
            GOVERNANCE_DOMAIN,
            "governance.request_approval",
            REQUEST_APPROVAL_POLICY,
            self._context(),
            action,
        )

    async def submit_decision(
        self, request_id: str, approved: bool, reason: str | None = None
    ) -> ExecutionEnvelope:
        """Resolve a pending interactive request.

        The approval token is delivered to the waiting caller, not returned here.
        """

        async def action() -> dict[str, Any]:
            decision = await self._require_gate().submit_decision(request_id, approved, reason)
            return {
                "requestId": decision.request_id,
                "approved": decision.approved,
                "reason": decision.reason,
            }

        return await self._runner.run(
            GOVERNANCE_DOMAIN,
            "governance.submit_decision",
            SUBMIT_DECISION_POLICY,
            self._context(),
            action,
        )

    async def list_pending(self) -> ExecutionEnvelope:
        def action() -> list[dict[str, Any]]:
            return [
                {
                    "requestId": request.request_id,
                    "domain": request.domain,
                    "toolName": request.tool_name,
                    "scope": request.scope.label,
                    "parameters": request.parameters,
                    "createdAtUtc": request.created_at.isoformat(),
                    "expiresAtUtc": request.expires_at.isoformat(),
                }
                for request in self._require_gate().pending()
            ]

        return await self._runner.run(
            GOVERNANCE_DOMAIN,
            "governance.list_pending",
            LIST_PENDING_POLICY,
            self._context(),
            action,
        )

    def tools(self) -> Iterator[tuple[str, PolicyDescriptor, Callable[..., Awaitable[ExecutionEnvelope]]]]:
        yield "governance.request_approval", REQUEST_APPROVAL_POLICY, self.request_approval
        if self._gate is not None:
            yield "governance.submit_decision", SUBMIT_DECISION_POLICY, self.submit_decision
            yield "governance.list_pending", LIST_PENDING_POLICY, self.list_pending

    def mount(self, host: "ToolHost") -> None:
        for name, descriptor, handler in self.tools():
            host.mount(name, GOVERNANCE_DOMAIN, descriptor, handler)

    def _require_gate(self) -> ApprovalGate:
        if self._gate is None:
            raise RuntimeError("interactive approval gate is not configured")
        return self._gate

    def _context(self) -> ExecutionContext:
        if self._settings is None:
            return ExecutionContext.create()
        return ExecutionContext.create(self._settings.active_tenant, self._settings.active_project)

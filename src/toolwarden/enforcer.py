"""Policy enforcement for approval-gated tools."""

from __future__ import annotations

import logging

from .errors import ApprovalRequired, InvalidToken
from .protocols import ApprovalTokens
from .types import PolicyDescriptor

_logger = logging.getLogger(__name__)


class PolicyEnforcer:
    """Fail-closed gate in front of a tool's side effect.

    Call ``enforce`` inside the action passed to the execution runner, before
    the domain side effect, so a rejection is audited as a failed invocation
    and nothing has run yet.
    """

    def __init__(self, tokens: ApprovalTokens) -> None:
        self._tokens = tokens

    async def enforce(
        self,
        domain: str,
        tool_name: str,
        descriptor: PolicyDescriptor,
        token: str | None,
    ) -> None:
        if not descriptor.requires_token:
            return

        if token is None or not token.strip():
            if not self._tokens.enforcing:
                # Gates disabled: let the no-op service record the bypass.
                await self._tokens.check("", domain, tool_name, descriptor.scope)
                return
            _logger.info("approval token missing domain=%s tool=%s", domain, tool_name)
            raise ApprovalRequired()

        verdict = await self._tokens.check(token, domain, tool_name, descriptor.scope)
        if not verdict.valid:
            _logger.warning(
                "approval token rejected domain=%s tool=%s reason=%s",
                domain,
                tool_name,
                verdict.reason,
            )
            raise InvalidToken(verdict.reason)

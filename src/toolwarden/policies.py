"""Policy registry and governance policy for toolwarden."""

from __future__ import annotations

from typing import Any, Iterator, Mapping, Protocol

from .redaction import format_parameters
from .settings import SensitiveOperation
from .types import ApprovalLevel, PolicyDescriptor, ScopeClassification


class PolicyRegistry:
    """Mapping from tool name to its PolicyDescriptor, built at startup.

    Registration is write-once per tool name; descriptors are immutable.
    """

    def __init__(self) -> None:
        self._policies: dict[str, tuple[str, PolicyDescriptor]] = {}

    def register(self, domain: str, tool_name: str, descriptor: PolicyDescriptor) -> None:
        if not domain or not domain.strip():
            raise ValueError("domain must be a non-empty string")
        if not tool_name or not tool_name.strip():
            raise ValueError("tool_name must be a non-empty string")
        if tool_name in self._policies:
            raise ValueError(f"tool already registered: {tool_name}")
        self._policies[tool_name] = (domain, descriptor)

    def get(self, tool_name: str) -> PolicyDescriptor:
        try:
            return self._policies[tool_name][1]
        except KeyError:
            raise KeyError(f"unknown tool: {tool_name}") from None

    def domain_of(self, tool_name: str) -> str:
        try:
            return self._policies[tool_name][0]
        except KeyError:
            raise KeyError(f"unknown tool: {tool_name}") from None

    def describe(self) -> list[dict[str, Any]]:
        """Inspectable view of every registered policy, sorted by tool name."""
        return [
            {
                "domain": domain,
                "toolName": name,
                "scope": descriptor.scope.label,
                "requiredApproval": descriptor.required_approval.value,
                "sideEffects": descriptor.side_effects,
                "idempotent": descriptor.idempotent,
            }
            for name, (domain, descriptor) in sorted(self._policies.items())
        ]

    def gated(self) -> list[str]:
        return sorted(
            name
            for name, (_, descriptor) in self._policies.items()
            if descriptor.required_approval is ApprovalLevel.EXPLICIT_TOKEN
        )

    def __contains__(self, tool_name: object) -> bool:
        return tool_name in self._policies

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._policies))

    def __len__(self) -> int:
        return len(self._policies)


class ApprovalPolicy(Protocol):
    """Decides which operations the interactive gate must stop for."""

    def operation_scope(self, domain: str, operation: str) -> ScopeClassification:
        ...

    def approval_prompt(self, domain: str, operation: str, parameters: Mapping[str, Any]) -> str:
        ...


class GovernancePolicy:
    """Scope lookup against the configured sensitive-operation list.

    Matching is case-insensitive on domain and operation; anything not listed
    is ReadOnly.
    """

    def __init__(self, sensitive_operations: list[SensitiveOperation]) -> None:
        self._operations = {
            (op.domain.lower(), op.operation.lower()): op for op in sensitive_operations
        }

    def operation_scope(self, domain: str, operation: str) -> ScopeClassification:
        match = self._operations.get((domain.lower(), operation.lower()))
        return match.scope if match is not None else ScopeClassification.READ_ONLY

    def approval_prompt(self, domain: str, operation: str, parameters: Mapping[str, Any]) -> str:
        return (
            "GOVERNANCE GATE: Sensitive Operation Requires Approval\n"
            "\n"
            f"Domain: {domain}\n"
            f"Operation: {operation}\n"
            f"Parameters: {format_parameters(parameters)}\n"
            "\n"
            "This operation modifies system state or has high business impact.\n"
            "It requires explicit user approval before execution.\n"
            "\n"
            "To approve, submit a decision for the request id with approved=true.\n"
            "To deny, submit approved=false with a reason."
        )

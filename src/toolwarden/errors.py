"""Exception types for toolwarden.

Every exception carries a stable ``code`` that the execution runner copies into
the structured error envelope.
"""

from __future__ import annotations


class ToolwardenError(Exception):
    """Base exception for all toolwarden errors."""

    code: str = "TOOLWARDEN_ERROR"


class ApprovalRequired(ToolwardenError):
    """Raised when a gated operation is invoked without a usable approval token."""

    code = "APPROVAL_REQUIRED"

    def __init__(self, message: str = "valid approval token is required for this operation") -> None:
        super().__init__(f"{self.code}: {message}")


class InvalidToken(ApprovalRequired):
    """Raised when a presented token is malformed, tampered, expired or consumed."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"approval token rejected ({reason})")


class ApprovalDenied(ToolwardenError):
    """Raised when an approver explicitly rejects a pending request."""

    code = "APPROVAL_DENIED"

    def __init__(self, reason: str | None = None) -> None:
        self.reason = reason
        super().__init__(f"Operation denied by user. Reason: {reason or 'not given'}")


class ApprovalTimeout(ToolwardenError, TimeoutError):
    """Raised when no decision arrives before the approval deadline."""

    code = "APPROVAL_TIMEOUT"


class UnknownApprovalRequest(ToolwardenError, LookupError):
    """Raised when a decision targets a request that is not pending."""

    code = "APPROVAL_REQUEST_NOT_FOUND"


class ExecutionFailed(ToolwardenError):
    """Raised by domain actions that fail after approval succeeded."""

    code = "TOOL_EXECUTION_FAILED"


class StorageError(ToolwardenError):
    """Raised when the storage layer fails."""

    code = "STORAGE_FAILED"


class AuditLogError(ToolwardenError):
    """Raised when an audit record cannot be written."""

    code = "AUDIT_LOG_FAILED"


class PromptError(ToolwardenError):
    """Raised when the operator prompt cannot be emitted."""

    code = "APPROVAL_PROMPT_FAILED"

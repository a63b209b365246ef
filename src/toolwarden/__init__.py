"""toolwarden public API."""

from .approvals import ApprovalGate
from .audit import AuditLogWriter
from .enforcer import PolicyEnforcer
from .errors import (
    ApprovalDenied,
    ApprovalRequired,
    ApprovalTimeout,
    AuditLogError,
    ExecutionFailed,
    InvalidToken,
    PromptError,
    StorageError,
    ToolwardenError,
    UnknownApprovalRequest,
)
from .governance import GovernanceTools
from .host import ToolHost, build_host
from .policies import GovernancePolicy, PolicyRegistry
from .runner import ExecutionRunner
from .settings import GovernanceSettings, SensitiveOperation
from .storage import SchemaMigrator, SQLiteStore
from .tokens import ApprovalTokenService, NoopApprovalTokenService, TokenVerdict
from .types import (
    ApprovalDecision,
    ApprovalLevel,
    ApprovalRequest,
    AuditRecord,
    ExecutionContext,
    ExecutionEnvelope,
    PolicyDescriptor,
    ScopeClassification,
    StructuredError,
)

__all__ = (
    # Host
    "ToolHost",
    "build_host",
    "GovernanceTools",
    # Types
    "ScopeClassification",
    "ApprovalLevel",
    "PolicyDescriptor",
    "ExecutionContext",
    "ExecutionEnvelope",
    "StructuredError",
    "AuditRecord",
    "ApprovalRequest",
    "ApprovalDecision",
    # Governance
    "ApprovalTokenService",
    "NoopApprovalTokenService",
    "TokenVerdict",
    "PolicyEnforcer",
    "PolicyRegistry",
    "GovernancePolicy",
    "ApprovalGate",
    # Execution and audit
    "ExecutionRunner",
    "AuditLogWriter",
    # Storage and config
    "SQLiteStore",
    "SchemaMigrator",
    "GovernanceSettings",
    "SensitiveOperation",
    # Errors
    "ToolwardenError",
    "ApprovalRequired",
    "InvalidToken",
    "ApprovalDenied",
    "ApprovalTimeout",
    "UnknownApprovalRequest",
    "ExecutionFailed",
    "StorageError",
    "AuditLogError",
    "PromptError",
)

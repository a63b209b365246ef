"""Interactive approval gate and its pending-request store."""

from .gate import ApprovalGate
from .pending import PendingApprovals

__all__ = ["ApprovalGate", "PendingApprovals"]

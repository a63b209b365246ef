"""Owned, thread-safe store of pending interactive approval requests.

Each entry pairs the request with the future its waiter is blocked on. The
lock is only held for dictionary mutations, never across an await.
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass

from ..errors import UnknownApprovalRequest
from ..types import ApprovalDecision, ApprovalRequest


@dataclass
class PendingEntry:
    request: ApprovalRequest
    future: "asyncio.Future[ApprovalDecision]"
    claimed: bool = False


class PendingApprovals:
    """Pending requests keyed by request id.

    ``claim`` marks an entry as being decided so that two concurrent
    submissions for the same id cannot both succeed.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, PendingEntry] = {}

    def add(self, request: ApprovalRequest, future: "asyncio.Future[ApprovalDecision]") -> None:
        with self._lock:
            if request.request_id in self._entries:
                raise ValueError(f"duplicate approval request id: {request.request_id}")
            self._entries[request.request_id] = PendingEntry(request=request, future=future)

    def claim(self, request_id: str) -> PendingEntry:
        with self._lock:
            entry = self._entries.get(request_id)
            if entry is None:
                raise UnknownApprovalRequest(f"No pending approval request: {request_id}")
            if entry.claimed:
                raise UnknownApprovalRequest(f"Approval request already decided: {request_id}")
            entry.claimed = True
            return entry

    def release(self, request_id: str) -> None:
        """Undo a claim whose decision could not be completed."""
        with self._lock:
            entry = self._entries.get(request_id)
            if entry is not None:
                entry.claimed = False

    def discard(self, request_id: str) -> ApprovalRequest | None:
        with self._lock:
            entry = self._entries.pop(request_id, None)
        return entry.request if entry is not None else None

    def snapshot(self) -> list[ApprovalRequest]:
        """Unclaimed requests, oldest first."""
        with self._lock:
            requests = [e.request for e in self._entries.values() if not e.claimed]
        return sorted(requests, key=lambda r: r.created_at)

    def __contains__(self, request_id: object) -> bool:
        with self._lock:
            return request_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def deliver(future: "asyncio.Future[ApprovalDecision]", decision: ApprovalDecision) -> bool:
    """Resolve a waiter's future from any thread or loop.

    Returns False when the waiter is already gone (timed out or cancelled).
    Cross-loop deliveries are scheduled and reported as delivered.
    """
    loop = future.get_loop()
    try:
        running = asyncio.get_running_loop()
    except RuntimeError:
        running = None
    if running is loop:
        return _set_result(future, decision)
    try:
        loop.call_soon_threadsafe(_set_result, future, decision)
    except RuntimeError:
        # Waiter's loop is closed.
        return False
    return True


def _set_result(future: "asyncio.Future[ApprovalDecision]", decision: ApprovalDecision) -> bool:
    if future.done():
        return False
    future.set_result(decision)
    return True

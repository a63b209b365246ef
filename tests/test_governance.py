from __future__ import annotations

import asyncio
from datetime import timedelta

from toolwarden.approvals import ApprovalGate
from toolwarden.audit import AuditLogWriter
from toolwarden.clock import parse_timestamp
from toolwarden.governance import GovernanceTools
from toolwarden.policies import GovernancePolicy
from toolwarden.runner import ExecutionRunner
from toolwarden.settings import GovernanceSettings
from toolwarden.storage import SQLiteStore
from toolwarden.tokens import ApprovalTokenService
from toolwarden.types import ScopeClassification


def _tools(store: SQLiteStore, clock, *, with_gate: bool = True):
    tokens = ApprovalTokenService(store, secret=b"gov", clock=clock)
    audit = AuditLogWriter(store, clock=clock)
    gate = None
    if with_gate:
        settings = GovernanceSettings()
        gate = ApprovalGate(tokens, GovernancePolicy(settings.sensitive_operations), timeout_seconds=5)
    return GovernanceTools(tokens, ExecutionRunner(audit), gate), tokens, audit


def test_request_approval_issues_token_through_runner(store: SQLiteStore, clock) -> None:
    tools, tokens, audit = _tools(store, clock)

    async def run():
        envelope = await tools.request_approval("finance", "finance.add_manual_entry", "Write", ttl_minutes=5)
        valid = await tokens.validate(
            envelope.data["approvalToken"], "finance", "finance.add_manual_entry", ScopeClassification.WRITE
        )
        records = await audit.by_correlation_id(envelope.correlation_id)
        return envelope, valid, records

    envelope, valid, records = asyncio.run(run())
    assert envelope.success is True
    assert envelope.data["domain"] == "finance"
    assert envelope.data["toolName"] == "finance.add_manual_entry"
    assert envelope.data["scope"] == "Write"
    assert envelope.data["expiresInMinutes"] == 5
    assert valid is True
    assert len(records) == 1
    assert records[0].domain == "governance"
    assert records[0].tool_name == "governance.request_approval"
    assert records[0].side_effects == "Creates ApprovalRecords."


def test_request_approval_clamps_ttl_to_one_minute(store: SQLiteStore, clock) -> None:
    tools, _, _ = _tools(store, clock)
    envelope = asyncio.run(tools.request_approval("finance", "finance.add_manual_entry", "Write", ttl_minutes=0))
    assert envelope.data["expiresInMinutes"] == 1


def test_request_approval_reports_capped_lifetime(store: SQLiteStore, clock) -> None:
    tools, _, _ = _tools(store, clock)

    async def run():
        envelope = await tools.request_approval("finance", "finance.add_manual_entry", "Write", ttl_minutes=3000)
        rows = await store.query("SELECT ExpiresAtUtc FROM ApprovalRecords")
        return envelope, rows

    envelope, rows = asyncio.run(run())
    lifetime = parse_timestamp(rows[0]["ExpiresAtUtc"]) - clock()
    assert envelope.data["expiresInMinutes"] == 24 * 60
    assert lifetime == timedelta(minutes=envelope.data["expiresInMinutes"])


def test_invalid_scope_becomes_failed_envelope(store: SQLiteStore, clock) -> None:
    tools, _, audit = _tools(store, clock)

    async def run():
        envelope = await tools.request_approval("finance", "finance.add_manual_entry", "admin")
        return envelope, await audit.by_correlation_id(envelope.correlation_id)

    envelope, records = asyncio.run(run())
    assert envelope.success is False
    assert envelope.error.code == "TOOL_EXECUTION_FAILED"
    assert records[0].succeeded is False


def test_list_pending_and_submit_decision(store: SQLiteStore, clock) -> None:
    tools, _, _ = _tools(store, clock)
    gate = tools._gate

    async def run():
        waiter = asyncio.create_task(
            gate.request_approval("finance", "create_invoice", ScopeClassification.WRITE, {"amount": 10})
        )
        for _ in range(500):
            listed = await tools.list_pending()
            if listed.data:
                break
            await asyncio.sleep(0.01)
        request_id = listed.data[0]["requestId"]
        submitted = await tools.submit_decision(request_id, approved=True)
        token = await waiter
        return listed, submitted, token

    listed, submitted, token = asyncio.run(run())
    assert listed.data[0]["toolName"] == "create_invoice"
    assert listed.data[0]["parameters"] == {"amount": 10}
    assert submitted.success is True
    assert submitted.data["approved"] is True
    assert "approvalToken" not in submitted.data
    assert token


def test_submit_decision_for_unknown_request_fails_closed(store: SQLiteStore, clock) -> None:
    tools, _, _ = _tools(store, clock)
    envelope = asyncio.run(tools.submit_decision("missing", approved=True))
    assert envelope.success is False
    assert envelope.error.code == "APPROVAL_REQUEST_NOT_FOUND"


def test_tools_without_gate_only_expose_request_approval(store: SQLiteStore, clock) -> None:
    tools, _, _ = _tools(store, clock, with_gate=False)
    assert [name for name, _, _ in tools.tools()] == ["governance.request_approval"]

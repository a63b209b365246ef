from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any

import pytest

from toolwarden.audit import AuditLogWriter
from toolwarden.errors import ApprovalDenied, ApprovalRequired, AuditLogError
from toolwarden.runner import ExecutionRunner
from toolwarden.storage import SQLiteStore
from toolwarden.types import ApprovalLevel, ExecutionContext, PolicyDescriptor, ScopeClassification

READ = PolicyDescriptor(scope=ScopeClassification.READ_ONLY, side_effects="No side effects.", idempotent=True)
GATED = PolicyDescriptor(
    scope=ScopeClassification.WRITE,
    required_approval=ApprovalLevel.EXPLICIT_TOKEN,
    side_effects="Writes a finance ledger entry.",
)


class MemoryAudit:
    def __init__(self, fail: bool = False) -> None:
        self.records: list[dict[str, Any]] = []
        self.fail = fail

    async def write(self, **fields: Any) -> str:
        if self.fail:
            raise AuditLogError("Failed to write audit log: disk full")
        self.records.append(fields)
        return f"a{len(self.records)}"


def test_success_envelope_and_single_audit() -> None:
    audit = MemoryAudit()
    runner = ExecutionRunner(audit)
    context = ExecutionContext.create(actor="alice")

    async def action():
        return {"cashPosition": 100, "currency": "USD"}

    envelope = asyncio.run(runner.run("finance", "finance.cash_position", READ, context, action))
    assert envelope.success is True
    assert envelope.data == {"cashPosition": 100, "currency": "USD"}
    assert envelope.correlation_id == context.correlation_id
    assert len(audit.records) == 1
    record = audit.records[0]
    assert record["succeeded"] is True
    assert record["failure_reason"] is None
    assert record["correlation_id"] == context.correlation_id
    assert record["metadata"]["actor"] == "alice"
    assert record["metadata"]["scope"] == "ReadOnly"


def test_sync_action_is_supported() -> None:
    audit = MemoryAudit()
    envelope = asyncio.run(
        ExecutionRunner(audit).run("finance", "finance.net_worth", READ, ExecutionContext.create(), lambda: 42)
    )
    assert envelope.data == 42


def test_policy_failure_becomes_structured_error() -> None:
    audit = MemoryAudit()
    context = ExecutionContext.create()

    async def action():
        raise ApprovalRequired()

    envelope = asyncio.run(ExecutionRunner(audit).run("finance", "finance.add_manual_entry", GATED, context, action))
    assert envelope.success is False
    assert envelope.data is None
    assert envelope.error is not None
    assert envelope.error.code == "APPROVAL_REQUIRED"
    assert envelope.error.failure_reason == "ApprovalRequired"
    assert envelope.error.correlation_id == context.correlation_id
    assert len(audit.records) == 1
    assert audit.records[0]["succeeded"] is False
    assert audit.records[0]["failure_reason"].startswith("APPROVAL_REQUIRED")


def test_unexpected_error_maps_to_execution_failed_without_paths() -> None:
    audit = MemoryAudit()

    def action():
        raise OSError("cannot open /home/alice/.secrets/ledger.db")

    envelope = asyncio.run(
        ExecutionRunner(audit).run("finance", "finance.cash_position", READ, ExecutionContext.create(), action)
    )
    assert envelope.error.code == "TOOL_EXECUTION_FAILED"
    assert envelope.error.message == "cannot open <path>"
    assert "/home" not in envelope.to_json()


def test_messages_without_paths_keep_their_slashes() -> None:
    audit = MemoryAudit()

    def action():
        raise ApprovalDenied("blocked by reviewer, see PR 12/3")

    envelope = asyncio.run(
        ExecutionRunner(audit).run("git", "git.force_push", GATED, ExecutionContext.create(), action)
    )
    assert "blocked by reviewer, see PR 12/3" in envelope.error.message
    assert "PR 12/3" in audit.records[0]["failure_reason"]


def test_unserializable_result_becomes_failed_envelope() -> None:
    audit = MemoryAudit()

    class Opaque:
        pass

    envelope = asyncio.run(
        ExecutionRunner(audit).run("finance", "finance.cash_position", READ, ExecutionContext.create(), Opaque)
    )
    assert envelope.success is False
    assert envelope.error.code == "TOOL_EXECUTION_FAILED"
    assert json.loads(envelope.to_json())["success"] is False
    assert len(audit.records) == 1
    assert audit.records[0]["succeeded"] is False


def test_results_are_rendered_as_json_data() -> None:
    audit = MemoryAudit()
    issued = datetime(2026, 1, 25, 12, 0, tzinfo=timezone.utc)

    envelope = asyncio.run(
        ExecutionRunner(audit).run(
            "finance", "finance.cash_position", READ, ExecutionContext.create(),
            lambda: {"asOf": issued, "accounts": ("checking", "savings")},
        )
    )
    assert envelope.success is True
    assert envelope.data == {"asOf": "2026-01-25T12:00:00Z", "accounts": ["checking", "savings"]}


def test_error_timestamp_uses_injected_clock(clock) -> None:
    audit = MemoryAudit()

    def action():
        raise RuntimeError("ledger offline")

    envelope = asyncio.run(
        ExecutionRunner(audit, clock=clock).run(
            "finance", "finance.cash_position", READ, ExecutionContext.create(), action
        )
    )
    assert envelope.error.timestamp_utc == clock()


def test_long_error_messages_are_truncated() -> None:
    audit = MemoryAudit()

    def action():
        raise RuntimeError("x" * 500)

    envelope = asyncio.run(
        ExecutionRunner(audit, max_error_length=50).run(
            "finance", "finance.cash_position", READ, ExecutionContext.create(), action
        )
    )
    assert len(envelope.error.message) == 50
    assert envelope.error.message.endswith("...")


def test_audit_failure_is_best_effort() -> None:
    audit = MemoryAudit(fail=True)
    seen: list[str] = []
    runner = ExecutionRunner(audit, on_error=lambda kind, exc: seen.append(kind))

    envelope = asyncio.run(runner.run("finance", "finance.cash_position", READ, ExecutionContext.create(), lambda: 1))
    assert envelope.success is True
    assert runner.error_count == 1
    assert seen == ["audit_write"]


def test_cancellation_is_audited_and_propagates() -> None:
    audit = MemoryAudit()
    runner = ExecutionRunner(audit)

    async def run():
        started = asyncio.Event()

        async def action():
            started.set()
            await asyncio.sleep(60)

        task = asyncio.create_task(runner.run("git", "git.git_merge", GATED, ExecutionContext.create(), action))
        await started.wait()
        task.cancel()
        await task

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(run())
    assert len(audit.records) == 1
    assert audit.records[0]["succeeded"] is False
    assert audit.records[0]["failure_reason"] == "cancelled"


def test_runner_writes_to_sqlite_audit_log(store: SQLiteStore, clock) -> None:
    audit = AuditLogWriter(store, clock=clock)
    context = ExecutionContext.create()

    async def run():
        await ExecutionRunner(audit).run("finance", "finance.cash_position", READ, context, lambda: 1)
        return await audit.by_correlation_id(context.correlation_id)

    records = asyncio.run(run())
    assert len(records) == 1
    assert records[0].succeeded is True
    assert records[0].tool_name == "finance.cash_position"

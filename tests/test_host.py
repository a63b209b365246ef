"""End-to-end tests through the tool host."""

from __future__ import annotations

import asyncio
from io import StringIO
from pathlib import Path

import pytest
from rich.console import Console

from toolwarden.errors import ApprovalDenied, ApprovalTimeout
from toolwarden.host import ToolHost, build_host
from toolwarden.settings import GovernanceSettings, SensitiveOperation
from toolwarden.types import ApprovalLevel, ScopeClassification


def _host(db_path: Path, **overrides) -> ToolHost:
    settings = GovernanceSettings(database_path=db_path, signing_secret="host-secret", **overrides)
    console = Console(file=StringIO(), force_terminal=False, color_system=None)
    return build_host(settings, console=console)


def _register_finance(host: ToolHost) -> list[dict]:
    ledger: list[dict] = []

    @host.tool(
        "finance.add_manual_entry",
        domain="finance",
        scope=ScopeClassification.WRITE,
        approval=ApprovalLevel.EXPLICIT_TOKEN,
        side_effects="Writes a finance ledger entry.",
    )
    async def add_manual_entry(amount: float, memo: str) -> dict:
        ledger.append({"amount": amount, "memo": memo})
        return {"entries": len(ledger)}

    @host.tool("finance.cash_position", domain="finance", scope="ReadOnly", side_effects="No side effects.",
               idempotent=True)
    def cash_position() -> dict:
        return {"cashPosition": 1250.0, "currency": "USD"}

    return ledger


def test_start_applies_migrations_once(db_path: Path) -> None:
    host = _host(db_path)

    async def run():
        return await host.start(), await host.start()

    assert asyncio.run(run()) == ([1, 2], [])


def test_governance_tools_are_registered(db_path: Path) -> None:
    host = _host(db_path)
    assert {"governance.request_approval", "governance.submit_decision", "governance.list_pending"} <= set(
        host.registry
    )


def test_read_only_tool_runs_without_token(db_path: Path) -> None:
    host = _host(db_path)
    _register_finance(host)

    async def run():
        await host.start()
        return await host.invoke("finance.cash_position")

    envelope = asyncio.run(run())
    assert envelope.success is True
    assert envelope.data == {"cashPosition": 1250.0, "currency": "USD"}


def test_manual_entry_token_is_single_use(db_path: Path) -> None:
    host = _host(db_path)
    ledger = _register_finance(host)

    async def run():
        await host.start()
        issued = await host.invoke(
            "governance.request_approval",
            domain="finance",
            tool_name="finance.add_manual_entry",
            scope="Write",
        )
        token = issued.data["approvalToken"]
        first = await host.invoke("finance.add_manual_entry", amount=42.0, memo="lunch", approval_token=token)
        second = await host.invoke("finance.add_manual_entry", amount=42.0, memo="lunch", approval_token=token)
        first_audit = await host.audit.by_correlation_id(first.correlation_id)
        second_audit = await host.audit.by_correlation_id(second.correlation_id)
        return first, second, first_audit, second_audit

    first, second, first_audit, second_audit = asyncio.run(run())
    assert first.success is True
    assert first.data == {"entries": 1}
    assert second.success is False
    assert second.error.code == "APPROVAL_REQUIRED"
    assert len(ledger) == 1
    assert [r.succeeded for r in first_audit] == [True]
    assert [r.succeeded for r in second_audit] == [False]


@pytest.mark.parametrize("token", [None, "", "bm90LWEtdG9rZW4=", "garbage!"])
def test_gated_action_never_runs_without_valid_token(db_path: Path, token) -> None:
    host = _host(db_path)
    ledger = _register_finance(host)

    async def run():
        await host.start()
        return await host.invoke("finance.add_manual_entry", amount=1.0, memo="x", approval_token=token)

    envelope = asyncio.run(run())
    assert envelope.success is False
    assert envelope.error.code == "APPROVAL_REQUIRED"
    assert ledger == []


def test_token_for_other_tool_does_not_unlock(db_path: Path) -> None:
    host = _host(db_path)
    ledger = _register_finance(host)

    async def run():
        await host.start()
        issued = await host.governance.request_approval("finance", "finance.cash_position", "Write")
        return await host.invoke(
            "finance.add_manual_entry", amount=1.0, memo="x", approval_token=issued.data["approvalToken"]
        )

    envelope = asyncio.run(run())
    assert envelope.success is False
    assert ledger == []


def test_decorated_function_can_be_called_directly(db_path: Path) -> None:
    host = _host(db_path)

    @host.tool("projects.list", domain="projects", scope="ReadOnly", side_effects="No side effects.")
    async def list_projects(prefix: str = "") -> list[str]:
        return [p for p in ("alpha", "beta") if p.startswith(prefix)]

    async def run():
        await host.start()
        return await list_projects(prefix="a")

    envelope = asyncio.run(run())
    assert envelope.data == ["alpha"]
    assert list_projects.__name__ == "list_projects"


def test_unknown_tool_raises(db_path: Path) -> None:
    host = _host(db_path)
    with pytest.raises(KeyError):
        asyncio.run(host.invoke("finance.unknown"))


def test_duplicate_tool_registration_fails(db_path: Path) -> None:
    host = _host(db_path)
    _register_finance(host)
    with pytest.raises(ValueError):
        _register_finance(host)


def test_gates_disabled_runs_gated_tool_without_token(db_path: Path) -> None:
    host = _host(db_path, enable_approval_gates=False)
    ledger = _register_finance(host)

    async def run():
        await host.start()
        return await host.invoke("finance.add_manual_entry", amount=3.0, memo="x")

    envelope = asyncio.run(run())
    assert envelope.success is True
    assert len(ledger) == 1
    assert host.gate.requires_approval("finance", "create_invoice") is False


def test_interactive_git_merge_times_out(db_path: Path) -> None:
    host = _host(
        db_path,
        approval_timeout_seconds=1,
        sensitive_operations=[SensitiveOperation(domain="git", operation="git_merge", scope="Sensitive")],
    )

    async def run():
        await host.start()
        assert host.gate.requires_approval("git", "git_merge")
        await host.gate.request_approval("git", "git_merge", ScopeClassification.SENSITIVE, {"branch": "main"})

    with pytest.raises(ApprovalTimeout):
        asyncio.run(run())
    assert host.gate.pending() == []


def test_interactive_denial_blocks_operation(db_path: Path) -> None:
    host = _host(db_path)
    pushes: list[str] = []

    @host.tool("git.force_push", domain="git", scope="Sensitive", approval="explicit_token",
               side_effects="Rewrites remote history.")
    async def force_push(branch: str) -> dict:
        pushes.append(branch)
        return {"pushed": branch}

    async def run():
        await host.start()
        waiter = asyncio.create_task(
            host.gate.request_approval("git", "force_push", ScopeClassification.SENSITIVE, {"branch": "main"})
        )
        for _ in range(500):
            pending = host.gate.pending()
            if pending:
                break
            await asyncio.sleep(0.01)
        await host.invoke("governance.submit_decision", request_id=pending[0].request_id, approved=False,
                          reason="blocked by reviewer")
        await waiter

    with pytest.raises(ApprovalDenied, match="blocked by reviewer"):
        asyncio.run(run())
    assert pushes == []


def test_interactive_approval_unlocks_gated_tool(db_path: Path) -> None:
    host = _host(db_path)
    pushes: list[str] = []

    @host.tool("force_push", domain="git", scope="Sensitive", approval="explicit_token",
               side_effects="Rewrites remote history.")
    async def force_push(branch: str) -> dict:
        pushes.append(branch)
        return {"pushed": branch}

    async def run():
        await host.start()
        waiter = asyncio.create_task(
            host.gate.request_approval("git", "force_push", ScopeClassification.SENSITIVE, {"branch": "dev"})
        )
        for _ in range(500):
            pending = host.gate.pending()
            if pending:
                break
            await asyncio.sleep(0.01)
        await host.gate.submit_decision(pending[0].request_id, approved=True)
        token = await waiter
        return await host.invoke("force_push", branch="dev", approval_token=token)

    envelope = asyncio.run(run())
    assert envelope.success is True
    assert pushes == ["dev"]

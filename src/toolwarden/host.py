"""Tool host: registers tools with their policy and routes calls through the runner."""

from __future__ import annotations

import inspect
import logging
from functools import wraps
from typing import Any, Awaitable, Callable

from rich.console import Console

from .approvals.gate import ApprovalGate
from .audit import AuditLogWriter
from .clock import Clock
from .enforcer import PolicyEnforcer
from .governance import GovernanceTools
from .policies import PolicyRegistry
from .protocols import ApprovalTokens
from .runner import ExecutionRunner
from .settings import GovernanceSettings
from .storage import SchemaMigrator, SQLiteStore
from .tokens import ApprovalTokenService, NoopApprovalTokenService, derive_secret
from .types import ApprovalLevel, ExecutionContext, ExecutionEnvelope, PolicyDescriptor

_logger = logging.getLogger(__name__)

Handler = Callable[..., Awaitable[ExecutionEnvelope]]


class ToolHost:
    """Registry of callable tools, each wrapped by enforcement and audit.

    Usage:
        host = build_host(GovernanceSettings.from_env())

        @host.tool("finance.add_manual_entry", domain="finance", scope="Write",
                   approval=ApprovalLevel.EXPLICIT_TOKEN,
                   side_effects="Writes a finance ledger entry.")
        async def add_manual_entry(amount: float, memo: str) -> dict:
            ...

        await host.start()
        envelope = await host.invoke("finance.add_manual_entry", amount=12.5,
                                     memo="coffee", approval_token=token)
    """

    def __init__(
        self,
        runner: ExecutionRunner,
        enforcer: PolicyEnforcer,
        *,
        registry: PolicyRegistry | None = None,
        settings: GovernanceSettings | None = None,
        migrator: SchemaMigrator | None = None,
        tokens: ApprovalTokens | None = None,
        audit: AuditLogWriter | None = None,
        gate: ApprovalGate | None = None,
        governance: GovernanceTools | None = None,
    ) -> None:
        self.runner = runner
        self.enforcer = enforcer
        self.registry = registry or PolicyRegistry()
        self.settings = settings or GovernanceSettings()
        self.migrator = migrator
        self.tokens = tokens
        self.audit = audit
        self.gate = gate
        self.governance = governance
        self._handlers: dict[str, Handler] = {}

    def tool(
        self,
        name: str,
        *,
        domain: str,
        scope: Any,
        side_effects: str,
        approval: ApprovalLevel | str = ApprovalLevel.NONE,
        idempotent: bool = False,
    ) -> Callable[[Callable[..., Any]], Handler]:
        """Decorator registering ``func`` as tool ``name``.

        The returned wrapper accepts an extra ``approval_token`` keyword and
        always returns an ExecutionEnvelope.
        """
        descriptor = PolicyDescriptor(
            scope=scope,
            required_approval=ApprovalLevel(approval),
            side_effects=side_effects,
            idempotent=idempotent,
        )

        def decorator(func: Callable[..., Any]) -> Handler:
            @wraps(func)
            async def wrapper(*args: Any, approval_token: str | None = None, **kwargs: Any) -> ExecutionEnvelope:
                return await self._execute(
                    name, domain, descriptor, func, args, kwargs, approval_token
                )

            self.mount(name, domain, descriptor, wrapper)
            return wrapper

        return decorator

    def mount(self, name: str, domain: str, descriptor: PolicyDescriptor, handler: Handler) -> None:
        """Register a handler that already runs through the runner."""
        self.registry.register(domain, name, descriptor)
        self._handlers[name] = handler

    async def invoke(self, name: str, /, **kwargs: Any) -> ExecutionEnvelope:
        """Call a registered tool by name."""
        handler = self._handlers.get(name)
        if handler is None:
            raise KeyError(f"unknown tool: {name}")
        return await handler(**kwargs)

    async def start(self) -> list[int]:
        """Apply pending schema migrations. Returns applied versions."""
        if self.migrator is None:
            return []
        applied = await self.migrator.migrate()
        _logger.info(
            "tool host started tools=%s gated=%s approval_gates=%s",
            len(self.registry),
            len(self.registry.gated()),
            self.settings.enable_approval_gates,
        )
        return applied

    def describe(self) -> list[dict[str, Any]]:
        return self.registry.describe()

    async def _execute(
        self,
        name: str,
        domain: str,
        descriptor: PolicyDescriptor,
        func: Callable[..., Any],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
        approval_token: str | None,
    ) -> ExecutionEnvelope:
        context = ExecutionContext.create(self.settings.active_tenant, self.settings.active_project)

        async def action() -> Any:
            # Enforcement runs before the side effect so rejections are audited.
            await self.enforcer.enforce(domain, name, descriptor, approval_token)
            result = func(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
            return result

        return await self.runner.run(domain, name, descriptor, context, action)


def build_host(
    settings: GovernanceSettings | None = None,
    *,
    console: Console | None = None,
    clock: Clock | None = None,
) -> ToolHost:
    """Wire storage, tokens, audit, runner, gate and governance tools."""
    settings = settings or GovernanceSettings.from_env()
    store = SQLiteStore(settings.database_path)

    tokens: ApprovalTokens
    if settings.enable_approval_gates:
        tokens = ApprovalTokenService(store, secret=derive_secret(settings.signing_secret), clock=clock)
    else:
        _logger.warning("approval gates are disabled; gated tools will run without tokens")
        tokens = NoopApprovalTokenService()

    audit = AuditLogWriter(store, clock=clock)
    runner = ExecutionRunner(audit, clock=clock)
    gate = ApprovalGate.from_settings(tokens, settings, console=console, clock=clock)
    governance = GovernanceTools(tokens, runner, gate, settings)
    host = ToolHost(
        runner,
        PolicyEnforcer(tokens),
        settings=settings,
        migrator=SchemaMigrator(store, clock=clock),
        tokens=tokens,
        audit=audit,
        gate=gate,
        governance=governance,
    )
    governance.mount(host)
    return host

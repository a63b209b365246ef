"""Execution runner: the universal call boundary for tools.

Design notes:
- Exactly one audit write per invocation, after the outcome is known
- Failures raised by the action (policy enforcement included) never escape;
  they become a StructuredError envelope
- Audit write failures are best-effort: logged, counted and reported through
  ``on_error``, never turned into a second audit write
- Cancellation is audited and then re-raised
- Results are converted to JSON-compatible data; a result that cannot be
  converted is a failure
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
import time
from typing import Any, Awaitable, Callable, TypeVar, Union

from pydantic import TypeAdapter

from .clock import Clock, utc_now
from .errors import ExecutionFailed, ToolwardenError
from .protocols import AuditWriter
from .types import ExecutionContext, ExecutionEnvelope, PolicyDescriptor, StructuredError

DEFAULT_MAX_ERROR_LENGTH: int = 200
CANCELLED_REASON = "cancelled"

_logger = logging.getLogger(__name__)

# Absolute or multi-segment paths: /path/to/file.py, C:\path\to\file.py, pkg/mod/x.py
_PATH_PATTERN = re.compile(r"(?:[A-Za-z]:)?[\w.\-~]*(?:[\\/][\w.\-]+){2,}")
_RESULT_ADAPTER: TypeAdapter[Any] = TypeAdapter(Any)

T = TypeVar("T")
Action = Callable[[], Union[T, Awaitable[T]]]


def _safe_error_message(exc: BaseException, *, max_length: int) -> str:
    """Error message safe for envelopes and audit rows. No paths or stacktraces."""
    error_type = type(exc).__name__
    raw_msg = str(exc) or error_type

    raw_msg = _PATH_PATTERN.sub("<path>", raw_msg)

    if len(raw_msg) > max_length:
        raw_msg = raw_msg[:max_length - 3] + "..."
    return raw_msg


def _error_code(exc: BaseException) -> str:
    if isinstance(exc, ToolwardenError):
        return exc.code
    return ExecutionFailed.code


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class ExecutionRunner:
    """Wraps every tool invocation with timing, correlation and audit.

    Example:
        runner = ExecutionRunner(AuditLogWriter(store))
        envelope = await runner.run(
            "finance", "finance.cash_position", descriptor,
            ExecutionContext.create(), lambda: service.cash_position(),
        )
        print(envelope.to_json())
    """

    __slots__ = ("_audit", "_on_error", "_error_count", "_max_error_length", "_clock")

    def __init__(
        self,
        audit: AuditWriter,
        *,
        on_error: Callable[[str, Exception], None] | None = None,
        max_error_length: int = DEFAULT_MAX_ERROR_LENGTH,
        clock: Clock | None = None,
    ) -> None:
        self._audit = audit
        self._on_error = on_error
        self._error_count: int = 0
        self._max_error_length = max_error_length
        self._clock = clock or utc_now

    @property
    def error_count(self) -> int:
        """Number of audit write failures since runner creation."""
        return self._error_count

    async def run(
        self,
        domain: str,
        tool_name: str,
        descriptor: PolicyDescriptor,
        context: ExecutionContext,
        action: Action[Any],
    ) -> ExecutionEnvelope:
        """Invoke ``action`` and return a uniform envelope. Never raises for action failures."""
        metadata: dict[str, Any] = {
            "domain": domain,
            "toolName": tool_name,
            "scope": descriptor.scope.label,
            "requiredApproval": descriptor.required_approval.value,
            "idempotent": descriptor.idempotent,
            "activeTenant": context.active_tenant,
            "activeProject": context.active_project,
            "actor": context.actor,
        }
        _logger.info(
            "tool execution start domain=%s tool=%s correlation_id=%s scope=%s",
            domain,
            tool_name,
            context.correlation_id,
            descriptor.scope.label,
        )
        started = time.perf_counter()

        try:
            data = action()
            if inspect.isawaitable(data):
                data = await data
            # Results must be JSON-renderable.
            data = _RESULT_ADAPTER.dump_python(data, mode="json")
        except asyncio.CancelledError:
            duration_ms = _elapsed_ms(started)
            _logger.warning(
                "tool execution cancelled domain=%s tool=%s correlation_id=%s duration_ms=%s",
                domain,
                tool_name,
                context.correlation_id,
                duration_ms,
            )
            await self._write_audit(
                domain, tool_name, descriptor, context, metadata,
                succeeded=False, failure_reason=CANCELLED_REASON, duration_ms=duration_ms,
            )
            raise
        except Exception as exc:
            duration_ms = _elapsed_ms(started)
            _logger.error(
                "tool execution failed domain=%s tool=%s correlation_id=%s duration_ms=%s",
                domain,
                tool_name,
                context.correlation_id,
                duration_ms,
                exc_info=exc,
            )
            message = _safe_error_message(exc, max_length=self._max_error_length)
            await self._write_audit(
                domain, tool_name, descriptor, context, metadata,
                succeeded=False, failure_reason=message, duration_ms=duration_ms,
            )
            return ExecutionEnvelope(
                success=False,
                correlation_id=context.correlation_id,
                duration_ms=duration_ms,
                error=StructuredError(
                    code=_error_code(exc),
                    message=message,
                    failure_reason=type(exc).__name__,
                    correlation_id=context.correlation_id,
                    timestamp_utc=self._clock(),
                    metadata=metadata,
                ),
            )

        duration_ms = _elapsed_ms(started)
        await self._write_audit(
            domain, tool_name, descriptor, context, metadata,
            succeeded=True, failure_reason=None, duration_ms=duration_ms,
        )
        _logger.info(
            "tool execution succeeded domain=%s tool=%s correlation_id=%s duration_ms=%s",
            domain,
            tool_name,
            context.correlation_id,
            duration_ms,
        )
        return ExecutionEnvelope(
            success=True,
            correlation_id=context.correlation_id,
            duration_ms=duration_ms,
            data=data,
        )

    async def _write_audit(
        self,
        domain: str,
        tool_name: str,
        descriptor: PolicyDescriptor,
        context: ExecutionContext,
        metadata: dict[str, Any],
        *,
        succeeded: bool,
        failure_reason: str | None,
        duration_ms: int,
    ) -> None:
        """Single audit write. Best-effort with logging hook."""
        try:
            await self._audit.write(
                correlation_id=context.correlation_id,
                domain=domain,
                tool_name=tool_name,
                scope=descriptor.scope,
                side_effects=descriptor.side_effects,
                succeeded=succeeded,
                failure_reason=failure_reason,
                duration_ms=duration_ms,
                metadata=metadata,
            )
        except Exception as exc:
            self._error_count += 1
            _logger.warning(
                "Failed to write audit record correlation_id=%s: %s", context.correlation_id, exc
            )
            if self._on_error is not None:
                try:
                    self._on_error("audit_write", exc)
                except Exception:
                    pass  # Hook failure shouldn't cascade

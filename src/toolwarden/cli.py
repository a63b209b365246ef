"""Command-line interface for toolwarden."""

from __future__ import annotations

import argparse
import asyncio
import csv
import json
import sys
from datetime import timedelta
from pathlib import Path
from typing import Any, Iterable

from .audit import AuditLogWriter
from .errors import ToolwardenError
from .settings import GovernanceSettings
from .storage import SchemaMigrator, SQLiteStore
from .tokens import ApprovalTokenService, derive_secret
from .types import AuditRecord, ScopeClassification

CSV_FIELDS = (
    "occurred_at",
    "id",
    "correlation_id",
    "domain",
    "tool_name",
    "scope",
    "succeeded",
    "failure_reason",
    "duration_ms",
    "side_effects",
)


def _stringify(value: object) -> str:
    if value is None:
        return ""
    return str(value)


def _entry(record: AuditRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "correlation_id": record.correlation_id,
        "domain": record.domain,
        "tool_name": record.tool_name,
        "scope": record.scope.label,
        "side_effects": record.side_effects,
        "succeeded": record.succeeded,
        "failure_reason": record.failure_reason,
        "duration_ms": record.duration_ms,
        "metadata": record.metadata,
        "occurred_at": record.occurred_at,
    }


def _flatten_entry(entry: dict[str, Any]) -> dict[str, str]:
    return {field: _stringify(entry.get(field)) for field in CSV_FIELDS}


def _write_entries(
    entries: Iterable[dict[str, Any]],
    output_format: str,
    output_path: Path | None,
) -> int:
    output = sys.stdout
    close_output = False
    if output_path is not None:
        output = output_path.open("w", encoding="utf-8", newline="")
        close_output = True
    try:
        if output_format == "json":
            output.write("[")
            first = True
            for entry in entries:
                if not first:
                    output.write(",")
                first = False
                output.write(json.dumps(entry, ensure_ascii=False))
            output.write("]\n")
        elif output_format == "ndjson":
            for entry in entries:
                output.write(json.dumps(entry, ensure_ascii=False, separators=(",", ":")) + "\n")
        elif output_format == "csv":
            writer = csv.DictWriter(
                output,
                fieldnames=CSV_FIELDS,
                extrasaction="ignore",
                lineterminator="\n",
            )
            writer.writeheader()
            for entry in entries:
                writer.writerow(_flatten_entry(entry))
        else:
            raise ValueError(f"unknown format: {output_format}")
    finally:
        if close_output:
            output.close()
    return 0


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="toolwarden", add_help=True)
    parser.add_argument("--database", type=Path, help="SQLite database path (overrides TOOLWARDEN_DATABASE_PATH)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("migrate", help="Apply pending schema migrations")

    issue_parser = subparsers.add_parser("issue-token", help="Issue a single-use approval token")
    issue_parser.add_argument("--domain", required=True, help="Domain name, e.g. finance")
    issue_parser.add_argument("--tool", required=True, help="Tool name, e.g. finance.add_manual_entry")
    issue_parser.add_argument("--scope", required=True, help="ReadOnly, Write or Sensitive")
    issue_parser.add_argument("--ttl-minutes", dest="ttl_minutes", type=int, help="Token lifetime in minutes")

    audit_parser = subparsers.add_parser("audit", help="Export audit records")
    audit_parser.add_argument("--correlation-id", dest="correlation_id", help="Filter by correlation id")
    audit_parser.add_argument("--domain", help="Filter by domain")
    audit_parser.add_argument("--tool", help="Filter by tool name")
    outcome = audit_parser.add_mutually_exclusive_group()
    outcome.add_argument("--succeeded", dest="succeeded", action="store_true", default=None)
    outcome.add_argument("--failed", dest="succeeded", action="store_false", default=None)
    audit_parser.add_argument("--limit", type=int, default=100, help="Maximum records to export")
    audit_parser.add_argument(
        "--format",
        choices=("json", "ndjson", "csv"),
        default="ndjson",
        help="Output format",
    )
    audit_parser.add_argument("--output", type=Path, help="Output file path")

    return parser.parse_args(argv)


def _load_settings(database: Path | None) -> GovernanceSettings:
    if database is None:
        return GovernanceSettings.from_env()
    return GovernanceSettings.from_env(database_path=database)


def _cmd_migrate(settings: GovernanceSettings) -> int:
    store = SQLiteStore(settings.database_path)
    try:
        applied = asyncio.run(SchemaMigrator(store).migrate())
    except ToolwardenError as exc:
        print(f"migrate failed: {exc}", file=sys.stderr)
        return 1
    if applied:
        print(f"applied migrations: {', '.join(str(v) for v in applied)}")
    else:
        print("schema up to date")
    return 0


def _cmd_issue_token(
    settings: GovernanceSettings,
    *,
    domain: str,
    tool_name: str,
    scope: str,
    ttl_minutes: int | None,
) -> int:
    if not settings.enable_approval_gates:
        print("approval gates are disabled; no token is needed", file=sys.stderr)
        return 1
    try:
        parsed_scope = ScopeClassification.parse(scope)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    minutes = max(1, ttl_minutes if ttl_minutes is not None else settings.default_token_ttl_minutes)

    async def _issue() -> str:
        store = SQLiteStore(settings.database_path)
        await SchemaMigrator(store).migrate()
        tokens = ApprovalTokenService(store, secret=derive_secret(settings.signing_secret))
        return await tokens.issue(domain, tool_name, parsed_scope, timedelta(minutes=minutes))

    try:
        token = asyncio.run(_issue())
    except (ToolwardenError, ValueError) as exc:
        print(f"issue-token failed: {exc}", file=sys.stderr)
        return 1
    print(token)
    return 0


def _cmd_audit(
    settings: GovernanceSettings,
    *,
    correlation_id: str | None,
    domain: str | None,
    tool_name: str | None,
    succeeded: bool | None,
    limit: int,
    output_format: str,
    output_path: Path | None,
) -> int:
    if not settings.database_path.exists():
        print("database file not found", file=sys.stderr)
        return 1

    async def _load() -> list[AuditRecord]:
        audit = AuditLogWriter(SQLiteStore(settings.database_path))
        if correlation_id is not None:
            records = await audit.by_correlation_id(correlation_id)
            return [
                r
                for r in records
                if (domain is None or r.domain == domain)
                and (tool_name is None or r.tool_name == tool_name)
                and (succeeded is None or r.succeeded == succeeded)
            ][:limit]
        return await audit.recent(
            limit=limit, domain=domain, tool_name=tool_name, succeeded=succeeded
        )

    try:
        records = asyncio.run(_load())
    except (ToolwardenError, ValueError) as exc:
        print(f"audit failed: {exc}", file=sys.stderr)
        return 1
    try:
        return _write_entries((_entry(r) for r in records), output_format, output_path)
    except OSError as exc:
        print(f"audit failed: {exc}", file=sys.stderr)
        return 1


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    try:
        settings = _load_settings(args.database)
    except ValueError as exc:
        print(f"invalid configuration: {exc}", file=sys.stderr)
        return 2
    if args.command == "migrate":
        return _cmd_migrate(settings)
    if args.command == "issue-token":
        return _cmd_issue_token(
            settings,
            domain=args.domain,
            tool_name=args.tool,
            scope=args.scope,
            ttl_minutes=args.ttl_minutes,
        )
    if args.command == "audit":
        return _cmd_audit(
            settings,
            correlation_id=args.correlation_id,
            domain=args.domain,
            tool_name=args.tool,
            succeeded=args.succeeded,
            limit=args.limit,
            output_format=args.format,
            output_path=args.output,
        )
    print("unknown command", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())

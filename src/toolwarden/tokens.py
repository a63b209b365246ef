"""Signed, time-boxed, single-use approval tokens.

Design notes:
- The signed bundle is only a tamper-evident carrier; the ApprovalRecords row
  is the source of truth for one-time use
- Consumption is one conditional UPDATE scoped to the token id, so two
  concurrent validations of the same token cannot both succeed
- Every rejection is reported as a verdict; nothing here raises on bad input
- NoopApprovalTokenService is the explicit "gates disabled" mode
"""

from __future__ import annotations

import base64
import hashlib
import logging
import socket
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac

from .approvals.common import (
    BINDING_SEPARATOR,
    MAX_TOKEN_TTL_SECONDS,
    capped_expiry,
    validate_binding_part,
)
from .clock import Clock, format_timestamp, parse_timestamp, utc_now
from .protocols import Storage
from .types import ScopeClassification

_logger = logging.getLogger(__name__)

SECRET_CONTEXT = "::toolwarden::approval"
_SEGMENT_COUNT = 6
_SIGNATURE_HEX_LENGTH = 64
_HEX_DIGITS = frozenset("0123456789abcdef")

REASON_OK = "consumed"
REASON_MALFORMED = "malformed"
REASON_SIGNATURE = "signature mismatch"
REASON_BINDING = "binding mismatch"
REASON_EXPIRED = "expired"
REASON_UNKNOWN = "unknown token"
REASON_CONSUMED = "already consumed"


def derive_secret(seed: str | None = None) -> bytes:
    """Derive the HMAC key from an explicit seed or from the host name."""
    material = seed if seed is not None else socket.gethostname() + SECRET_CONTEXT
    return hashlib.sha256(material.encode("utf-8")).digest()


@dataclass(frozen=True, slots=True)
class TokenVerdict:
    """Outcome of a validation attempt. ``reason`` never contains key material."""

    valid: bool
    reason: str
    token_id: str | None = None


@dataclass(frozen=True, slots=True)
class _Claims:
    token_id: str
    domain: str
    tool_name: str
    scope: int
    expires_at: datetime
    payload: str
    signature: str


class ApprovalTokenService:
    """Issues signed tokens and consumes them exactly once.

    Example:
        tokens = ApprovalTokenService(store)
        token = await tokens.issue("finance", "finance.add_manual_entry",
                                   ScopeClassification.WRITE, timedelta(minutes=10))
        assert await tokens.validate(token, "finance", "finance.add_manual_entry",
                                     ScopeClassification.WRITE)
    """

    enforcing = True

    def __init__(
        self,
        store: Storage,
        *,
        secret: bytes | None = None,
        clock: Clock | None = None,
        max_ttl_seconds: int = MAX_TOKEN_TTL_SECONDS,
    ) -> None:
        if secret is not None and not secret:
            raise ValueError("secret must not be empty")
        self._store = store
        self._secret = secret if secret is not None else derive_secret()
        self._clock = clock or utc_now
        self._max_ttl_seconds = max_ttl_seconds

    async def issue(
        self, domain: str, tool_name: str, scope: ScopeClassification, ttl: timedelta
    ) -> str:
        """Issue a token bound to (domain, tool_name, scope) and persist its record."""
        validate_binding_part("domain", domain)
        validate_binding_part("tool_name", tool_name)
        scope = ScopeClassification.parse(scope)
        if ttl <= timedelta(0):
            raise ValueError("ttl must be positive")

        now = self._clock()
        expires_at = capped_expiry(now, ttl, max_ttl_seconds=self._max_ttl_seconds)
        token_id = uuid4().hex
        expires_text = format_timestamp(expires_at)
        payload = BINDING_SEPARATOR.join(
            (token_id, domain, tool_name, str(int(scope)), expires_text)
        )
        signature = self._sign(payload).hex()

        await self._store.execute(
            """
            INSERT INTO ApprovalRecords
            (TokenId, Domain, ToolName, Scope, ExpiresAtUtc, ApprovedAtUtc, IsConsumed)
            VALUES (?, ?, ?, ?, ?, ?, 0)
            """,
            (token_id, domain, tool_name, int(scope), expires_text, format_timestamp(now)),
        )
        _logger.info(
            "issued approval token token_id=%s domain=%s tool=%s scope=%s expires_at=%s",
            token_id,
            domain,
            tool_name,
            scope.label,
            expires_text,
        )
        bundle = f"{payload}{BINDING_SEPARATOR}{signature}"
        return base64.b64encode(bundle.encode("utf-8")).decode("ascii")

    async def validate(
        self, token: str, domain: str, tool_name: str, scope: ScopeClassification
    ) -> bool:
        """Validate and consume a token. Returns False for every rejection."""
        verdict = await self.check(token, domain, tool_name, scope)
        return verdict.valid

    async def check(
        self, token: str, domain: str, tool_name: str, scope: Any
    ) -> TokenVerdict:
        """Validate and consume a token, reporting why it was rejected."""
        try:
            expected_scope = ScopeClassification.parse(scope)
        except ValueError:
            return TokenVerdict(False, REASON_BINDING)

        claims = _decode(token)
        if claims is None:
            return TokenVerdict(False, REASON_MALFORMED)
        if not self._verify(claims.payload, claims.signature):
            return TokenVerdict(False, REASON_SIGNATURE, claims.token_id)
        if (
            claims.domain != domain
            or claims.tool_name != tool_name
            or claims.scope != int(expected_scope)
        ):
            return TokenVerdict(False, REASON_BINDING, claims.token_id)

        now = self._clock()
        if claims.expires_at <= now:
            return TokenVerdict(False, REASON_EXPIRED, claims.token_id)

        rows = await self._store.query(
            """
            SELECT IsConsumed, ExpiresAtUtc
            FROM ApprovalRecords
            WHERE TokenId = ? AND Domain = ? AND ToolName = ? AND Scope = ?
            """,
            (claims.token_id, domain, tool_name, int(expected_scope)),
        )
        if not rows:
            return TokenVerdict(False, REASON_UNKNOWN, claims.token_id)
        record = rows[0]
        if int(record["IsConsumed"]):
            return TokenVerdict(False, REASON_CONSUMED, claims.token_id)
        if parse_timestamp(record["ExpiresAtUtc"]) <= now:
            return TokenVerdict(False, REASON_EXPIRED, claims.token_id)

        # Single authoritative consumption point.
        affected = await self._store.execute(
            """
            UPDATE ApprovalRecords
            SET IsConsumed = 1
            WHERE TokenId = ? AND IsConsumed = 0 AND ExpiresAtUtc > ?
            """,
            (claims.token_id, format_timestamp(now)),
        )
        if affected != 1:
            return TokenVerdict(False, REASON_CONSUMED, claims.token_id)

        _logger.info(
            "consumed approval token token_id=%s domain=%s tool=%s",
            claims.token_id,
            domain,
            tool_name,
        )
        return TokenVerdict(True, REASON_OK, claims.token_id)

    def _sign(self, payload: str) -> bytes:
        mac = hmac.HMAC(self._secret, hashes.SHA256())
        mac.update(payload.encode("utf-8"))
        return mac.finalize()

    def _verify(self, payload: str, signature_hex: str) -> bool:
        """Constant-time signature check."""
        if len(signature_hex) != _SIGNATURE_HEX_LENGTH or not set(signature_hex) <= _HEX_DIGITS:
            return False
        mac = hmac.HMAC(self._secret, hashes.SHA256())
        mac.update(payload.encode("utf-8"))
        try:
            mac.verify(bytes.fromhex(signature_hex))
        except InvalidSignature:
            return False
        return True


def _decode(token: str) -> _Claims | None:
    """Decode a bundle into claims. Returns None for anything malformed."""
    if not isinstance(token, str) or not token.strip():
        return None
    try:
        raw = token.strip().encode("ascii")
        decoded_bytes = base64.b64decode(raw, validate=True)
        # Reject non-canonical encodings so the carrier has one spelling.
        if base64.b64encode(decoded_bytes) != raw:
            return None
        decoded = decoded_bytes.decode("utf-8")
    except ValueError:
        return None

    segments = decoded.split(BINDING_SEPARATOR)
    if len(segments) != _SEGMENT_COUNT:
        return None
    token_id, domain, tool_name, scope_text, expires_text, signature = segments
    try:
        scope = int(scope_text)
        expires_at = parse_timestamp(expires_text)
    except ValueError:
        return None
    return _Claims(
        token_id=token_id,
        domain=domain,
        tool_name=tool_name,
        scope=scope,
        expires_at=expires_at,
        payload=BINDING_SEPARATOR.join(segments[:5]),
        signature=signature,
    )


class NoopApprovalTokenService:
    """Token service used when approval gates are disabled.

    Issues non-cryptographic placeholder tokens and accepts any token. Each
    bypass is logged so the disabled state stays visible in operator logs.
    """

    enforcing = False

    async def issue(
        self, domain: str, tool_name: str, scope: ScopeClassification, ttl: timedelta
    ) -> str:
        _logger.warning(
            "approval gates disabled; issuing placeholder token domain=%s tool=%s",
            domain,
            tool_name,
        )
        return f"token_{uuid4().hex}"

    async def validate(
        self, token: str, domain: str, tool_name: str, scope: ScopeClassification
    ) -> bool:
        verdict = await self.check(token, domain, tool_name, scope)
        return verdict.valid

    async def check(
        self, token: str, domain: str, tool_name: str, scope: Any
    ) -> TokenVerdict:
        _logger.warning(
            "approval gates disabled; accepting token without validation domain=%s tool=%s",
            domain,
            tool_name,
        )
        return TokenVerdict(True, "approval gates disabled")

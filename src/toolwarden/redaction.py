from __future__ import annotations

from typing import Any, Mapping

REDACTED = "[redacted]"

_SENSITIVE_KEY_TERMS = (
    "api_key",
    "apikey",
    "token",
    "secret",
    "password",
    "passwd",
    "authorization",
    "bearer",
    "private_key",
    "privatekey",
    "access_key",
    "accesskey",
    "credential",
    "session",
    "jwt",
    "auth",
)

_SENSITIVE_VALUE_PREFIXES = (
    "sk-",
    "rk-",
    "ghp_",
    "github_pat_",
    "xoxb-",
    "xoxa-",
)


def safe_repr(obj: Any, max_length: int = 200) -> str:
    try:
        r = repr(obj)
        if len(r) > max_length:
            return r[:max_length] + "..."
        return r
    except Exception:
        return "<repr failed>"


def is_sensitive_key(key: str) -> bool:
    key_lower = key.lower()
    return any(term in key_lower for term in _SENSITIVE_KEY_TERMS)


def is_sensitive_value(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    s = value.strip()
    if s.count(".") == 2 and len(s) >= 24:
        return True
    if s.lower().startswith("bearer "):
        return True
    for prefix in _SENSITIVE_VALUE_PREFIXES:
        if s.startswith(prefix):
            return True
    if "-----BEGIN" in s:
        return True
    return False


def redact_value(key: str | None, value: Any) -> Any:
    """Redact a parameter value, keeping JSON-friendly primitives intact.

    Containers are walked recursively; anything that is not a primitive,
    list, tuple or string-keyed dict collapses to a type placeholder.
    """
    if value == REDACTED:
        return REDACTED
    if key is not None and is_sensitive_key(key):
        return REDACTED
    if isinstance(value, str):
        return REDACTED if is_sensitive_value(value) else value
    # NOTE: bool is a subclass of int; both pass through unchanged.
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, (list, tuple)):
        return [redact_value(None, v) for v in value]
    if isinstance(value, dict):
        if all(isinstance(k, str) for k in value.keys()):
            return {k: redact_value(k, v) for k, v in value.items()}
        return f"<{type(value).__name__}>"
    if isinstance(value, (bytes, bytearray, memoryview)):
        return f"<bytes:{len(value)}>"
    return f"<{type(value).__name__}>"


def redact_parameters(parameters: Mapping[str, Any]) -> dict[str, Any]:
    return {k: redact_value(k, v) for k, v in parameters.items()}


def format_parameters(parameters: Mapping[str, Any]) -> str:
    """Render parameters as ``key=value`` pairs for operator prompts."""
    redacted = redact_parameters(parameters)
    return ", ".join(
        f"{k}={v if isinstance(v, str) else safe_repr(v)}" for k, v in redacted.items()
    )

"""Redaction helpers for safe logging.

Anything that came from a webhook, a client request or the provider must
pass through these before it reaches a logger.
"""

import re
from typing import Any

_SIGNATURE_PATTERN = re.compile(r"sha256=[0-9a-fA-F]+")
_BEARER_PATTERN = re.compile(r"(?i)bearer\s+[A-Za-z0-9._\-]+")
# Meta user/system access tokens start with "EAA"
_META_TOKEN_PATTERN = re.compile(r"\bEAA[A-Za-z0-9]{20,}")
_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

_REDACTED = "[REDACTED]"


def redact_string(value: str) -> str:
    """Redact credentials and PII patterns from a string."""
    result = _SIGNATURE_PATTERN.sub("sha256=" + _REDACTED, value)
    result = _BEARER_PATTERN.sub("Bearer " + _REDACTED, result)
    result = _META_TOKEN_PATTERN.sub(_REDACTED, result)
    result = _PHONE_PATTERN.sub(_REDACTED, result)
    result = _EMAIL_PATTERN.sub(_REDACTED, result)
    return result


def redact_value(value: Any) -> str:
    """Redact any value for safe logging. Returns string representation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, dict):
        # Structure only, never values
        return f"dict(keys={sorted(str(k) for k in value.keys())})"
    if isinstance(value, (list, tuple, set)):
        return f"list(len={len(value)})"
    if isinstance(value, bytes):
        return f"bytes(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    return {k: redact_value(v) for k, v in kwargs.items()}

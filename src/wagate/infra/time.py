"""Time utilities for consistent timestamp handling."""

from datetime import datetime, timezone
from typing import Any


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def from_unix_timestamp(value: Any) -> datetime:
    """Parse a provider unix timestamp (seconds, int or numeric string).

    Raises:
        ValueError: If value is not a non-negative integer timestamp.
    """
    if isinstance(value, bool):
        raise ValueError("timestamp must be numeric")
    if isinstance(value, str):
        value = value.strip()
        if not value.isdigit():
            raise ValueError("timestamp must be numeric")
    seconds = int(value)
    if seconds < 0:
        raise ValueError("timestamp must be non-negative")
    return datetime.fromtimestamp(seconds, tz=timezone.utc)

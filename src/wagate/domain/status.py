"""Delivery status reconciliation.

Statuses only move forward: sent < delivered < read < failed. Callbacks
arrive duplicated and out of order, and provider timestamps can collide,
so ordering is decided by rank, never by timestamp.
"""

from __future__ import annotations

from datetime import datetime

from psycopg2.extensions import cursor as PgCursor

from wagate.errors import MessageNotFound
from wagate.infra.repositories import messages_repository

STATUS_RANK: dict[str, int] = {
    "sent": 1,
    "delivered": 2,
    "read": 3,
    "failed": 4,
}


def status_rank(status: str | None) -> int:
    """Rank of a status; unknown or initial statuses rank 0."""
    return STATUS_RANK.get(status or "", 0)


def is_advance(current: str | None, new: str) -> bool:
    return status_rank(new) > status_rank(current)


def apply_status(
    cur: PgCursor,
    *,
    account_id: str,
    provider_message_id: str,
    status: str,
    timestamp: datetime | None,
    error_code: int | None = None,
    error_message: str | None = None,
) -> bool:
    """Apply a status callback to the stored message.

    Must run inside a transaction; the row is locked for the compare.

    Returns:
        True if the status advanced, False for duplicates and regressions.

    Raises:
        MessageNotFound: If the account has no message with that id.
    """
    if status not in STATUS_RANK:
        raise ValueError(f"Unknown delivery status: {status}")

    locked = messages_repository.lock_by_provider_id(
        cur, account_id=account_id, provider_message_id=provider_message_id
    )
    if locked is None:
        raise MessageNotFound(provider_message_id)

    message_id, current = locked
    if not is_advance(current, status):
        return False

    messages_repository.update_status(
        cur,
        message_id,
        status=status,
        status_at=timestamp,
        error_code=error_code if status == "failed" else None,
        error_message=error_message if status == "failed" else None,
    )
    return True

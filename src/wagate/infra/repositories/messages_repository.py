"""Messages repository.

Rows are immutable apart from the status columns. ``provider_message_id``
is unique, which makes inbound webhook re-deliveries no-ops.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from wagate.domain.models import MessageRecord
from wagate.infra.db import for_update

_MESSAGE_COLUMNS = """
    id, account_id, contact_id, direction, type, content, payload, status,
    provider_message_id, provider_timestamp, created_at, error_code, error_message
"""


def _row_to_message(row: tuple[Any, ...]) -> MessageRecord:
    payload = row[6]
    if isinstance(payload, str):
        payload = json.loads(payload)
    return MessageRecord(
        id=int(row[0]),
        account_id=str(row[1]),
        contact_id=str(row[2]),
        direction=row[3],
        type=row[4],
        content=row[5],
        payload=payload,
        status=row[7],
        provider_message_id=row[8],
        provider_timestamp=row[9],
        created_at=row[10],
        error_code=row[11],
        error_message=row[12],
    )


def insert_message(
    cur: PgCursor,
    *,
    account_id: str,
    contact_id: str,
    direction: str,
    message_type: str,
    content: str | None,
    payload: dict[str, Any] | None,
    status: str,
    provider_message_id: str | None,
    provider_timestamp: datetime | None,
) -> MessageRecord | None:
    """Insert a message row.

    Returns:
        The stored message, or None if provider_message_id already exists.
    """
    cur.execute(
        f"""
        INSERT INTO messages (
            account_id, contact_id, direction, type, content, payload,
            status, provider_message_id, provider_timestamp
        )
        VALUES (%s, %s, %s, %s, %s, %s::jsonb, %s, %s, %s)
        ON CONFLICT (provider_message_id) DO NOTHING
        RETURNING {_MESSAGE_COLUMNS}
        """,
        (
            account_id,
            contact_id,
            direction,
            message_type,
            content,
            json.dumps(payload) if payload is not None else None,
            status,
            provider_message_id,
            provider_timestamp,
        ),
    )
    row = cur.fetchone()
    return _row_to_message(row) if row else None


def get_last_inbound_at(cur: PgCursor, contact_id: str) -> datetime | None:
    """Provider timestamp of the contact's most recent incoming message."""
    cur.execute(
        """
        SELECT max(provider_timestamp) FROM messages
        WHERE contact_id = %s AND direction = 'incoming'
        """,
        (contact_id,),
    )
    row = cur.fetchone()
    return row[0] if row else None


def lock_by_provider_id(
    cur: PgCursor,
    *,
    account_id: str,
    provider_message_id: str,
) -> tuple[int, str] | None:
    """Lock a message row for a status transition.

    Returns:
        Tuple of (message_id, current_status), or None if the id is unknown
        for this account.
    """
    row = for_update(
        cur,
        """
        SELECT id, status FROM messages
        WHERE account_id = %s AND provider_message_id = %s
        """,
        (account_id, provider_message_id),
    )
    return (int(row[0]), row[1]) if row else None


def update_status(
    cur: PgCursor,
    message_id: int,
    *,
    status: str,
    status_at: datetime | None,
    error_code: int | None = None,
    error_message: str | None = None,
) -> None:
    cur.execute(
        """
        UPDATE messages
        SET status = %s,
            status_updated_at = COALESCE(%s::timestamptz, now()),
            error_code = COALESCE(%s, error_code),
            error_message = COALESCE(%s, error_message)
        WHERE id = %s
        """,
        (status, status_at, error_code, error_message, message_id),
    )


def list_messages(cur: PgCursor, contact_id: str, *, limit: int = 100) -> list[MessageRecord]:
    """Contact history in display order.

    Ordered by provider timestamp (local receipt time when absent), with the
    local insert sequence breaking ties.
    """
    cur.execute(
        f"""
        SELECT {_MESSAGE_COLUMNS} FROM messages
        WHERE contact_id = %s
        ORDER BY COALESCE(provider_timestamp, created_at) DESC, id DESC
        LIMIT %s
        """,
        (contact_id, limit),
    )
    rows = cur.fetchall()
    return [_row_to_message(row) for row in reversed(rows)]

"""Contacts repository - only the fields the gateway needs."""

from __future__ import annotations

from typing import Any

from psycopg2.extensions import cursor as PgCursor

from wagate.domain.models import Contact

_SELECT_CONTACT = """
    SELECT c.id, c.account_id, a.organization_id, a.phone_id,
           c.phone_number, c.profile_name
    FROM contacts c
    JOIN whatsapp_accounts a ON a.id = c.account_id
"""


def _row_to_contact(row: tuple[Any, ...]) -> Contact:
    return Contact(
        id=str(row[0]),
        account_id=str(row[1]),
        organization_id=str(row[2]),
        phone_id=row[3],
        phone_number=row[4],
        profile_name=row[5],
    )


def get_contact(cur: PgCursor, contact_id: str) -> Contact | None:
    cur.execute(_SELECT_CONTACT + " WHERE c.id = %s", (contact_id,))
    row = cur.fetchone()
    return _row_to_contact(row) if row else None


def upsert_contact(
    cur: PgCursor,
    *,
    account_id: str,
    phone_number: str,
    profile_name: str | None = None,
) -> tuple[str, bool]:
    """Resolve or create the contact for (account_id, phone_number).

    An existing profile_name is only overwritten by a non-empty one.

    Returns:
        Tuple of (contact_id, created).
    """
    cur.execute(
        """
        INSERT INTO contacts (account_id, phone_number, profile_name)
        VALUES (%s, %s, %s)
        ON CONFLICT (account_id, phone_number) DO UPDATE
        SET profile_name = COALESCE(EXCLUDED.profile_name, contacts.profile_name)
        RETURNING id, (xmax = 0) AS created
        """,
        (account_id, phone_number, profile_name or None),
    )
    row = cur.fetchone()
    return str(row[0]), bool(row[1])

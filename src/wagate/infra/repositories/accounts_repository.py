"""WhatsApp accounts repository.

Uses raw SQL with psycopg2 (no ORM). Credentials are encrypted on write and
decrypted on read, so callers only ever see plaintext ``Account`` objects.
"""

from __future__ import annotations

from typing import Any

from psycopg2.extensions import cursor as PgCursor

from wagate.domain.models import Account
from wagate.infra.secrets import decrypt_optional, decrypt_secret, encrypt_optional, encrypt_secret

_ACCOUNT_COLUMNS = """
    id, organization_id, name, app_id, phone_id, business_id,
    access_token_enc, app_secret_enc, webhook_verify_token, api_version,
    is_default_incoming, is_default_outgoing, auto_read_receipt, status,
    created_at, updated_at
"""

# Columns a partial update may touch (plaintext name -> stored column)
_UPDATABLE_COLUMNS = {
    "name": "name",
    "app_id": "app_id",
    "phone_id": "phone_id",
    "business_id": "business_id",
    "access_token": "access_token_enc",
    "app_secret": "app_secret_enc",
    "webhook_verify_token": "webhook_verify_token",
    "api_version": "api_version",
    "is_default_incoming": "is_default_incoming",
    "is_default_outgoing": "is_default_outgoing",
    "auto_read_receipt": "auto_read_receipt",
    "status": "status",
}

_ENCRYPTED_FIELDS = ("access_token", "app_secret")

DEFAULT_FLAGS = ("is_default_incoming", "is_default_outgoing")


def _row_to_account(row: tuple[Any, ...]) -> Account:
    return Account(
        id=str(row[0]),
        organization_id=str(row[1]),
        name=row[2],
        app_id=row[3],
        phone_id=row[4],
        business_id=row[5],
        access_token=decrypt_secret(row[6]),
        app_secret=decrypt_optional(row[7]),
        webhook_verify_token=row[8],
        api_version=row[9],
        is_default_incoming=bool(row[10]),
        is_default_outgoing=bool(row[11]),
        auto_read_receipt=bool(row[12]),
        status=row[13],
        created_at=row[14],
        updated_at=row[15],
    )


def get_account_by_phone_id(cur: PgCursor, phone_id: str) -> Account | None:
    cur.execute(
        f"SELECT {_ACCOUNT_COLUMNS} FROM whatsapp_accounts WHERE phone_id = %s",
        (phone_id,),
    )
    row = cur.fetchone()
    return _row_to_account(row) if row else None


def get_account(cur: PgCursor, *, organization_id: str, account_id: str) -> Account | None:
    cur.execute(
        f"""
        SELECT {_ACCOUNT_COLUMNS} FROM whatsapp_accounts
        WHERE id = %s AND organization_id = %s
        """,
        (account_id, organization_id),
    )
    row = cur.fetchone()
    return _row_to_account(row) if row else None


def list_accounts(cur: PgCursor, organization_id: str) -> list[Account]:
    cur.execute(
        f"""
        SELECT {_ACCOUNT_COLUMNS} FROM whatsapp_accounts
        WHERE organization_id = %s
        ORDER BY created_at DESC
        """,
        (organization_id,),
    )
    return [_row_to_account(row) for row in cur.fetchall()]


def insert_account(
    cur: PgCursor,
    *,
    organization_id: str,
    name: str,
    phone_id: str,
    business_id: str,
    access_token: str,
    webhook_verify_token: str,
    api_version: str,
    app_id: str | None = None,
    app_secret: str | None = None,
    is_default_incoming: bool = False,
    is_default_outgoing: bool = False,
    auto_read_receipt: bool = False,
    status: str = "active",
) -> Account:
    """Insert a new account and return it as stored."""
    cur.execute(
        f"""
        INSERT INTO whatsapp_accounts (
            organization_id, name, app_id, phone_id, business_id,
            access_token_enc, app_secret_enc, webhook_verify_token, api_version,
            is_default_incoming, is_default_outgoing, auto_read_receipt, status
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING {_ACCOUNT_COLUMNS}
        """,
        (
            organization_id,
            name,
            app_id,
            phone_id,
            business_id,
            encrypt_secret(access_token),
            encrypt_optional(app_secret),
            webhook_verify_token,
            api_version,
            is_default_incoming,
            is_default_outgoing,
            auto_read_receipt,
            status,
        ),
    )
    return _row_to_account(cur.fetchone())


def update_account(cur: PgCursor, account_id: str, changes: dict[str, Any]) -> Account | None:
    """Apply a partial update. Unknown keys raise ValueError.

    Returns:
        Updated account, or None if the row does not exist.
    """
    unknown = set(changes) - set(_UPDATABLE_COLUMNS)
    if unknown:
        raise ValueError(f"Unknown account fields: {sorted(unknown)}")

    sets: list[str] = []
    params: list[Any] = []
    for key, value in changes.items():
        # Column names come from _UPDATABLE_COLUMNS only
        sets.append(f"{_UPDATABLE_COLUMNS[key]} = %s")
        params.append(encrypt_secret(value) if key in _ENCRYPTED_FIELDS else value)
    sets.append("updated_at = now()")
    params.append(account_id)

    cur.execute(
        f"""
        UPDATE whatsapp_accounts
        SET {", ".join(sets)}
        WHERE id = %s
        RETURNING {_ACCOUNT_COLUMNS}
        """,
        tuple(params),
    )
    row = cur.fetchone()
    return _row_to_account(row) if row else None


def delete_account(cur: PgCursor, account_id: str) -> bool:
    cur.execute("DELETE FROM whatsapp_accounts WHERE id = %s", (account_id,))
    return cur.rowcount > 0


def clear_default_flag(
    cur: PgCursor,
    *,
    organization_id: str,
    flag: str,
    except_account_id: str | None = None,
) -> list[str]:
    """Unset a default flag on an organization's other accounts.

    Returns:
        phone_ids of the accounts that changed (their cache entries are stale).
    """
    if flag not in DEFAULT_FLAGS:
        raise ValueError(f"Unknown default flag: {flag}")

    cur.execute(
        f"""
        UPDATE whatsapp_accounts
        SET {flag} = false, updated_at = now()
        WHERE organization_id = %s AND {flag} = true
          AND (%s::uuid IS NULL OR id <> %s::uuid)
        RETURNING phone_id
        """,
        (organization_id, except_account_id, except_account_id),
    )
    return [row[0] for row in cur.fetchall()]


def verify_token_exists(cur: PgCursor, token: str) -> bool:
    """True if any account is configured with this webhook verify token."""
    cur.execute(
        "SELECT 1 FROM whatsapp_accounts WHERE webhook_verify_token = %s LIMIT 1",
        (token,),
    )
    return cur.fetchone() is not None

"""Message templates cache (per account, refreshed from the provider)."""

from __future__ import annotations

from typing import Any

from psycopg2.extensions import cursor as PgCursor

from wagate.domain.models import Template

_TEMPLATE_COLUMNS = """
    account_id, name, language, status, category, header_text, body_text, footer_text
"""


def _row_to_template(row: tuple[Any, ...]) -> Template:
    return Template(
        account_id=str(row[0]),
        name=row[1],
        language=row[2],
        status=row[3],
        category=row[4],
        header_text=row[5],
        body_text=row[6],
        footer_text=row[7],
    )


def get_template(
    cur: PgCursor,
    *,
    account_id: str,
    name: str,
    language: str | None = None,
) -> Template | None:
    """Find a cached template by name (and language, when given).

    Without a language, an APPROVED variant is preferred.
    """
    if language:
        cur.execute(
            f"""
            SELECT {_TEMPLATE_COLUMNS} FROM message_templates
            WHERE account_id = %s AND name = %s AND language = %s
            """,
            (account_id, name, language),
        )
    else:
        cur.execute(
            f"""
            SELECT {_TEMPLATE_COLUMNS} FROM message_templates
            WHERE account_id = %s AND name = %s
            ORDER BY (status = 'APPROVED') DESC, updated_at DESC
            LIMIT 1
            """,
            (account_id, name),
        )
    row = cur.fetchone()
    return _row_to_template(row) if row else None


def upsert_template(cur: PgCursor, template: Template) -> None:
    cur.execute(
        """
        INSERT INTO message_templates (
            account_id, name, language, status, category,
            header_text, body_text, footer_text
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (account_id, name, language) DO UPDATE
        SET status = EXCLUDED.status,
            category = EXCLUDED.category,
            header_text = EXCLUDED.header_text,
            body_text = EXCLUDED.body_text,
            footer_text = EXCLUDED.footer_text,
            updated_at = now()
        """,
        (
            template.account_id,
            template.name,
            template.language,
            template.status,
            template.category,
            template.header_text,
            template.body_text,
            template.footer_text,
        ),
    )

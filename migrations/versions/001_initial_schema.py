"""Initial gateway schema (SQL-only).

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op


# revision identifiers, used by Alembic.
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


STATEMENTS = [
    "CREATE EXTENSION IF NOT EXISTS pgcrypto",
    """
    CREATE TABLE whatsapp_accounts (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        organization_id TEXT NOT NULL,
        name TEXT NOT NULL,
        app_id TEXT,
        phone_id TEXT NOT NULL UNIQUE,
        business_id TEXT NOT NULL,
        access_token_enc TEXT NOT NULL,
        app_secret_enc TEXT,
        webhook_verify_token TEXT,
        api_version TEXT NOT NULL DEFAULT 'v21.0',
        is_default_incoming BOOLEAN NOT NULL DEFAULT false,
        is_default_outgoing BOOLEAN NOT NULL DEFAULT false,
        auto_read_receipt BOOLEAN NOT NULL DEFAULT false,
        status TEXT NOT NULL DEFAULT 'active'
            CHECK (status IN ('pending_registration', 'active')),
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX idx_whatsapp_accounts_org ON whatsapp_accounts (organization_id)",
    "CREATE INDEX idx_whatsapp_accounts_verify_token ON whatsapp_accounts (webhook_verify_token)",
    # At most one default account per organization and direction
    """
    CREATE UNIQUE INDEX uq_whatsapp_accounts_default_incoming
        ON whatsapp_accounts (organization_id) WHERE is_default_incoming
    """,
    """
    CREATE UNIQUE INDEX uq_whatsapp_accounts_default_outgoing
        ON whatsapp_accounts (organization_id) WHERE is_default_outgoing
    """,
    """
    CREATE TABLE contacts (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        account_id UUID NOT NULL REFERENCES whatsapp_accounts (id) ON DELETE CASCADE,
        phone_number TEXT NOT NULL,
        profile_name TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (account_id, phone_number)
    )
    """,
    """
    CREATE TABLE messages (
        id BIGSERIAL PRIMARY KEY,
        account_id UUID NOT NULL REFERENCES whatsapp_accounts (id) ON DELETE CASCADE,
        contact_id UUID NOT NULL REFERENCES contacts (id) ON DELETE CASCADE,
        direction TEXT NOT NULL CHECK (direction IN ('incoming', 'outgoing')),
        type TEXT NOT NULL,
        content TEXT,
        payload JSONB,
        status TEXT NOT NULL,
        provider_message_id TEXT UNIQUE,
        provider_timestamp TIMESTAMPTZ,
        status_updated_at TIMESTAMPTZ,
        error_code INTEGER,
        error_message TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE INDEX idx_messages_contact_direction_ts
        ON messages (contact_id, direction, provider_timestamp DESC)
    """,
    """
    CREATE TABLE message_templates (
        id BIGSERIAL PRIMARY KEY,
        account_id UUID NOT NULL REFERENCES whatsapp_accounts (id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        language TEXT NOT NULL,
        status TEXT NOT NULL,
        category TEXT,
        header_text TEXT,
        body_text TEXT,
        footer_text TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (account_id, name, language)
    )
    """,
]


def upgrade() -> None:
    conn = op.get_bind()
    for statement in STATEMENTS:
        conn.exec_driver_sql(statement)


def downgrade() -> None:
    for table in ("message_templates", "messages", "contacts", "whatsapp_accounts"):
        op.execute(f"DROP TABLE IF EXISTS {table}")

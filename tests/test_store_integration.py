"""Store-backed integration tests (Postgres).

Require DATABASE_URL pointing at a migrated database (alembic upgrade head).
Each test uses fresh random identifiers and cleans up its account.
"""

import os
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from wagate.domain.accounts import AccountResolver, AccountService
from wagate.domain.session_window import load_window_state
from wagate.domain.status import apply_status
from wagate.domain.webhook_ingest import ingest_inbound
from wagate.infra.account_cache import InMemoryAccountCache
from wagate.infra.db import txn
from wagate.infra.repositories import messages_repository
from wagate.whatsapp.models import InboundMessage

pytestmark = pytest.mark.skipif(
    not os.environ.get("DATABASE_URL"),
    reason="DATABASE_URL not set - skipping store integration tests",
)

NOW = datetime.now(timezone.utc).replace(microsecond=0)


@pytest.fixture
def org_id():
    return f"org-{uuid.uuid4().hex[:8]}"


@pytest.fixture
def service():
    return AccountService(AccountResolver(InMemoryAccountCache()))


@pytest.fixture
def account(service, org_id):
    created = service.create(
        org_id,
        name="Integration",
        phone_id=uuid.uuid4().hex[:15],
        business_id="waba-it",
        access_token="T1",
        app_secret="s1",
    )
    yield created
    with txn() as cur:
        cur.execute("DELETE FROM whatsapp_accounts WHERE id = %s", (created.id,))


def inbound(account, message_id, ts):
    return InboundMessage(
        phone_number_id=account.phone_id,
        contact_phone="5511900000000",
        provider_message_id=message_id,
        provider_timestamp=ts,
        type="text",
        content="hi",
        payload={"body": "hi"},
    )


def test_credentials_round_trip_encrypted(service, account):
    with txn() as cur:
        cur.execute("SELECT access_token_enc FROM whatsapp_accounts WHERE id = %s", (account.id,))
        (stored,) = cur.fetchone()

    assert stored != "T1"
    assert service.resolver.resolve(account.phone_id).access_token == "T1"


def test_rotation_visible_on_next_resolve(service, account, org_id):
    resolver = service.resolver
    assert resolver.resolve(account.phone_id).access_token == "T1"

    service.update(org_id, account.id, {"access_token": "T2"})

    assert resolver.resolve(account.phone_id).access_token == "T2"


def test_single_default_per_organization(service, account, org_id):
    service.update(org_id, account.id, {"is_default_outgoing": True})
    other = service.create(
        org_id,
        name="Second",
        phone_id=uuid.uuid4().hex[:15],
        business_id="waba-it",
        access_token="T",
        is_default_outgoing=True,
    )
    try:
        assert service.get(org_id, account.id).is_default_outgoing is False
        assert service.get(org_id, other.id).is_default_outgoing is True
    finally:
        service.delete(org_id, other.id)


def test_redelivery_and_window(account):
    message_id = f"wamid.{uuid.uuid4().hex}"
    event = inbound(account, message_id, NOW - timedelta(hours=2))

    with txn() as cur:
        assert ingest_inbound(cur, account, event) is True
    with txn() as cur:
        assert ingest_inbound(cur, account, event) is False
        cur.execute("SELECT contact_id FROM messages WHERE provider_message_id = %s", (message_id,))
        rows = cur.fetchall()

    assert len(rows) == 1
    with txn() as cur:
        assert load_window_state(cur, str(rows[0][0]), NOW).is_open is True
        assert load_window_state(cur, str(rows[0][0]), NOW + timedelta(hours=22)).is_open is False


def test_status_regression_ignored(account):
    inbound_id = f"wamid.{uuid.uuid4().hex}"
    with txn() as cur:
        ingest_inbound(cur, account, inbound(account, inbound_id, NOW))
        cur.execute("SELECT contact_id FROM messages WHERE provider_message_id = %s", (inbound_id,))
        (contact_id,) = cur.fetchone()
        outgoing_id = f"wamid.{uuid.uuid4().hex}"
        messages_repository.insert_message(
            cur,
            account_id=account.id,
            contact_id=str(contact_id),
            direction="outgoing",
            message_type="text",
            content="hello",
            payload={"body": "hello"},
            status="sent",
            provider_message_id=outgoing_id,
            provider_timestamp=NOW,
        )

    for value in ("read", "delivered"):
        with txn() as cur:
            apply_status(
                cur,
                account_id=account.id,
                provider_message_id=outgoing_id,
                status=value,
                timestamp=NOW,
            )

    with txn() as cur:
        cur.execute("SELECT status FROM messages WHERE provider_message_id = %s", (outgoing_id,))
        assert cur.fetchone()[0] == "read"

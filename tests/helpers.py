"""Shared test helper functions for gateway tests.

Plain functions and classes importable by conftest.py and test modules.
These are NOT fixtures.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from datetime import datetime, timezone
from typing import Any
from unittest.mock import MagicMock

from wagate.domain.models import Account, Contact, MessageRecord, Template

ORG_ID = "org-1"
PHONE_ID = "106540352242922"
OTHER_PHONE_ID = "206540352242933"
APP_SECRET = "test-app-secret"
CUSTOMER_PHONE = "5511999998888"


def make_account(**overrides: Any) -> Account:
    fields: dict[str, Any] = {
        "id": "acc-1",
        "organization_id": ORG_ID,
        "name": "Front desk",
        "phone_id": PHONE_ID,
        "business_id": "waba-1",
        "access_token": "EAAtesttoken1234567890abcdef",
        "app_secret": APP_SECRET,
        "webhook_verify_token": "verify-me",
    }
    fields.update(overrides)
    return Account(**fields)


def make_contact(**overrides: Any) -> Contact:
    fields: dict[str, Any] = {
        "id": "contact-1",
        "account_id": "acc-1",
        "organization_id": ORG_ID,
        "phone_id": PHONE_ID,
        "phone_number": CUSTOMER_PHONE,
        "profile_name": "Alice",
    }
    fields.update(overrides)
    return Contact(**fields)


def make_template(**overrides: Any) -> Template:
    fields: dict[str, Any] = {
        "account_id": "acc-1",
        "name": "welcome",
        "language": "en_US",
        "status": "APPROVED",
        "body_text": "Hello {{1}}, welcome back!",
    }
    fields.update(overrides)
    return Template(**fields)


def make_record(**overrides: Any) -> MessageRecord:
    fields: dict[str, Any] = {
        "id": 1,
        "account_id": "acc-1",
        "contact_id": "contact-1",
        "direction": "outgoing",
        "type": "text",
        "content": "hi",
        "payload": {"body": "hi"},
        "status": "sent",
        "provider_message_id": "wamid.OUT1",
        "provider_timestamp": datetime(2026, 1, 1, tzinfo=timezone.utc),
        "created_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
    }
    fields.update(overrides)
    return MessageRecord(**fields)


def sign(body: bytes, secret: str = APP_SECRET) -> str:
    """X-Hub-Signature-256 header value for body."""
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def change(phone_id: str = PHONE_ID, **value: Any) -> dict[str, Any]:
    """One entry[].changes[] item."""
    return {
        "field": "messages",
        "value": {
            "messaging_product": "whatsapp",
            "metadata": {"display_phone_number": "15550001111", "phone_number_id": phone_id},
            **value,
        },
    }


def webhook_payload(*changes: dict[str, Any]) -> dict[str, Any]:
    return {
        "object": "whatsapp_business_account",
        "entry": [{"id": "waba-1", "changes": list(changes)}],
    }


def text_message(message_id: str = "wamid.IN1", body: str = "hello", ts: int = 1767225600) -> dict:
    return {
        "from": CUSTOMER_PHONE,
        "id": message_id,
        "timestamp": str(ts),
        "type": "text",
        "text": {"body": body},
    }


def status_item(message_id: str = "wamid.OUT1", status: str = "delivered", ts: int = 1767225600) -> dict:
    return {
        "id": message_id,
        "status": status,
        "timestamp": str(ts),
        "recipient_id": CUSTOMER_PHONE,
    }


def encode(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload).encode("utf-8")


def mock_txn(mock_txn_factory: MagicMock) -> MagicMock:
    """Wire a patched txn() so ``with txn() as cur`` yields a MagicMock cursor."""
    cur = MagicMock()
    mock_txn_factory.return_value.__enter__.return_value = cur
    mock_txn_factory.return_value.__exit__.return_value = False
    return cur


class LogRecorder:
    """Simple recorder to capture log calls deterministically."""

    def __init__(self):
        self.calls: list[tuple[str, tuple, dict]] = []

    def _record(self, level: str, *args, **kwargs):
        self.calls.append((level, args, kwargs))

    def info(self, *args, **kwargs):
        self._record("info", *args, **kwargs)

    def warning(self, *args, **kwargs):
        self._record("warning", *args, **kwargs)

    def error(self, *args, **kwargs):
        self._record("error", *args, **kwargs)

    def debug(self, *args, **kwargs):
        self._record("debug", *args, **kwargs)

    def messages(self, level: str | None = None) -> list[str]:
        return [args[0] for lvl, args, _ in self.calls if level is None or lvl == level]

    def get_all_logged_content(self) -> str:
        """Concatenate all args and kwargs from all calls into one string."""
        parts = []
        for _, args, kwargs in self.calls:
            parts.append(str(args))
            parts.append(str(kwargs))
        return " ".join(parts)

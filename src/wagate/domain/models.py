"""Gateway records loaded from the store."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

AccountStatus = Literal["pending_registration", "active"]
Direction = Literal["incoming", "outgoing"]


@dataclass(frozen=True)
class Account:
    """WhatsApp Business account with decrypted credentials.

    Only ever held in memory (resolver cache, provider calls). Use
    ``to_public()`` for anything sent to a client.
    """

    id: str
    organization_id: str
    name: str
    phone_id: str
    business_id: str
    access_token: str = field(repr=False)
    app_secret: str | None = field(default=None, repr=False)
    webhook_verify_token: str | None = field(default=None, repr=False)
    api_version: str = "v21.0"
    app_id: str | None = None
    is_default_incoming: bool = False
    is_default_outgoing: bool = False
    auto_read_receipt: bool = False
    status: AccountStatus = "active"
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def to_public(self) -> dict[str, Any]:
        """Client-facing projection. Never contains token or app secret."""
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "app_id": self.app_id,
            "phone_id": self.phone_id,
            "business_id": self.business_id,
            "webhook_verify_token": self.webhook_verify_token,
            "api_version": self.api_version,
            "is_default_incoming": self.is_default_incoming,
            "is_default_outgoing": self.is_default_outgoing,
            "auto_read_receipt": self.auto_read_receipt,
            "status": self.status,
            "has_access_token": bool(self.access_token),
            "has_app_secret": bool(self.app_secret),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class Contact:
    """End customer bound to one account (phone_id denormalized for routing)."""

    id: str
    account_id: str
    organization_id: str
    phone_id: str
    phone_number: str
    profile_name: str | None = None


@dataclass(frozen=True)
class MessageRecord:
    id: int
    account_id: str
    contact_id: str
    direction: Direction
    type: str
    content: str | None
    payload: dict[str, Any] | None
    status: str
    provider_message_id: str | None
    provider_timestamp: datetime | None
    created_at: datetime
    error_code: int | None = None
    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "contact_id": self.contact_id,
            "direction": self.direction,
            "type": self.type,
            "content": self.content,
            "payload": self.payload,
            "status": self.status,
            "provider_message_id": self.provider_message_id,
            "provider_timestamp": (
                self.provider_timestamp.isoformat() if self.provider_timestamp else None
            ),
            "created_at": self.created_at.isoformat(),
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


@dataclass(frozen=True)
class Template:
    """Provider template cached per account."""

    account_id: str
    name: str
    language: str
    status: str
    category: str | None = None
    header_text: str | None = None
    body_text: str | None = None
    footer_text: str | None = None

    @property
    def is_approved(self) -> bool:
        return self.status == "APPROVED"

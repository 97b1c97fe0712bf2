"""Normalized webhook events.

A provider delivery decodes to a list of ``Event`` values. Each event keeps
the phone_number_id of the change it came from, so it can be routed to the
account whose secret verified the delivery.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Union

DeliveryStatus = Literal["sent", "delivered", "read", "failed"]


@dataclass(frozen=True)
class InboundMessage:
    """Customer message. contact_phone and content are PII: never log them."""

    phone_number_id: str
    contact_phone: str
    provider_message_id: str
    provider_timestamp: datetime
    type: str
    content: str | None
    payload: dict[str, Any] = field(default_factory=dict)
    profile_name: str | None = None


@dataclass(frozen=True)
class StatusUpdate:
    """Delivery/read callback for a message we sent."""

    phone_number_id: str
    provider_message_id: str
    status: DeliveryStatus
    timestamp: datetime
    error_code: int | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class Unrecognized:
    """Sub-entry that could not be decoded. Skipped, never fatal."""

    phone_number_id: str | None
    reason: str


Event = Union[InboundMessage, StatusUpdate, Unrecognized]

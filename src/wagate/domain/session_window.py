"""24-hour customer service window.

Per contact, two states:
- OPEN: free-form replies allowed
- CLOSED: only approved templates may be sent

The state is never stored. It is a pure function of the provider timestamp
of the contact's latest inbound message, so concurrent or reordered
webhook deliveries converge on the same answer, and readers need no lock.
A contact that never wrote to us is CLOSED.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal

from psycopg2.extensions import cursor as PgCursor

from wagate.infra.repositories.messages_repository import get_last_inbound_at

SESSION_WINDOW = timedelta(hours=24)

WindowStatus = Literal["open", "closed"]


@dataclass(frozen=True)
class WindowState:
    contact_id: str
    status: WindowStatus
    last_inbound_at: datetime | None
    expires_at: datetime | None

    @property
    def is_open(self) -> bool:
        return self.status == "open"

    def to_dict(self) -> dict:
        return {
            "contact_id": self.contact_id,
            "status": self.status,
            "last_inbound_at": self.last_inbound_at.isoformat() if self.last_inbound_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


def is_window_open(last_inbound_at: datetime | None, now: datetime) -> bool:
    """True iff now - last_inbound_at < 24h (exactly 24h is closed)."""
    if last_inbound_at is None:
        return False
    return now - last_inbound_at < SESSION_WINDOW


def window_state(contact_id: str, last_inbound_at: datetime | None, now: datetime) -> WindowState:
    is_open = is_window_open(last_inbound_at, now)
    return WindowState(
        contact_id=contact_id,
        status="open" if is_open else "closed",
        last_inbound_at=last_inbound_at,
        expires_at=last_inbound_at + SESSION_WINDOW if last_inbound_at else None,
    )


def load_window_state(cur: PgCursor, contact_id: str, now: datetime) -> WindowState:
    """Window state from committed inbound messages (lock-free read)."""
    return window_state(contact_id, get_last_inbound_at(cur, contact_id), now)

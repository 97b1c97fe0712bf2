"""Gateway error taxonomy.

Every error carries a stable ``code``, the HTTP status the internal API maps
it to, and an ``action`` hint telling the caller what to do next.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any


class GatewayError(Exception):
    """Base class for all gateway errors."""

    code = "gateway_error"
    status_code = 500
    action: str | None = None

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.action:
            body["action"] = self.action
        return body


class Unauthenticated(GatewayError):
    """Webhook signature or verify-token mismatch."""

    code = "unauthenticated"
    status_code = 403


class AccountNotFound(GatewayError):
    code = "account_not_found"
    status_code = 404

    def __init__(self, lookup: str) -> None:
        super().__init__("whatsapp account not found")
        self.lookup = lookup


class AccountAlreadyExists(GatewayError):
    code = "account_already_exists"
    status_code = 409

    def __init__(self, phone_id: str) -> None:
        super().__init__("an account with this phone_id already exists")
        self.phone_id = phone_id


class DefaultAccountConflict(GatewayError):
    """Another account became the organization default concurrently."""

    code = "default_account_conflict"
    status_code = 409
    action = "retry"

    def __init__(self, flag: str) -> None:
        super().__init__(f"another account took {flag} concurrently")
        self.flag = flag


class AccountInactive(GatewayError):
    code = "account_inactive"
    status_code = 409
    action = "complete_registration"

    def __init__(self, account_id: str, status: str) -> None:
        super().__init__(f"whatsapp account is {status}")
        self.account_id = account_id
        self.status = status


class ContactNotFound(GatewayError):
    code = "contact_not_found"
    status_code = 404

    def __init__(self, contact_id: str) -> None:
        super().__init__("contact not found")
        self.contact_id = contact_id


class WindowClosed(GatewayError):
    """Free-form send attempted outside the 24h customer-service window."""

    code = "window_closed"
    status_code = 409
    action = "send_template"

    def __init__(self, contact_id: str, last_inbound_at: datetime | None) -> None:
        if last_inbound_at is None:
            detail = "contact has never messaged this number"
        else:
            detail = "last customer message is older than 24 hours"
        super().__init__(f"session window closed: {detail}; send a template instead")
        self.contact_id = contact_id
        self.last_inbound_at = last_inbound_at

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["last_inbound_at"] = (
            self.last_inbound_at.isoformat() if self.last_inbound_at else None
        )
        return body


class TemplateNotFound(GatewayError):
    code = "template_not_found"
    status_code = 404
    action = "sync_templates"

    def __init__(self, template_name: str) -> None:
        super().__init__(f"template {template_name!r} not found")
        self.template_name = template_name


class TemplateNotApproved(GatewayError):
    code = "template_not_approved"
    status_code = 400

    def __init__(self, template_name: str, status: str) -> None:
        super().__init__(f"template {template_name!r} is {status}, not APPROVED")
        self.template_name = template_name
        self.status = status


class MissingVariable(GatewayError):
    """Template placeholders and supplied variables do not match 1:1."""

    code = "missing_variable"
    status_code = 400

    def __init__(self, missing: list[str], unexpected: list[str]) -> None:
        parts = []
        if missing:
            parts.append(f"missing {', '.join(missing)}")
        if unexpected:
            parts.append(f"unexpected {', '.join(unexpected)}")
        super().__init__("template variables mismatch: " + "; ".join(parts))
        self.missing = missing
        self.unexpected = unexpected

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["missing"] = self.missing
        body["unexpected"] = self.unexpected
        return body


class ProviderRejected(GatewayError):
    """Provider answered with a non-2xx response. Never retried."""

    code = "provider_rejected"
    status_code = 502
    action = "retry"

    def __init__(
        self,
        http_status: int,
        message: str,
        provider_code: int | None = None,
        provider_subcode: int | None = None,
        trace_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.http_status = http_status
        self.provider_code = provider_code
        self.provider_subcode = provider_subcode
        self.trace_id = trace_id

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["http_status"] = self.http_status
        body["provider_code"] = self.provider_code
        if self.provider_subcode is not None:
            body["provider_subcode"] = self.provider_subcode
        if self.trace_id:
            body["trace_id"] = self.trace_id
        return body


class TransportError(GatewayError):
    """Network failure or timeout talking to the provider."""

    code = "transport"
    status_code = 503
    action = "retry"


class DeadlineExceeded(GatewayError):
    """Caller deadline passed; nothing was committed."""

    code = "deadline_exceeded"
    status_code = 504
    action = "retry"


class MessageNotFound(GatewayError):
    code = "message_not_found"
    status_code = 404

    def __init__(self, provider_message_id: str) -> None:
        super().__init__("message not found")
        self.provider_message_id = provider_message_id

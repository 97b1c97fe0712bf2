"""Outbound dispatcher - free-form and template sends.

Sequence for every send:
1. Load contact (+ window / template) in a short read transaction
2. Resolve credentials through the account resolver (cache)
3. Validate locally (window, approval, variables) - no network yet
4. Provider call, outside any transaction or lock
5. Insert the Message row only after the provider accepted it

A failure at any step leaves no Message row. Sends are not retried on
provider rejection: a message send is not idempotent on the provider side.
"""

from __future__ import annotations

import time
from typing import Any, Mapping

from wagate.domain.accounts import AccountResolver
from wagate.domain.models import Account, Contact, MessageRecord
from wagate.domain.session_window import load_window_state
from wagate.domain.templates import (
    build_components,
    normalize_variables,
    render_template,
    validate_variables,
)
from wagate.errors import (
    AccountInactive,
    ContactNotFound,
    DeadlineExceeded,
    TemplateNotApproved,
    TemplateNotFound,
    WindowClosed,
)
from wagate.infra.db import txn
from wagate.infra.repositories import contacts_repository, messages_repository, templates_repository
from wagate.infra.time import utc_now
from wagate.observability.logging import get_logger
from wagate.observability.redaction import safe_log_context
from wagate.whatsapp.meta_sender import build_template_payload, build_text_payload, send_message

logger = get_logger(__name__)


def deadline_from_timeout(timeout_seconds: float | None) -> float | None:
    """Convert a caller timeout into a time.monotonic() deadline."""
    if timeout_seconds is None:
        return None
    return time.monotonic() + timeout_seconds


def _check_deadline(deadline: float | None, log_ctx: dict[str, str]) -> None:
    if deadline is not None and time.monotonic() >= deadline:
        # The provider may still deliver; its status callback will be NotFound
        logger.warning(
            "send completed after caller deadline, not recorded",
            extra={"extra_fields": log_ctx},
        )
        raise DeadlineExceeded("caller deadline passed; message not recorded")


def _resolve_sender(resolver: AccountResolver, contact: Contact, organization_id: str) -> Account:
    account = resolver.resolve(contact.phone_id)
    if account.organization_id != organization_id:
        raise ContactNotFound(contact.id)
    if not account.is_active:
        raise AccountInactive(account.id, account.status)
    return account


def _load_contact(cur, contact_id: str, organization_id: str) -> Contact:
    contact = contacts_repository.get_contact(cur, contact_id)
    if contact is None or contact.organization_id != organization_id:
        raise ContactNotFound(contact_id)
    return contact


def _record_outgoing(
    *,
    account: Account,
    contact: Contact,
    message_type: str,
    content: str,
    payload: dict[str, Any],
    provider_message_id: str,
) -> MessageRecord:
    with txn() as cur:
        record = messages_repository.insert_message(
            cur,
            account_id=account.id,
            contact_id=contact.id,
            direction="outgoing",
            message_type=message_type,
            content=content,
            payload=payload,
            status="sent",
            provider_message_id=provider_message_id,
            provider_timestamp=utc_now(),
        )
    if record is None:
        # Provider ids are unique per message; a clash means a corrupt store
        raise RuntimeError("provider message id already recorded")
    return record


def send_text(
    resolver: AccountResolver,
    *,
    organization_id: str,
    contact_id: str,
    body: str,
    preview_url: bool = False,
    deadline: float | None = None,
    correlation_id: str | None = None,
) -> MessageRecord:
    """Send a free-form text message.

    Raises:
        ContactNotFound: Unknown contact or other organization's contact.
        AccountInactive: Sending account not yet registered.
        WindowClosed: Last inbound customer message is 24h old or older.
        ProviderRejected: Provider answered non-2xx.
        TransportError: Provider unreachable after one retry.
        DeadlineExceeded: Deadline passed; nothing recorded.
    """
    log_ctx = safe_log_context(
        correlationId=correlation_id or "",
        contact_id=contact_id,
        message_type="text",
        text_len=len(body),
    )

    with txn() as cur:
        contact = _load_contact(cur, contact_id, organization_id)
        window = load_window_state(cur, contact.id, utc_now())

    account = _resolve_sender(resolver, contact, organization_id)

    if not window.is_open:
        logger.info("free-form send refused, window closed", extra={"extra_fields": log_ctx})
        raise WindowClosed(contact.id, window.last_inbound_at)

    payload = build_text_payload(contact.phone_number, body, preview_url=preview_url)
    provider_message_id = send_message(
        account=account,
        payload=payload,
        deadline=deadline,
        correlation_id=correlation_id,
    )
    _check_deadline(deadline, log_ctx)

    record = _record_outgoing(
        account=account,
        contact=contact,
        message_type="text",
        content=body,
        payload=payload["text"],
        provider_message_id=provider_message_id,
    )
    logger.info(
        "text message recorded",
        extra={"extra_fields": {**log_ctx, "message_id": str(record.id)}},
    )
    return record


def send_template(
    resolver: AccountResolver,
    *,
    organization_id: str,
    contact_id: str,
    template_name: str,
    variables: Mapping[Any, Any] | None = None,
    language: str | None = None,
    deadline: float | None = None,
    correlation_id: str | None = None,
) -> MessageRecord:
    """Send an approved template. Allowed whether or not the window is open.

    Raises:
        ContactNotFound: Unknown contact or other organization's contact.
        AccountInactive: Sending account not yet registered.
        TemplateNotFound: Template not in the account's cache.
        TemplateNotApproved: Cached status is not APPROVED.
        MissingVariable: Placeholders and variables differ.
        ProviderRejected / TransportError / DeadlineExceeded: As send_text.
    """
    values = normalize_variables(variables)
    log_ctx = safe_log_context(
        correlationId=correlation_id or "",
        contact_id=contact_id,
        message_type="template",
        template_name=template_name,
        variable_count=len(values),
    )

    with txn() as cur:
        contact = _load_contact(cur, contact_id, organization_id)
        template = templates_repository.get_template(
            cur, account_id=contact.account_id, name=template_name, language=language
        )

    if template is None:
        raise TemplateNotFound(template_name)
    if not template.is_approved:
        raise TemplateNotApproved(template_name, template.status)
    validate_variables(template, values)

    account = _resolve_sender(resolver, contact, organization_id)

    components = build_components(template, values)
    payload = build_template_payload(contact.phone_number, template.name, template.language, components)
    provider_message_id = send_message(
        account=account,
        payload=payload,
        deadline=deadline,
        correlation_id=correlation_id,
    )
    _check_deadline(deadline, log_ctx)

    record = _record_outgoing(
        account=account,
        contact=contact,
        message_type="template",
        content=render_template(template, values),
        payload={
            "name": template.name,
            "language": template.language,
            "variables": values,
        },
        provider_message_id=provider_message_id,
    )
    logger.info(
        "template message recorded",
        extra={"extra_fields": {**log_ctx, "message_id": str(record.id)}},
    )
    return record

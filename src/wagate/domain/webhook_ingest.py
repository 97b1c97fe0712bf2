"""Apply decoded webhook events to the store.

Each event commits in its own short transaction, so one bad sub-entry
cannot roll back the others in the same delivery. Redeliveries are
absorbed by the unique provider_message_id (inbound) and by the status
rank check (callbacks).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from psycopg2.extensions import cursor as PgCursor

from wagate.domain.models import Account
from wagate.domain.status import apply_status
from wagate.errors import GatewayError, MessageNotFound
from wagate.infra.db import txn
from wagate.infra.repositories import contacts_repository, messages_repository
from wagate.observability.logging import get_logger
from wagate.observability.redaction import safe_log_context
from wagate.whatsapp import meta_sender
from wagate.whatsapp.models import Event, InboundMessage, StatusUpdate, Unrecognized

logger = get_logger(__name__)


@dataclass
class IngestResult:
    """Per-delivery counters (logged, never returned to the provider)."""

    received: int = 0
    duplicates: int = 0
    statuses_applied: int = 0
    statuses_ignored: int = 0
    unknown_messages: int = 0
    skipped: int = 0
    failed: int = 0

    def as_log_fields(self) -> dict[str, int]:
        return dict(self.__dict__)


def ingest_inbound(cur: PgCursor, account: Account, event: InboundMessage) -> bool:
    """Store an inbound message, creating the contact on first contact.

    Returns:
        True if stored, False if the provider id was already recorded.
    """
    contact_id, _ = contacts_repository.upsert_contact(
        cur,
        account_id=account.id,
        phone_number=event.contact_phone,
        profile_name=event.profile_name,
    )
    record = messages_repository.insert_message(
        cur,
        account_id=account.id,
        contact_id=contact_id,
        direction="incoming",
        message_type=event.type,
        content=event.content,
        payload=event.payload,
        status="received",
        provider_message_id=event.provider_message_id,
        provider_timestamp=event.provider_timestamp,
    )
    return record is not None


def _send_read_receipt(account: Account, event: InboundMessage, correlation_id: str) -> None:
    try:
        meta_sender.mark_as_read(
            account=account,
            provider_message_id=event.provider_message_id,
            correlation_id=correlation_id,
        )
    except GatewayError as e:
        logger.warning(
            "read receipt failed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    account_id=account.id,
                    error=e.code,
                )
            },
        )


def _apply_inbound(account: Account, event: InboundMessage, result: IngestResult, correlation_id: str) -> None:
    with txn() as cur:
        stored = ingest_inbound(cur, account, event)

    if not stored:
        result.duplicates += 1
        return

    result.received += 1
    if account.auto_read_receipt:
        _send_read_receipt(account, event, correlation_id)


def _apply_status(account: Account, event: StatusUpdate, result: IngestResult, correlation_id: str) -> None:
    try:
        with txn() as cur:
            advanced = apply_status(
                cur,
                account_id=account.id,
                provider_message_id=event.provider_message_id,
                status=event.status,
                timestamp=event.timestamp,
                error_code=event.error_code,
                error_message=event.error_message,
            )
    except MessageNotFound:
        # Sent outside the gateway, or its send hit the caller deadline
        result.unknown_messages += 1
        logger.info(
            "status for unknown message ignored",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    account_id=account.id,
                    status=event.status,
                )
            },
        )
        return

    if advanced:
        result.statuses_applied += 1
    else:
        result.statuses_ignored += 1


def process_events(
    events: list[Event],
    accounts_by_phone: Mapping[str, Account],
    correlation_id: str = "",
) -> IngestResult:
    """Apply every event of a verified delivery.

    Args:
        events: Output of parse_events.
        accounts_by_phone: Accounts whose secret verified the delivery.
        correlation_id: For logs.

    Returns:
        Counters for the delivery. Failures are logged and counted.
    """
    result = IngestResult()

    for index, event in enumerate(events):
        if isinstance(event, Unrecognized):
            result.skipped += 1
            logger.info(
                "webhook sub-entry skipped",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=correlation_id,
                        index=index,
                        reason=event.reason,
                    )
                },
            )
            continue

        account = accounts_by_phone.get(event.phone_number_id)
        if account is None:
            result.skipped += 1
            continue

        try:
            if isinstance(event, InboundMessage):
                _apply_inbound(account, event, result, correlation_id)
            else:
                _apply_status(account, event, result, correlation_id)
        except Exception as e:
            result.failed += 1
            logger.error(
                "webhook event failed",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=correlation_id,
                        account_id=account.id,
                        index=index,
                        event_type=type(event).__name__,
                        error_type=type(e).__name__,
                    )
                },
            )

    logger.info(
        "webhook delivery processed",
        extra={"extra_fields": safe_log_context(correlationId=correlation_id, **result.as_log_fields())},
    )
    return result

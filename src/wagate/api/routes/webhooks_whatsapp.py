"""WhatsApp webhook routes - Meta Cloud API integration.

One endpoint serves every account. The phone_number_id of each change
selects the account whose app secret must verify the raw body.

Responses:
- 200 for any parseable, verified batch (even with failed entries), so the
  provider does not start a retry storm
- 403 unauthenticated when no account in the batch verifies the signature
- 500 only when the body is not a JSON object
"""

import hmac
import json
from typing import Any

from fastapi import APIRouter, Depends, Header, Query, Request, Response
from fastapi.concurrency import run_in_threadpool

from wagate.api.deps import get_account_resolver
from wagate.domain.accounts import AccountResolver
from wagate.domain.models import Account
from wagate.domain.webhook_ingest import process_events
from wagate.errors import AccountNotFound, Unauthenticated
from wagate.infra.db import txn
from wagate.infra.repositories.accounts_repository import verify_token_exists
from wagate.infra.settings import get_settings
from wagate.observability.correlation import get_correlation_id
from wagate.observability.logging import get_logger
from wagate.observability.redaction import safe_log_context
from wagate.whatsapp.meta_adapter import get_phone_number_ids, parse_events, verify_signature

router = APIRouter(prefix="/webhook", tags=["webhooks"])

logger = get_logger(__name__)


def _is_known_verify_token(token: str) -> bool:
    expected = get_settings().webhook_verify_token
    if expected and hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        return True
    with txn() as cur:
        return verify_token_exists(cur, token)


def _resolve_accounts(
    resolver: AccountResolver,
    phone_ids: list[str],
    correlation_id: str,
) -> dict[str, Account]:
    """Resolve every phone id of the batch; unmapped ones are logged and skipped."""
    accounts: dict[str, Account] = {}
    for phone_id in phone_ids:
        try:
            accounts[phone_id] = resolver.resolve(phone_id)
        except AccountNotFound:
            logger.warning(
                "webhook for unknown phone number",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=correlation_id,
                        phone_id_suffix=phone_id[-4:],
                    )
                },
            )
    return accounts


def _verified_accounts(
    body_bytes: bytes,
    signature: str | None,
    accounts: dict[str, Account],
) -> dict[str, Account]:
    """Accounts whose app secret (or the fallback secret) matches the signature."""
    fallback_secret = get_settings().app_secret
    verified: dict[str, Account] = {}
    for phone_id, account in accounts.items():
        secret = account.app_secret or fallback_secret
        if secret and verify_signature(body_bytes, signature, secret):
            verified[phone_id] = account
    return verified


@router.get("")
async def webhook_verify(
    hub_mode: str = Query(None, alias="hub.mode"),
    hub_verify_token: str = Query(None, alias="hub.verify_token"),
    hub_challenge: str = Query(None, alias="hub.challenge"),
) -> Response:
    """Subscription handshake.

    The provider sends a GET during webhook setup. hub.challenge is echoed
    if hub.verify_token matches an account's token or the configured
    fallback token.

    Returns:
        200 with hub.challenge if valid.
        403 if invalid.
    """
    if hub_mode == "subscribe" and hub_verify_token:
        if await run_in_threadpool(_is_known_verify_token, hub_verify_token):
            logger.info(
                "webhook verification successful",
                extra={"extra_fields": safe_log_context(hub_mode=hub_mode)},
            )
            return Response(status_code=200, content=hub_challenge or "")

    logger.warning(
        "webhook verification failed",
        extra={
            "extra_fields": safe_log_context(
                hub_mode=hub_mode or "missing",
                token_present=bool(hub_verify_token),
            )
        },
    )
    return Response(status_code=403, content="verification failed")


@router.post("")
async def webhook_receive(
    request: Request,
    x_hub_signature_256: str | None = Header(None, alias="X-Hub-Signature-256"),
    resolver: AccountResolver = Depends(get_account_resolver),
) -> Response:
    """Receive a webhook delivery.

    Args:
        request: FastAPI request object (raw body is needed for the HMAC).
        x_hub_signature_256: sha256=<hex> signature from the provider.
        resolver: Account resolver from app state.
    """
    correlation_id = get_correlation_id()

    # 1. Raw body: the signature covers the exact bytes
    body_bytes = await request.body()

    # 2. Decode just enough to find which accounts to verify against
    try:
        payload: Any = json.loads(body_bytes)
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        logger.error(
            "webhook body is not a json object",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    body_len=len(body_bytes),
                )
            },
        )
        return Response(status_code=500, content="invalid payload")

    phone_ids = get_phone_number_ids(payload)

    # 3. Resolve + verify per account
    accounts = await run_in_threadpool(_resolve_accounts, resolver, phone_ids, correlation_id)
    verified = _verified_accounts(body_bytes, x_hub_signature_256, accounts)

    if not verified:
        logger.warning(
            "webhook signature verification failed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    phone_id_count=len(phone_ids),
                    resolved_count=len(accounts),
                    signature_present=bool(x_hub_signature_256),
                )
            },
        )
        raise Unauthenticated("webhook signature verification failed")

    if len(verified) < len(phone_ids):
        logger.warning(
            "webhook batch partially verified",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    phone_id_count=len(phone_ids),
                    verified_count=len(verified),
                )
            },
        )

    # 4. Decode only the verified changes, then apply them
    events = parse_events(payload, phone_ids=verified.keys())
    await run_in_threadpool(process_events, events, verified, correlation_id)

    return Response(status_code=200, content="ok")

"""Outbound calls to the Meta Cloud (Graph) API.

Security: NEVER log recipient phones, message text or credentials. Only log
hashes, lengths and provider error codes.

Retry policy: provider answers (any non-2xx) are final and surface as
ProviderRejected. Only transport failures, where no answer was received,
are retried, once, with the identical payload.
"""

from __future__ import annotations

import hashlib
import http.client
import json
import time
import urllib.error
import urllib.parse
import urllib.request
from typing import Any

from wagate.domain.models import Account
from wagate.errors import DeadlineExceeded, ProviderRejected, TransportError
from wagate.infra.settings import get_settings
from wagate.observability.logging import get_logger
from wagate.observability.redaction import safe_log_context

logger = get_logger(__name__)

# Retry config (transport failures only)
MAX_TRANSPORT_RETRIES = 1
RETRY_DELAY = 0.2

PHONE_FIELDS = (
    "display_phone_number",
    "verified_name",
    "code_verification_status",
    "account_mode",
    "quality_rating",
    "messaging_limit_tier",
)

TEMPLATE_FIELDS = "name,language,status,category,components"


def _hash_identifier(value: str) -> str:
    """Create non-reversible hash for logging. Returns first 12 chars of sha256."""
    return hashlib.sha256(value.encode()).hexdigest()[:12]


def _graph_url(account: Account, *path: str, query: dict[str, str] | None = None) -> str:
    settings = get_settings()
    url = "/".join([settings.graph_base_url, account.api_version or settings.default_api_version, *path])
    if query:
        url += "?" + urllib.parse.urlencode(query)
    return url


def _headers(account: Account) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {account.access_token}",
    }


def _do_request(
    url: str,
    *,
    method: str,
    headers: dict[str, str],
    data: bytes | None,
    timeout: float,
) -> dict[str, Any]:
    """Execute one HTTP request. Raises urllib errors as-is."""
    req = urllib.request.Request(url, data=data, headers=headers, method=method)
    with urllib.request.urlopen(req, timeout=timeout) as resp:
        raw = resp.read()
    if not raw:
        return {}
    return json.loads(raw.decode("utf-8"))


def _rejection_from_http_error(e: urllib.error.HTTPError) -> ProviderRejected:
    """Build ProviderRejected from a Graph error body.

    Graph errors look like:
    {"error": {"message": "...", "type": "OAuthException", "code": 190,
               "error_subcode": 463, "fbtrace_id": "..."}}
    """
    message = f"provider returned HTTP {e.code}"
    code: int | None = None
    subcode: int | None = None
    trace_id: str | None = None
    try:
        body = json.loads(e.read().decode("utf-8") or "{}")
    except (ValueError, OSError):
        body = {}

    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        if isinstance(error.get("message"), str):
            message = error["message"]
        error_data = error.get("error_data")
        if isinstance(error_data, dict) and isinstance(error_data.get("details"), str):
            message = f"{message}: {error_data['details']}"
        if isinstance(error.get("code"), int):
            code = error["code"]
        if isinstance(error.get("error_subcode"), int):
            subcode = error["error_subcode"]
        if isinstance(error.get("fbtrace_id"), str):
            trace_id = error["fbtrace_id"]

    return ProviderRejected(
        http_status=e.code,
        message=message,
        provider_code=code,
        provider_subcode=subcode,
        trace_id=trace_id,
    )


def _attempt_timeout(deadline: float | None) -> float:
    """Per-attempt timeout: configured bound, shortened by the caller deadline."""
    timeout = get_settings().http_timeout
    if deadline is None:
        return timeout
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise DeadlineExceeded("deadline passed before the provider call completed")
    return min(timeout, remaining)


def _call(
    url: str,
    *,
    method: str,
    headers: dict[str, str],
    payload: dict[str, Any] | None,
    deadline: float | None,
    log_ctx: dict[str, str],
) -> dict[str, Any]:
    """Call the provider with the transport retry policy.

    Raises:
        ProviderRejected: On any non-2xx answer (never retried).
        TransportError: On network failure/timeout after the retry.
        DeadlineExceeded: If the caller deadline leaves no time to (re)try.
    """
    data = json.dumps(payload).encode("utf-8") if payload is not None else None

    for attempt in range(MAX_TRANSPORT_RETRIES + 1):
        timeout = _attempt_timeout(deadline)
        try:
            return _do_request(url, method=method, headers=headers, data=data, timeout=timeout)
        except urllib.error.HTTPError as e:
            rejection = _rejection_from_http_error(e)
            logger.warning(
                "provider rejected request",
                extra={
                    "extra_fields": safe_log_context(
                        **log_ctx,
                        attempt=attempt,
                        http_status=rejection.http_status,
                        provider_code=rejection.provider_code,
                        provider_subcode=rejection.provider_subcode,
                    )
                },
            )
            raise rejection from None
        except ValueError:
            # 2xx with a body that is not JSON
            logger.error(
                "provider returned unreadable response",
                extra={"extra_fields": safe_log_context(**log_ctx, attempt=attempt)},
            )
            raise ProviderRejected(http_status=200, message="unreadable provider response") from None
        except (urllib.error.URLError, TimeoutError, OSError, http.client.HTTPException) as e:
            if attempt < MAX_TRANSPORT_RETRIES:
                logger.warning(
                    "provider call failed, retrying",
                    extra={
                        "extra_fields": safe_log_context(
                            **log_ctx, attempt=attempt, error_type=type(e).__name__
                        )
                    },
                )
                time.sleep(RETRY_DELAY)
                continue

            logger.error(
                "provider call failed",
                extra={
                    "extra_fields": safe_log_context(
                        **log_ctx, attempt=attempt, error_type=type(e).__name__
                    )
                },
            )
            raise TransportError(f"provider unreachable: {type(e).__name__}") from e

    # Loop always returns or raises
    raise TransportError("provider unreachable")


def build_text_payload(to_phone: str, body: str, *, preview_url: bool = False) -> dict[str, Any]:
    """Free-form text message body."""
    return {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": to_phone,
        "type": "text",
        "text": {"body": body, "preview_url": preview_url},
    }


def build_template_payload(
    to_phone: str,
    template_name: str,
    language: str,
    components: list[dict[str, Any]],
) -> dict[str, Any]:
    """Template message body. ``components`` may be empty (no placeholders)."""
    template: dict[str, Any] = {"name": template_name, "language": {"code": language}}
    if components:
        template["components"] = components
    return {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": to_phone,
        "type": "template",
        "template": template,
    }


def send_message(
    *,
    account: Account,
    payload: dict[str, Any],
    deadline: float | None = None,
    correlation_id: str | None = None,
) -> str:
    """Send a message payload from the account's phone number.

    Args:
        account: Sending account (credentials already resolved).
        payload: Body from build_text_payload/build_template_payload.
        deadline: Optional time.monotonic() deadline.
        correlation_id: Optional correlation ID for tracing.

    Returns:
        Provider message id (wamid...).
    """
    url = _graph_url(account, account.phone_id, "messages")

    # Safe logging context - NEVER include recipient or text
    log_ctx = safe_log_context(
        correlationId=correlation_id or "",
        account_id=account.id,
        to_hash=_hash_identifier(str(payload.get("to", ""))),
        message_type=payload.get("type", ""),
        provider="meta",
    )

    logger.info("sending outbound message", extra={"extra_fields": log_ctx})

    result = _call(
        url,
        method="POST",
        headers=_headers(account),
        payload=payload,
        deadline=deadline,
        log_ctx=log_ctx,
    )

    messages = result.get("messages") if isinstance(result, dict) else None
    if (
        not isinstance(messages, list)
        or not messages
        or not isinstance(messages[0], dict)
        or not isinstance(messages[0].get("id"), str)
    ):
        logger.error(
            "provider accepted message without an id",
            extra={"extra_fields": log_ctx},
        )
        raise ProviderRejected(http_status=200, message="provider response has no message id")

    provider_message_id = messages[0]["id"]
    logger.info(
        "outbound message accepted",
        extra={
            "extra_fields": {
                **log_ctx,
                "provider_message_id_prefix": provider_message_id[:16],
            }
        },
    )
    return provider_message_id


def mark_as_read(
    *,
    account: Account,
    provider_message_id: str,
    correlation_id: str | None = None,
) -> None:
    """Send a read receipt for an inbound message."""
    url = _graph_url(account, account.phone_id, "messages")
    payload = {
        "messaging_product": "whatsapp",
        "status": "read",
        "message_id": provider_message_id,
    }
    log_ctx = safe_log_context(
        correlationId=correlation_id or "",
        account_id=account.id,
        operation="mark_as_read",
    )
    _call(url, method="POST", headers=_headers(account), payload=payload, deadline=None, log_ctx=log_ctx)


def fetch_templates(*, account: Account, correlation_id: str | None = None) -> list[dict[str, Any]]:
    """List all message templates of the account's WABA, following paging."""
    url: str | None = _graph_url(
        account,
        account.business_id,
        "message_templates",
        query={"fields": TEMPLATE_FIELDS, "limit": "100"},
    )
    log_ctx = safe_log_context(
        correlationId=correlation_id or "",
        account_id=account.id,
        operation="fetch_templates",
    )

    templates: list[dict[str, Any]] = []
    while url:
        page = _call(url, method="GET", headers=_headers(account), payload=None, deadline=None, log_ctx=log_ctx)
        data = page.get("data", [])
        if isinstance(data, list):
            templates.extend(item for item in data if isinstance(item, dict))
        paging = page.get("paging")
        next_url = paging.get("next") if isinstance(paging, dict) else None
        url = next_url if isinstance(next_url, str) and next_url else None

    logger.info(
        "templates fetched",
        extra={"extra_fields": safe_log_context(**log_ctx, count=len(templates))},
    )
    return templates


def check_connection(*, account: Account, correlation_id: str | None = None) -> dict[str, Any]:
    """Validate the account's credentials against its phone number.

    Never raises for provider/transport failures; returns
    {"success": False, "error": ...} instead.
    """
    url = _graph_url(account, account.phone_id, query={"fields": ",".join(PHONE_FIELDS)})
    log_ctx = safe_log_context(
        correlationId=correlation_id or "",
        account_id=account.id,
        operation="check_connection",
    )
    try:
        result = _call(url, method="GET", headers=_headers(account), payload=None, deadline=None, log_ctx=log_ctx)
    except ProviderRejected as e:
        return {
            "success": False,
            "error": e.message,
            "provider_code": e.provider_code,
        }
    except TransportError as e:
        return {"success": False, "error": e.message}

    is_test_number = result.get("account_mode") == "SANDBOX"
    response: dict[str, Any] = {"success": True, "is_test_number": is_test_number}
    for key in PHONE_FIELDS:
        response[key] = result.get(key)

    if is_test_number:
        response["warning"] = "This is a test/sandbox number. Not suitable for production use."
    elif result.get("code_verification_status") in ("NOT_VERIFIED", "EXPIRED"):
        response["warning"] = "Phone number is not verified; register it before sending."

    return response

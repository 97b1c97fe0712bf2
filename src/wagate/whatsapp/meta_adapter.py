"""Meta Cloud API adapter - verify and decode webhook deliveries.

Meta payload structure:
{
  "object": "whatsapp_business_account",
  "entry": [{
    "id": "WABA_ID",
    "changes": [{
      "field": "messages",
      "value": {
        "metadata": {"phone_number_id": "..."},
        "contacts": [{"wa_id": "PHONE", "profile": {"name": "..."}}],
        "messages": [{"from": "PHONE", "id": "wamid...", "timestamp": "1704067200",
                      "type": "text", "text": {"body": "..."}}],
        "statuses": [{"id": "wamid...", "status": "delivered", "timestamp": "..."}]
      }
    }]
  }]
}

One delivery may batch several entries, phone numbers and contacts. Every
sub-entry is decoded on its own; a malformed one becomes ``Unrecognized``
instead of failing the batch.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Any, Collection, Iterator

from wagate.infra.time import from_unix_timestamp

from .models import Event, InboundMessage, StatusUpdate, Unrecognized

SIGNATURE_PREFIX = "sha256="

KNOWN_STATUSES = frozenset({"sent", "delivered", "read", "failed"})

# Media-like types: content is the caption, the object itself goes to payload
_MEDIA_TYPES = frozenset({"image", "video", "document", "audio", "sticker"})


def verify_signature(payload_bytes: bytes, signature_header: str | None, app_secret: str) -> bool:
    """Check a Meta webhook signature (HMAC-SHA256 of the raw body).

    Args:
        payload_bytes: Raw, unparsed request body.
        signature_header: X-Hub-Signature-256 header value (sha256=<hex>).
        app_secret: Meta App Secret of the account being verified.

    Returns:
        True only if the header is well formed and matches.
    """
    if not signature_header or not app_secret:
        return False

    if not signature_header.startswith(SIGNATURE_PREFIX):
        return False

    expected_sig = signature_header[len(SIGNATURE_PREFIX):].strip().lower()
    # A hex digest is ASCII; anything else is forged or mangled
    try:
        expected = expected_sig.encode("ascii")
    except UnicodeEncodeError:
        return False

    computed_sig = hmac.new(
        key=app_secret.encode("utf-8"),
        msg=payload_bytes,
        digestmod=hashlib.sha256,
    ).hexdigest()

    return hmac.compare_digest(computed_sig.encode("ascii"), expected)


def _iter_changes(payload: dict[str, Any]) -> Iterator[dict[str, Any] | None]:
    """Yield every change object; None for entries/changes of the wrong shape."""
    entries = payload.get("entry")
    if not isinstance(entries, list):
        return
    for entry in entries:
        if not isinstance(entry, dict) or not isinstance(entry.get("changes"), list):
            yield None
            continue
        for change in entry["changes"]:
            yield change if isinstance(change, dict) else None


def _change_phone_number_id(change: dict[str, Any]) -> str | None:
    value = change.get("value")
    if not isinstance(value, dict):
        return None
    metadata = value.get("metadata")
    if not isinstance(metadata, dict):
        return None
    phone_number_id = metadata.get("phone_number_id")
    if isinstance(phone_number_id, (str, int)) and not isinstance(phone_number_id, bool):
        return str(phone_number_id) or None
    return None


def get_phone_number_ids(payload: dict[str, Any]) -> list[str]:
    """Distinct phone_number_ids of a delivery, in order of appearance.

    Read before signature verification to pick which secrets to try.
    """
    seen: list[str] = []
    for change in _iter_changes(payload):
        if change is None:
            continue
        phone_number_id = _change_phone_number_id(change)
        if phone_number_id and phone_number_id not in seen:
            seen.append(phone_number_id)
    return seen


def _extract_content(message_type: str, message: dict[str, Any]) -> tuple[str | None, dict[str, Any]]:
    """Split a provider message into (display text, type-specific payload)."""
    body = message.get(message_type)
    payload = body if isinstance(body, dict) else {}

    if message_type == "text":
        text = payload.get("body")
        return (text if isinstance(text, str) else None), payload
    if message_type in _MEDIA_TYPES:
        caption = payload.get("caption")
        return (caption if isinstance(caption, str) else None), payload
    if message_type == "button":
        text = payload.get("text")
        return (text if isinstance(text, str) else None), payload
    if message_type == "interactive":
        for reply_key in ("button_reply", "list_reply"):
            reply = payload.get(reply_key)
            if isinstance(reply, dict) and isinstance(reply.get("title"), str):
                return reply["title"], payload
        return None, payload
    if message_type == "reaction":
        emoji = payload.get("emoji")
        return (emoji if isinstance(emoji, str) else None), payload
    if message_type == "location":
        label = payload.get("name") or payload.get("address")
        return (label if isinstance(label, str) else None), payload
    if message_type == "contacts" and isinstance(body, list):
        return None, {"contacts": body}
    return None, payload


def _decode_message(
    phone_number_id: str,
    message: Any,
    profile_names: dict[str, str],
) -> InboundMessage | Unrecognized:
    if not isinstance(message, dict):
        return Unrecognized(phone_number_id, "message is not an object")

    message_id = message.get("id")
    if not isinstance(message_id, str) or not message_id:
        return Unrecognized(phone_number_id, "missing or invalid message id")

    sender = message.get("from")
    if not isinstance(sender, str) or not sender:
        return Unrecognized(phone_number_id, "missing sender")

    message_type = message.get("type")
    if not isinstance(message_type, str) or not message_type:
        return Unrecognized(phone_number_id, "missing message type")

    try:
        provider_timestamp = from_unix_timestamp(message.get("timestamp"))
    except (TypeError, ValueError, OverflowError, OSError):
        return Unrecognized(phone_number_id, "invalid message timestamp")

    content, payload = _extract_content(message_type, message)

    return InboundMessage(
        phone_number_id=phone_number_id,
        contact_phone=sender,
        provider_message_id=message_id,
        provider_timestamp=provider_timestamp,
        type=message_type,
        content=content,
        payload=payload,
        profile_name=profile_names.get(sender),
    )


def _decode_status(phone_number_id: str, status: Any) -> StatusUpdate | Unrecognized:
    if not isinstance(status, dict):
        return Unrecognized(phone_number_id, "status is not an object")

    message_id = status.get("id")
    if not isinstance(message_id, str) or not message_id:
        return Unrecognized(phone_number_id, "missing or invalid status message id")

    value = status.get("status")
    if not isinstance(value, str) or value not in KNOWN_STATUSES:
        return Unrecognized(phone_number_id, f"unsupported status {str(value)[:32]!r}")

    try:
        timestamp = from_unix_timestamp(status.get("timestamp"))
    except (TypeError, ValueError, OverflowError, OSError):
        return Unrecognized(phone_number_id, "invalid status timestamp")

    error_code: int | None = None
    error_message: str | None = None
    errors = status.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        first = errors[0]
        code = first.get("code")
        if isinstance(code, int) and not isinstance(code, bool):
            error_code = code
        message = first.get("message") or first.get("title")
        if isinstance(message, str):
            error_message = message

    return StatusUpdate(
        phone_number_id=phone_number_id,
        provider_message_id=message_id,
        status=value,
        timestamp=timestamp,
        error_code=error_code,
        error_message=error_message,
    )


def _profile_names(value: dict[str, Any]) -> dict[str, str]:
    names: dict[str, str] = {}
    contacts = value.get("contacts")
    if not isinstance(contacts, list):
        return names
    for contact in contacts:
        if not isinstance(contact, dict):
            continue
        wa_id = contact.get("wa_id")
        profile = contact.get("profile")
        if isinstance(wa_id, str) and isinstance(profile, dict):
            name = profile.get("name")
            if isinstance(name, str) and name:
                names[wa_id] = name
    return names


def parse_events(
    payload: dict[str, Any],
    phone_ids: Collection[str] | None = None,
) -> list[Event]:
    """Decode a delivery into normalized events.

    Args:
        payload: Parsed webhook JSON.
        phone_ids: If given, changes for any other phone_number_id are not
            decoded (their account did not verify the signature).

    Returns:
        Events in payload order. Malformed sub-entries are ``Unrecognized``.
    """
    events: list[Event] = []

    for change in _iter_changes(payload):
        if change is None:
            events.append(Unrecognized(None, "entry or change is not an object"))
            continue

        field_name = change.get("field", "messages")
        if field_name != "messages":
            events.append(Unrecognized(None, f"unsupported field {str(field_name)[:64]!r}"))
            continue

        phone_number_id = _change_phone_number_id(change)
        if phone_number_id is None:
            events.append(Unrecognized(None, "missing phone_number_id"))
            continue

        if phone_ids is not None and phone_number_id not in phone_ids:
            events.append(Unrecognized(phone_number_id, "account not verified for this delivery"))
            continue

        value = change["value"]
        profile_names = _profile_names(value)

        messages = value.get("messages", [])
        if isinstance(messages, list):
            for message in messages:
                events.append(_decode_message(phone_number_id, message, profile_names))
        else:
            events.append(Unrecognized(phone_number_id, "messages is not a list"))

        statuses = value.get("statuses", [])
        if isinstance(statuses, list):
            for status in statuses:
                events.append(_decode_status(phone_number_id, status))
        else:
            events.append(Unrecognized(phone_number_id, "statuses is not a list"))

    return events

"""Send APIs and per-contact read endpoints (internal role).

Gateway errors propagate to the app's GatewayError handler, which maps
them to their status code and {"error", "message", "action"} body.
"""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends, Path, Query
from pydantic import BaseModel, Field

from wagate.api.deps import get_account_resolver, get_organization_id
from wagate.domain import dispatcher
from wagate.domain.accounts import AccountResolver
from wagate.domain.session_window import load_window_state
from wagate.errors import ContactNotFound
from wagate.infra.db import txn
from wagate.infra.repositories import contacts_repository, messages_repository
from wagate.infra.time import utc_now
from wagate.observability.correlation import get_correlation_id

router = APIRouter(tags=["messages"])


class SendTextRequest(BaseModel):
    contact_id: uuid.UUID
    body: str = Field(..., min_length=1, max_length=4096)
    preview_url: bool = False
    timeout_seconds: float | None = Field(None, gt=0)


class SendTemplateRequest(BaseModel):
    contact_id: uuid.UUID
    template_name: str = Field(..., min_length=1)
    language: str | None = None
    variables: dict[str, Any] = Field(default_factory=dict)
    timeout_seconds: float | None = Field(None, gt=0)


def _contact_in_org(cur, contact_id: str, organization_id: str):
    contact = contacts_repository.get_contact(cur, contact_id)
    if contact is None or contact.organization_id != organization_id:
        raise ContactNotFound(contact_id)
    return contact


@router.post("/messages")
def send_text(
    req: SendTextRequest,
    organization_id: str = Depends(get_organization_id),
    resolver: AccountResolver = Depends(get_account_resolver),
) -> dict:
    """Send a free-form text. 409 window_closed outside the 24h window."""
    record = dispatcher.send_text(
        resolver,
        organization_id=organization_id,
        contact_id=str(req.contact_id),
        body=req.body,
        preview_url=req.preview_url,
        deadline=dispatcher.deadline_from_timeout(req.timeout_seconds),
        correlation_id=get_correlation_id(),
    )
    return record.to_dict()


@router.post("/messages/template")
def send_template(
    req: SendTemplateRequest,
    organization_id: str = Depends(get_organization_id),
    resolver: AccountResolver = Depends(get_account_resolver),
) -> dict:
    """Send an approved template, with or without an open window."""
    record = dispatcher.send_template(
        resolver,
        organization_id=organization_id,
        contact_id=str(req.contact_id),
        template_name=req.template_name,
        variables=req.variables,
        language=req.language,
        deadline=dispatcher.deadline_from_timeout(req.timeout_seconds),
        correlation_id=get_correlation_id(),
    )
    return record.to_dict()


@router.get("/contacts/{contact_id}/window")
def get_window(
    contact_id: uuid.UUID = Path(..., description="Contact UUID"),
    organization_id: str = Depends(get_organization_id),
) -> dict:
    with txn() as cur:
        contact = _contact_in_org(cur, str(contact_id), organization_id)
        state = load_window_state(cur, contact.id, utc_now())
    return state.to_dict()


@router.get("/contacts/{contact_id}/messages")
def get_history(
    contact_id: uuid.UUID = Path(..., description="Contact UUID"),
    limit: int = Query(100, ge=1, le=500),
    organization_id: str = Depends(get_organization_id),
) -> dict:
    """Stored history, oldest first."""
    with txn() as cur:
        contact = _contact_in_org(cur, str(contact_id), organization_id)
        records = messages_repository.list_messages(cur, contact.id, limit=limit)
    return {"messages": [record.to_dict() for record in records]}

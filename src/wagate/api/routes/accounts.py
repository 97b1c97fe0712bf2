"""WhatsApp account management (internal role).

Tokens and app secrets are accepted on create/update but never returned.
Every mutation invalidates the resolver cache before the response is sent.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Path, Response
from pydantic import BaseModel, Field

from wagate.api.deps import get_account_service, get_organization_id
from wagate.domain.accounts import AccountService
from wagate.domain.templates import sync_templates
from wagate.observability.correlation import get_correlation_id

router = APIRouter(prefix="/accounts", tags=["accounts"])


class AccountCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    phone_id: str = Field(..., min_length=1)
    business_id: str = Field(..., min_length=1)
    access_token: str = Field(..., min_length=1)
    app_id: str | None = None
    app_secret: str | None = None
    webhook_verify_token: str | None = None
    api_version: str | None = None
    is_default_incoming: bool = False
    is_default_outgoing: bool = False
    auto_read_receipt: bool = False


class AccountUpdateRequest(BaseModel):
    """Partial update. Omitted, null and empty fields are left unchanged."""

    name: str | None = None
    phone_id: str | None = None
    business_id: str | None = None
    access_token: str | None = None
    app_id: str | None = None
    app_secret: str | None = None
    webhook_verify_token: str | None = None
    api_version: str | None = None
    is_default_incoming: bool | None = None
    is_default_outgoing: bool | None = None
    auto_read_receipt: bool | None = None
    status: str | None = Field(None, pattern="^(pending_registration|active)$")


@router.get("")
def list_accounts(
    organization_id: str = Depends(get_organization_id),
    service: AccountService = Depends(get_account_service),
) -> dict:
    return {"accounts": [a.to_public() for a in service.list(organization_id)]}


@router.post("", status_code=201)
def create_account(
    req: AccountCreateRequest,
    organization_id: str = Depends(get_organization_id),
    service: AccountService = Depends(get_account_service),
) -> dict:
    account = service.create(organization_id, **req.model_dump())
    return account.to_public()


@router.get("/{account_id}")
def get_account(
    account_id: uuid.UUID = Path(..., description="Account UUID"),
    organization_id: str = Depends(get_organization_id),
    service: AccountService = Depends(get_account_service),
) -> dict:
    return service.get(organization_id, str(account_id)).to_public()


@router.put("/{account_id}")
def update_account(
    req: AccountUpdateRequest,
    account_id: uuid.UUID = Path(..., description="Account UUID"),
    organization_id: str = Depends(get_organization_id),
    service: AccountService = Depends(get_account_service),
) -> dict:
    account = service.update(organization_id, str(account_id), req.model_dump(exclude_unset=True))
    return account.to_public()


@router.delete("/{account_id}", status_code=204)
def delete_account(
    account_id: uuid.UUID = Path(..., description="Account UUID"),
    organization_id: str = Depends(get_organization_id),
    service: AccountService = Depends(get_account_service),
) -> Response:
    service.delete(organization_id, str(account_id))
    return Response(status_code=204)


@router.post("/{account_id}/test")
def check_account(
    account_id: uuid.UUID = Path(..., description="Account UUID"),
    organization_id: str = Depends(get_organization_id),
    service: AccountService = Depends(get_account_service),
) -> dict:
    """Check stored credentials against the provider (never 5xx on failure)."""
    return service.test_connection(organization_id, str(account_id))


@router.post("/{account_id}/templates/sync")
def sync_account_templates(
    account_id: uuid.UUID = Path(..., description="Account UUID"),
    organization_id: str = Depends(get_organization_id),
    service: AccountService = Depends(get_account_service),
) -> dict:
    account = service.get(organization_id, str(account_id))
    stored = sync_templates(account, correlation_id=get_correlation_id())
    return {"account_id": account.id, "templates": stored}

"""Shared FastAPI dependencies."""

from fastapi import Header, HTTPException, Request

from wagate.domain.accounts import AccountResolver, AccountService


def get_account_resolver(request: Request) -> AccountResolver:
    """Process-wide resolver created by create_app()."""
    return request.app.state.account_resolver


def get_account_service(request: Request) -> AccountService:
    return AccountService(request.app.state.account_resolver)


def get_organization_id(
    x_organization_id: str | None = Header(None, alias="X-Organization-Id"),
) -> str:
    """Tenant scope of an internal call (set by the calling CRUD layer)."""
    if not x_organization_id or not x_organization_id.strip():
        raise HTTPException(status_code=400, detail="X-Organization-Id header required")
    return x_organization_id.strip()

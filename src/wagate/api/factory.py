"""FastAPI application factory with role-based route mounting."""

import os
from typing import Literal

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from wagate.domain.accounts import AccountResolver
from wagate.errors import GatewayError
from wagate.infra.account_cache import AccountCache, InMemoryAccountCache, NullAccountCache
from wagate.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    get_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from wagate.observability.logging import get_logger
from wagate.observability.redaction import safe_log_context

from .routers import public
from .routes import accounts, messages, webhooks_whatsapp

AppRole = Literal["public", "internal"]

logger = get_logger(__name__)


def create_app(
    role: AppRole | None = None,
    account_cache: AccountCache | None = None,
) -> FastAPI:
    """Create FastAPI app with routes based on APP_ROLE.

    Args:
        role: Explicit role override. If None, reads from APP_ROLE env var.
              Defaults to "public" if env var is not set.
        account_cache: Resolver cache. If None, the internal role gets a fresh
              InMemoryAccountCache and the public role a NullAccountCache:
              account mutations (and their invalidations) only run in the
              internal process, so a public process must not cache.

    Returns:
        Configured FastAPI application.
    """
    if role is None:
        role = os.environ.get("APP_ROLE", "public")  # type: ignore[assignment]

    app = FastAPI(
        title="wagate",
        docs_url=None,
        redoc_url=None,
    )
    app.state.role = role
    if account_cache is None:
        account_cache = InMemoryAccountCache() if role == "internal" else NullAccountCache()
    app.state.account_resolver = AccountResolver(account_cache)

    # Correlation ID middleware
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        logger.info(
            "request failed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=get_correlation_id(),
                    path=request.url.path,
                    error=exc.code,
                    status_code=exc.status_code,
                )
            },
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # Mount public routes (always)
    app.include_router(public.router)
    app.include_router(webhooks_whatsapp.router)

    # Send and account APIs only for the internal role
    if role == "internal":
        app.include_router(messages.router)
        app.include_router(accounts.router)

    return app

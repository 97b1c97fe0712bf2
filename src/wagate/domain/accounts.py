"""Account resolution and account mutations.

The resolver is the only reader of credentials on the hot path (webhooks,
sends). Every mutation goes through AccountService, which invalidates the
resolver cache for the old and new phone_id before returning, so a rotated
token is never used after the rotating call completes.
"""

from __future__ import annotations

import secrets
from typing import Any, Callable

from psycopg2 import errors as pg_errors

from wagate.domain.models import Account
from wagate.errors import AccountAlreadyExists, AccountNotFound, DefaultAccountConflict, GatewayError
from wagate.infra.account_cache import AccountCache
from wagate.infra.db import txn
from wagate.infra.repositories import accounts_repository
from wagate.infra.settings import get_settings
from wagate.observability.logging import get_logger
from wagate.observability.redaction import safe_log_context
from wagate.whatsapp import meta_sender

logger = get_logger(__name__)

AccountLoader = Callable[[str], Account | None]

# Partial unique indexes allowing one default account per organization
_DEFAULT_FLAG_INDEXES = {
    "uq_whatsapp_accounts_default_incoming": "is_default_incoming",
    "uq_whatsapp_accounts_default_outgoing": "is_default_outgoing",
}


def _load_account_by_phone_id(phone_id: str) -> Account | None:
    with txn() as cur:
        return accounts_repository.get_account_by_phone_id(cur, phone_id)


def _unique_violation_error(e: pg_errors.UniqueViolation, phone_id: str) -> GatewayError:
    flag = _DEFAULT_FLAG_INDEXES.get(e.diag.constraint_name or "")
    if flag is not None:
        return DefaultAccountConflict(flag)
    return AccountAlreadyExists(phone_id)


def generate_verify_token() -> str:
    """Random webhook verify token (32 bytes, hex)."""
    return secrets.token_hex(32)


class AccountResolver:
    """Pull-through resolver from provider phone_id to Account.

    Args:
        cache: Cache implementation (InMemoryAccountCache in production).
        loader: Store lookup, defaults to a Postgres read.
    """

    def __init__(self, cache: AccountCache, loader: AccountLoader | None = None) -> None:
        self.cache = cache
        self._loader = loader or _load_account_by_phone_id

    def resolve(self, phone_id: str) -> Account:
        """Return the account for phone_id.

        Raises:
            AccountNotFound: If no account owns this phone_id.
        """
        account = self.cache.get(phone_id)
        if account is not None:
            return account

        generation = self.cache.generation(phone_id)
        account = self._loader(phone_id)
        if account is None:
            raise AccountNotFound(phone_id)

        # Concurrent cold resolves may both populate; entries are identical
        self.cache.set(phone_id, account, generation)
        return account

    def invalidate(self, *phone_ids: str) -> None:
        self.cache.invalidate(*phone_ids)


class AccountService:
    """Create/update/delete accounts, keeping the resolver cache coherent."""

    def __init__(self, resolver: AccountResolver) -> None:
        self.resolver = resolver

    def list(self, organization_id: str) -> list[Account]:
        with txn() as cur:
            return accounts_repository.list_accounts(cur, organization_id)

    def get(self, organization_id: str, account_id: str) -> Account:
        with txn() as cur:
            account = accounts_repository.get_account(
                cur, organization_id=organization_id, account_id=account_id
            )
        if account is None:
            raise AccountNotFound(account_id)
        return account

    def create(
        self,
        organization_id: str,
        *,
        name: str,
        phone_id: str,
        business_id: str,
        access_token: str,
        app_id: str | None = None,
        app_secret: str | None = None,
        webhook_verify_token: str | None = None,
        api_version: str | None = None,
        is_default_incoming: bool = False,
        is_default_outgoing: bool = False,
        auto_read_receipt: bool = False,
    ) -> Account:
        """Create an active account.

        A verify token is generated when none is given; api_version falls
        back to the configured default. Setting a default flag clears it on
        the organization's other accounts in the same transaction.

        Raises:
            AccountAlreadyExists: If phone_id is already registered.
            DefaultAccountConflict: If a concurrent write claimed a default flag.
        """
        stale: list[str] = []
        try:
            with txn() as cur:
                if is_default_incoming:
                    stale += accounts_repository.clear_default_flag(
                        cur, organization_id=organization_id, flag="is_default_incoming"
                    )
                if is_default_outgoing:
                    stale += accounts_repository.clear_default_flag(
                        cur, organization_id=organization_id, flag="is_default_outgoing"
                    )
                account = accounts_repository.insert_account(
                    cur,
                    organization_id=organization_id,
                    name=name,
                    app_id=app_id or None,
                    phone_id=phone_id,
                    business_id=business_id,
                    access_token=access_token,
                    app_secret=app_secret or None,
                    webhook_verify_token=webhook_verify_token or generate_verify_token(),
                    api_version=api_version or get_settings().default_api_version,
                    is_default_incoming=is_default_incoming,
                    is_default_outgoing=is_default_outgoing,
                    auto_read_receipt=auto_read_receipt,
                )
        except pg_errors.UniqueViolation as e:
            raise _unique_violation_error(e, phone_id) from None

        # phone_id may belong to a deleted account still cached
        self.resolver.invalidate(account.phone_id, *stale)

        logger.info(
            "whatsapp account created",
            extra={
                "extra_fields": safe_log_context(
                    account_id=account.id,
                    organization_id=organization_id,
                    has_app_secret=bool(account.app_secret),
                )
            },
        )
        return account

    def update(self, organization_id: str, account_id: str, changes: dict[str, Any]) -> Account:
        """Partially update an account.

        None and empty-string values leave the stored field unchanged, so
        secrets are only replaced when a new value is supplied.

        Raises:
            AccountNotFound: If the account does not belong to the organization.
            AccountAlreadyExists: If the new phone_id is taken.
            DefaultAccountConflict: If a concurrent write claimed a default flag.
        """
        changes = {k: v for k, v in changes.items() if v is not None and v != ""}
        stale: list[str] = []

        try:
            with txn() as cur:
                current = accounts_repository.get_account(
                    cur, organization_id=organization_id, account_id=account_id
                )
                if current is None:
                    raise AccountNotFound(account_id)

                for flag in accounts_repository.DEFAULT_FLAGS:
                    if changes.get(flag) and not getattr(current, flag):
                        stale += accounts_repository.clear_default_flag(
                            cur,
                            organization_id=organization_id,
                            flag=flag,
                            except_account_id=account_id,
                        )

                updated = (
                    accounts_repository.update_account(cur, account_id, changes)
                    if changes
                    else current
                )
                if updated is None:
                    raise AccountNotFound(account_id)
        except pg_errors.UniqueViolation as e:
            raise _unique_violation_error(e, str(changes.get("phone_id", ""))) from None

        # Synchronous: the caller must not return before stale credentials are gone
        self.resolver.invalidate(current.phone_id, updated.phone_id, *stale)

        logger.info(
            "whatsapp account updated",
            extra={
                "extra_fields": safe_log_context(
                    account_id=account_id,
                    fields=sorted(changes),
                    phone_id_changed=current.phone_id != updated.phone_id,
                    credentials_rotated=bool(
                        {"access_token", "app_secret"} & set(changes)
                    ),
                )
            },
        )
        return updated

    def delete(self, organization_id: str, account_id: str) -> None:
        with txn() as cur:
            account = accounts_repository.get_account(
                cur, organization_id=organization_id, account_id=account_id
            )
            if account is None:
                raise AccountNotFound(account_id)
            accounts_repository.delete_account(cur, account_id)

        self.resolver.invalidate(account.phone_id)

        logger.info(
            "whatsapp account deleted",
            extra={"extra_fields": safe_log_context(account_id=account_id)},
        )

    def test_connection(self, organization_id: str, account_id: str) -> dict[str, Any]:
        """Check the stored credentials against the provider."""
        account = self.get(organization_id, account_id)
        return meta_sender.check_connection(account=account)

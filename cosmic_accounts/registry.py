"""Account registry: the single source of truth for linked accounts.

Every mutation is one atomic read-modify-write through the injected
:class:`~cosmic_accounts.state.base.AccountRepository`. The registry never
touches token material except to delete it when an account is removed.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import uuid

from typing import TYPE_CHECKING

from .exceptions import (
    AccountAlreadyExistsError,
    AccountNotFoundError,
    CredentialStoreError,
    InvalidArgumentsError,
    PartialRemovalError,
)
from .models import Account, Capability, Provider, utcnow


if TYPE_CHECKING:
    from .auth.credential_store import CredentialStore
    from .state.base import AccountRepository


logger = logging.getLogger("cosmic_accounts.registry")


def parse_account_id(account_id: str | uuid.UUID) -> uuid.UUID:
    """Parse an account id, raising InvalidArgumentsError on malformed input."""
    if isinstance(account_id, uuid.UUID):
        return account_id
    try:
        return uuid.UUID(str(account_id))
    except ValueError:
        msg = f"Malformed account id: {account_id!r}"
        raise InvalidArgumentsError(msg) from None


def _find(accounts: list[Account], account_id: uuid.UUID) -> Account:
    for account in accounts:
        if account.id == account_id:
            return account
    msg = "Account not found"
    raise AccountNotFoundError(msg, account_id=str(account_id))


class AccountRegistry:
    """Registry of linked accounts.

    Parameters
    ----------
    repository : AccountRepository
        Persistence for account records.
    credential_store : CredentialStore
        Secret store; only used to delete secrets on removal.
    """

    def __init__(self, repository: AccountRepository, credential_store: CredentialStore) -> None:
        self.repository = repository
        self.credential_store = credential_store

    async def list(self) -> list[Account]:
        """All accounts in insertion order."""
        return await self.repository.load()

    async def get(self, account_id: str | uuid.UUID) -> Account:
        """Look up one account.

        Raises
        ------
        InvalidArgumentsError
            If ``account_id`` is not a UUID.
        AccountNotFoundError
            If no account has this id.
        """
        return _find(await self.repository.load(), parse_account_id(account_id))

    async def exists(self, provider: Provider, username: str) -> bool:
        """Whether an account for ``(provider, username)`` is registered."""
        return any(
            a.provider is provider and a.username == username for a in await self.repository.load()
        )

    async def admit(self, account: Account) -> Account:
        """Insert a new account.

        The uniqueness check and the insert happen in the same atomic
        update, so two concurrent admits of one identity cannot both win.

        Raises
        ------
        AccountAlreadyExistsError
            If ``(provider, username)`` is already registered.
        """

        def _insert(accounts: list[Account]) -> None:
            for existing in accounts:
                if existing.provider is account.provider and existing.username == account.username:
                    msg = "Account is already linked"
                    raise AccountAlreadyExistsError(
                        msg, provider=account.provider.value, username=account.username
                    )
            accounts.append(account.model_copy(deep=True))

        await self.repository.update(_insert)
        logger.info("Admitted %s account %s", account.provider.value, account.id)
        return account

    async def set_enabled(self, account_id: str | uuid.UUID, enabled: bool) -> Account:
        """Enable or disable an account. Capabilities are left as they are."""
        uid = parse_account_id(account_id)

        def _apply(accounts: list[Account]) -> Account:
            account = _find(accounts, uid)
            account.enabled = enabled
            return account.model_copy(deep=True)

        account = await self.repository.update(_apply)
        logger.info("Account %s %s", uid, "enabled" if enabled else "disabled")
        return account

    async def set_capability(
        self,
        account_id: str | uuid.UUID,
        capability: Capability,
        enabled: bool,
    ) -> Account:
        """Toggle one capability. Never changes ``enabled``."""
        uid = parse_account_id(account_id)

        def _apply(accounts: list[Account]) -> Account:
            account = _find(accounts, uid)
            capabilities = dict(account.capabilities)
            capabilities[capability] = enabled
            account.capabilities = {
                c: capabilities[c] for c in Capability.ordered() if c in capabilities
            }
            return account.model_copy(deep=True)

        account = await self.repository.update(_apply)
        logger.info(
            "Account %s capability %s %s", uid, capability.value, "on" if enabled else "off"
        )
        return account

    async def touch(self, account_id: str | uuid.UUID) -> Account:
        """Record that the account's credentials were just used."""
        uid = parse_account_id(account_id)

        def _apply(accounts: list[Account]) -> Account:
            account = _find(accounts, uid)
            account.last_used = utcnow()
            return account.model_copy(deep=True)

        return await self.repository.update(_apply)

    async def remove(self, account_id: str | uuid.UUID) -> Account:
        """Remove the account record, then its secret.

        Raises
        ------
        AccountNotFoundError
            If no account has this id.
        PartialRemovalError
            If the record was removed but the secret could not be deleted.
        """
        uid = parse_account_id(account_id)

        def _delete(accounts: list[Account]) -> Account:
            account = _find(accounts, uid)
            accounts.remove(account)
            return account

        account = await self.repository.update(_delete)
        try:
            await self.credential_store.delete(str(uid))
        except CredentialStoreError as exc:
            logger.error("Account %s removed but its secret was not deleted: %s", uid, exc)
            msg = "Account removed but its stored secret could not be deleted"
            raise PartialRemovalError(msg, account_id=str(uid)) from exc

        logger.info("Removed account %s", uid)
        return account

"""OAuth2 authorization-code + PKCE flow engine.

Owns the pending-authorization state machine and the lazy token refresh
policy:

- ``start_auth_flow`` records one pending authorization and returns the
  provider's authorization URL. No network I/O.
- ``complete_auth_flow`` consumes that entry exactly once, exchanges the
  code, resolves the user's identity, and writes the new account's
  credential before returning the account.
- ``ensure_fresh_credential`` refreshes an access token only when a
  caller asks for it and the stored token has expired.

Nothing here is retried; a failed network call aborts the operation.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging

from typing import TYPE_CHECKING

from ..exceptions import (
    AccountAlreadyExistsError,
    AuthenticationError,
    CredentialNotFoundError,
    InvalidArgumentsError,
    InvalidStateError,
    TokenExpiredError,
)
from ..models import Account, Credential, PendingAuthorization, Provider, utcnow
from .pkce import PKCEChallenge, generate_state_token


if TYPE_CHECKING:
    from ..registry import AccountRegistry
    from .credential_store import CredentialStore
    from .pending import PendingAuthorizationStore
    from .providers import ProviderRegistry


logger = logging.getLogger("cosmic_accounts.auth")


class AuthFlowEngine:
    """Runs authorization flows and keeps stored credentials fresh.

    Parameters
    ----------
    providers : ProviderRegistry
        Configured OAuth2 clients.
    credential_store : CredentialStore
        Secret store holding one credential per account id.
    pending_store : PendingAuthorizationStore
        Single-use table of started flows.
    registry : AccountRegistry, optional
        Used to reject identities that are already linked and to resolve
        an account's provider when refreshing.
    """

    def __init__(
        self,
        providers: ProviderRegistry,
        credential_store: CredentialStore,
        pending_store: PendingAuthorizationStore,
        registry: AccountRegistry | None = None,
    ) -> None:
        self.providers = providers
        self.credential_store = credential_store
        self.pending_store = pending_store
        self.registry = registry
        self._refresh_locks: dict[str, asyncio.Lock] = {}

    # ── Authorization ──────────────────────────────────────────────

    async def start_auth_flow(self, provider: Provider | str) -> str:
        """Begin linking an account with ``provider``.

        Parameters
        ----------
        provider : Provider or str
            The provider (or its name, parsed case-insensitively).

        Returns
        -------
        str
            The authorization URL the user must open.

        Raises
        ------
        UnknownProviderError
            If the provider is unknown or not configured.
        """
        client = self.providers.get(provider)
        pkce = PKCEChallenge.generate()
        state_token = generate_state_token()
        url = client.build_authorize_url(state_token, pkce)

        await self.pending_store.put(
            PendingAuthorization(
                state_token=state_token,
                provider=client.kind,
                pkce_verifier=pkce.verifier,
            )
        )
        logger.info("Started authorization flow for %s", client.name)
        return url

    async def complete_auth_flow(self, state_token: str, authorization_code: str) -> Account:
        """Finish a flow started by :meth:`start_auth_flow`.

        The pending entry is consumed before any network call, so a failed
        exchange leaves it consumed and the user must start over.

        Parameters
        ----------
        state_token : str
            The ``state`` query parameter from the redirect.
        authorization_code : str
            The ``code`` query parameter from the redirect.

        Returns
        -------
        Account
            A new, enabled account whose credential is already stored.
            The caller is responsible for admitting it to the registry.

        Raises
        ------
        InvalidStateError
            If the state token is unknown, expired, or already used.
        AuthenticationError
            If the code exchange or identity lookup fails.
        AccountAlreadyExistsError
            If the identity is already linked.
        CredentialStoreError
            If the credential cannot be written.
        """
        pending = await self.pending_store.pop(state_token)
        if pending is None:
            logger.warning("Rejected redirect with unknown or expired state token")
            msg = "Unknown, expired, or already used state token"
            raise InvalidStateError(msg)

        client = self.providers.get(pending.provider)
        tokens = await client.exchange_code(authorization_code, pending.pkce_verifier)
        identity = await client.fetch_identity(tokens.access_token)
        if not identity.username:
            msg = "Identity endpoint returned no username"
            raise AuthenticationError(msg, provider=client.name)

        if self.registry is not None and await self.registry.exists(
            client.kind, identity.username
        ):
            msg = "Account is already linked"
            raise AccountAlreadyExistsError(
                msg, provider=client.name, username=identity.username
            )

        now = utcnow()
        account = Account(
            provider=client.kind,
            display_name=identity.display_name,
            username=identity.username,
            email=identity.email,
            enabled=True,
            created_at=now,
            last_used=now,
            capabilities=client.kind.default_capabilities(),
        )
        credential = Credential.from_token_set(tokens, client.scopes)
        await self.credential_store.save(str(account.id), credential)
        logger.info("Linked %s account %s", client.name, account.id)
        return account

    async def pending_count(self) -> int:
        """Number of flows started but not yet completed or expired."""
        return await self.pending_store.size()

    # ── Credentials ────────────────────────────────────────────────

    async def get_credential(self, account_id: str) -> Credential:
        """Read the stored credential without refreshing it.

        Raises
        ------
        CredentialNotFoundError
            If no credential is stored for ``account_id``.
        """
        credential = await self.credential_store.load(account_id)
        if credential is None:
            msg = "No credential stored for account"
            raise CredentialNotFoundError(msg, account_id=account_id)
        return credential

    async def delete_credential(self, account_id: str) -> None:
        """Delete the stored credential. Missing credentials are a no-op."""
        await self.credential_store.delete(account_id)
        self._refresh_locks.pop(account_id, None)

    async def ensure_fresh_credential(
        self,
        account_id: str,
        provider: Provider | None = None,
    ) -> Credential:
        """Return a credential whose access token has not expired.

        Non-expired credentials are returned as stored with no network
        call and no write. Expired ones are refreshed once and written
        back in a single store write.

        Parameters
        ----------
        account_id : str
            The account whose credential is needed.
        provider : Provider, optional
            The account's provider. Looked up in the registry when omitted.

        Raises
        ------
        CredentialNotFoundError
            If no credential is stored.
        TokenExpiredError
            If the token has expired and there is no refresh token.
        TokenRefreshError
            If the provider rejects the refresh.
        """
        lock = self._refresh_locks.setdefault(account_id, asyncio.Lock())
        async with lock:
            credential = await self.get_credential(account_id)
            if not credential.is_expired():
                return credential

            if not credential.refresh_token:
                msg = "Access token expired and no refresh token is stored"
                raise TokenExpiredError(msg, account_id=account_id)

            client = self.providers.get(await self._provider_for(account_id, provider))
            logger.debug("Refreshing access token for account %s", account_id)
            tokens = await client.refresh_tokens(credential.refresh_token)

            refreshed = Credential(
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token or credential.refresh_token,
                expires_at=tokens.expires_at,
                scope=tokens.scope.split() if tokens.scope else credential.scope,
                token_type=tokens.token_type or credential.token_type,
            )
            await self.credential_store.save(account_id, refreshed)
            logger.info("Refreshed access token for account %s", account_id)
            return refreshed

    async def _provider_for(self, account_id: str, provider: Provider | None) -> Provider:
        if provider is not None:
            return provider
        if self.registry is None:
            msg = "Provider is required when no registry is attached"
            raise InvalidArgumentsError(msg, account_id=account_id)
        account = await self.registry.get(account_id)
        return account.provider

    async def close(self) -> None:
        """Close every provider's HTTP client."""
        await self.providers.close()

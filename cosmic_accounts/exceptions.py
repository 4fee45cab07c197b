"""cosmic-accounts exception hierarchy.

Every error raised by the daemon core inherits from AccountsException.
The RPC layer converts these into transport responses in exactly one
place (``cosmic_accounts.rpc``); nothing below it knows about HTTP.
"""

from __future__ import annotations

from typing import Any


class AccountsException(Exception):
    """Base exception for all cosmic-accounts errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize the exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (account_id, provider, state, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        ctx = {k: v for k, v in self.context.items() if v is not None}
        if ctx:
            rendered = ", ".join(f"{k}={v!r}" for k, v in ctx.items())
            return f"{self.message} ({rendered})"
        return self.message


# ── Input errors ─────────────────────────────────────────────────────


class InvalidArgumentsError(AccountsException):
    """A request argument is malformed (e.g. an account id that is not a UUID)."""


class UnknownProviderError(AccountsException):
    """The provider name is unknown or has no registered configuration."""

    def __init__(self, message: str, provider: str | None = None, **context: Any) -> None:
        """Initialize unknown provider error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        provider : str, optional
            The provider name that was requested.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, **context)
        self.provider = provider


class InvalidCapabilityError(AccountsException):
    """The capability name is unknown or not supported for the account."""

    def __init__(self, message: str, capability: str | None = None, **context: Any) -> None:
        """Initialize invalid capability error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        capability : str, optional
            The capability name that was requested.
        **context : Any
            Additional context.
        """
        super().__init__(message, capability=capability, **context)
        self.capability = capability


# ── State errors ─────────────────────────────────────────────────────


class InvalidStateError(AccountsException):
    """The CSRF state token is unknown, expired, or already consumed."""


class AccountNotFoundError(AccountsException):
    """No account is registered under the given id."""

    def __init__(self, message: str, account_id: str | None = None, **context: Any) -> None:
        """Initialize account-not-found error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        account_id : str, optional
            The account id that was looked up.
        **context : Any
            Additional context.
        """
        super().__init__(message, account_id=account_id, **context)
        self.account_id = account_id


class CredentialNotFoundError(AccountNotFoundError):
    """The credential store holds no secret for the given account id."""


class AccountAlreadyExistsError(AccountsException):
    """An account for the same (provider, username) is already registered."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        username: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize duplicate account error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        provider : str, optional
            The provider of the duplicate identity.
        username : str, optional
            The username of the duplicate identity.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, username=username, **context)
        self.provider = provider
        self.username = username


# ── Upstream errors ──────────────────────────────────────────────────


class AuthenticationError(AccountsException):
    """Base exception for failures reported by (or while talking to) a provider.

    Raised when the token exchange, identity lookup, or any other
    provider round-trip fails. Never retried automatically.
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        account_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize authentication error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        provider : str, optional
            The OAuth2 provider name (e.g., "Google", "Microsoft").
        account_id : str, optional
            The account the operation was performed for, if any.
        **context : Any
            Additional context (status code, provider error code, ...).
        """
        super().__init__(message, provider=provider, account_id=account_id, **context)
        self.provider = provider
        self.account_id = account_id


class TokenError(AuthenticationError):
    """Base exception for token-related failures.

    Raised when token operations (exchange, refresh) fail.
    """


class TokenExpiredError(TokenError):
    """Access token has expired and there is no refresh token to renew it."""


class TokenRefreshError(TokenError):
    """The refresh-token exchange with the provider failed."""


# ── Storage errors ───────────────────────────────────────────────────


class StorageError(AccountsException):
    """Base exception for persistence failures (secret store or registry file)."""


class CredentialStoreError(StorageError):
    """The OS secret store (or another credential backend) failed."""


class PersistError(StorageError):
    """Writing the persisted account registry failed."""


class RemoveError(StorageError):
    """Removing an account failed."""

    def __init__(self, message: str, account_id: str | None = None, **context: Any) -> None:
        """Initialize remove error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        account_id : str, optional
            The account being removed.
        **context : Any
            Additional context.
        """
        super().__init__(message, account_id=account_id, **context)
        self.account_id = account_id


class PartialRemovalError(RemoveError):
    """The account record was removed but its secret could not be deleted.

    The registry entry stays removed; the orphaned secret must be cleaned
    up by a later retry.
    """


# ── Client errors ────────────────────────────────────────────────────


class DaemonUnavailableError(AccountsException):
    """The accounts daemon could not be reached or sent an unreadable reply."""

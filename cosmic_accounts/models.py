"""Data model for linked accounts, credentials and pending authorizations."""

from __future__ import annotations

import json
import time
import uuid

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from .exceptions import InvalidCapabilityError, UnknownProviderError


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class Capability(str, Enum):
    """A toggle-able service class an account can expose to the desktop."""

    EMAIL = "Email"
    CALENDAR = "Calendar"
    CONTACTS = "Contacts"
    TODO = "Todo"

    @classmethod
    def from_name(cls, name: str) -> Capability:
        """Parse a capability name case-insensitively.

        Raises
        ------
        InvalidCapabilityError
            If the name does not match any capability.
        """
        key = name.strip().lower()
        if key == "mail":
            return cls.EMAIL
        for capability in cls:
            if capability.value.lower() == key:
                return capability
        msg = f"Unknown capability: {name}"
        raise InvalidCapabilityError(msg, capability=name)

    @classmethod
    def ordered(cls) -> list[Capability]:
        """All capabilities in their canonical order."""
        return list(cls)


class Provider(str, Enum):
    """Supported identity providers."""

    GOOGLE = "Google"
    MICROSOFT = "Microsoft"

    @classmethod
    def from_name(cls, name: str) -> Provider:
        """Parse a provider name case-insensitively.

        Raises
        ------
        UnknownProviderError
            If the name does not match any provider.
        """
        key = name.strip().lower()
        for provider in cls:
            if provider.value.lower() == key:
                return provider
        msg = f"Unknown provider: {name}"
        raise UnknownProviderError(msg, provider=name)

    def default_capabilities(self) -> dict[Capability, bool]:
        """Capabilities a freshly linked account of this provider starts with."""
        return {capability: True for capability in Capability.ordered()}


class Account(BaseModel):
    """A linked external account.

    Holds only public metadata. Token material lives in the credential
    store, keyed by ``id``.
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    provider: Provider
    display_name: str
    username: str
    email: str | None = None
    enabled: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    last_used: datetime | None = None
    capabilities: dict[Capability, bool] = Field(default_factory=dict)

    @field_validator("capabilities")
    @classmethod
    def _order_capabilities(cls, v: dict[Capability, bool]) -> dict[Capability, bool]:
        """Keep capabilities in canonical order regardless of input order."""
        return {c: v[c] for c in Capability.ordered() if c in v}

    @property
    def object_id(self) -> str:
        """The account id in the form used for exported object paths."""
        return self.id.hex

    def capability_enabled(self, capability: Capability) -> bool:
        """Whether the account exposes ``capability`` and has it switched on."""
        return self.capabilities.get(capability, False)


@dataclass
class OAuthTokenSet:
    """OAuth2 token set returned by a provider's token endpoint.

    Attributes
    ----------
    access_token : str
        The access token for API requests.
    token_type : str
        Token type, typically "Bearer".
    refresh_token : str or None
        Optional refresh token for obtaining new access tokens.
    expires_in : int or None
        Token lifetime in seconds from issuance.
    scope : str
        Space-separated list of granted scopes.
    raw : dict[str, Any]
        The raw token response from the provider.
    issued_at : float
        Unix timestamp when the token was issued.
    """

    access_token: str
    token_type: str = "Bearer"  # noqa: S105
    refresh_token: str | None = None
    expires_in: int | None = None
    scope: str = ""
    raw: dict[str, Any] = field(default_factory=dict)
    issued_at: float = field(default_factory=time.time)

    @property
    def expires_at(self) -> datetime | None:
        """Absolute expiry time, or None if the provider sent no lifetime."""
        if self.expires_in is None:
            return None
        issued = datetime.fromtimestamp(self.issued_at, tz=timezone.utc)
        return issued + timedelta(seconds=int(self.expires_in))


@dataclass
class Credential:
    """Secret token material for one account.

    Attributes
    ----------
    access_token : str
        Current access token.
    refresh_token : str or None
        Refresh token, if the provider issued one.
    expires_at : datetime or None
        When the access token stops being valid (UTC).
    scope : list[str]
        Granted scopes.
    token_type : str
        Token type, typically "Bearer".
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    scope: list[str] = field(default_factory=list)
    token_type: str = "Bearer"  # noqa: S105

    def is_expired(self, now: datetime | None = None) -> bool:
        """Whether the access token is at or past its expiry time."""
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())

    def to_json(self) -> str:
        """Serialize to the JSON document stored in the secret store."""
        return json.dumps(
            {
                "access_token": self.access_token,
                "refresh_token": self.refresh_token,
                "expires_at": self.expires_at.isoformat() if self.expires_at else None,
                "scope": self.scope,
                "token_type": self.token_type,
            }
        )

    @classmethod
    def from_json(cls, data: str) -> Credential:
        """Deserialize a credential written by ``to_json``."""
        obj = json.loads(data)
        if not isinstance(obj, dict):
            raise ValueError("credential must be a JSON object")
        expires_at = obj.get("expires_at")
        return cls(
            access_token=obj["access_token"],
            refresh_token=obj.get("refresh_token"),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
            scope=list(obj.get("scope") or []),
            token_type=obj.get("token_type", "Bearer"),
        )

    @classmethod
    def from_token_set(cls, tokens: OAuthTokenSet, default_scope: list[str]) -> Credential:
        """Build a credential from a fresh token endpoint response."""
        scope = tokens.scope.split() if tokens.scope else list(default_scope)
        return cls(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=tokens.expires_at,
            scope=scope,
            token_type=tokens.token_type or "Bearer",
        )


@dataclass
class PendingAuthorization:
    """An authorization request waiting for its redirect.

    Attributes
    ----------
    state_token : str
        The CSRF state token round-tripped through the redirect.
    provider : Provider
        The provider the flow was started for.
    pkce_verifier : str
        The PKCE code verifier matching the challenge sent to the provider.
    created_at : float
        Unix timestamp when the flow was started.
    """

    state_token: str
    provider: Provider
    pkce_verifier: str
    created_at: float = field(default_factory=time.time)

    def to_json(self) -> str:
        """Serialize for network-backed pending stores."""
        return json.dumps(
            {
                "state_token": self.state_token,
                "provider": self.provider.value,
                "pkce_verifier": self.pkce_verifier,
                "created_at": self.created_at,
            }
        )

    @classmethod
    def from_json(cls, data: str) -> PendingAuthorization:
        """Deserialize a pending authorization written by ``to_json``."""
        obj = json.loads(data)
        if not isinstance(obj, dict):
            raise ValueError("pending authorization must be a JSON object")
        return cls(
            state_token=obj["state_token"],
            provider=Provider(obj["provider"]),
            pkce_verifier=obj["pkce_verifier"],
            created_at=obj.get("created_at", time.time()),
        )


@dataclass(frozen=True)
class UserIdentity:
    """Canonical identity of the user behind a fresh access token."""

    display_name: str
    username: str
    email: str | None = None


class NotificationKind(str, Enum):
    """Change notifications emitted by the accounts interface."""

    ACCOUNT_ADDED = "AccountAdded"
    ACCOUNT_REMOVED = "AccountRemoved"
    ACCOUNT_CHANGED = "AccountChanged"
    ACCOUNT_ALREADY_EXISTS = "AccountAlreadyExists"


@dataclass(frozen=True)
class Notification:
    """A single change notification.

    Attributes
    ----------
    kind : NotificationKind
        What happened.
    account_id : str or None
        The affected account (None for ``AccountAlreadyExists``).
    timestamp : float
        Unix timestamp when the notification was emitted.
    """

    kind: NotificationKind
    account_id: str | None = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation."""
        return {
            "kind": self.kind.value,
            "account_id": self.account_id,
            "timestamp": self.timestamp,
        }

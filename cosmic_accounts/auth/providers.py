"""OAuth2 provider abstractions.

Defines the OAuthProvider ABC, the Google and Microsoft implementations,
and the ProviderRegistry that maps a :class:`~cosmic_accounts.models.Provider`
to its configured client.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import time

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar
from urllib.parse import urlencode

import httpx

from ..exceptions import AuthenticationError, TokenError, TokenRefreshError, UnknownProviderError
from ..log import redact_sensitive_data
from ..models import OAuthTokenSet, Provider, UserIdentity


if TYPE_CHECKING:
    from ..config import AccountsSettings, ProviderSettings
    from .pkce import PKCEChallenge

logger = logging.getLogger("cosmic_accounts.auth")

UNKNOWN_IDENTITY = "Unknown"

GOOGLE_DEFAULT_SCOPES = [
    "openid",
    "email",
    "profile",
    "https://mail.google.com/",
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/contacts",
    "https://www.googleapis.com/auth/tasks",
]

MICROSOFT_DEFAULT_SCOPES = [
    "openid",
    "email",
    "profile",
    "offline_access",
    "User.Read",
    "Mail.ReadWrite",
    "Calendars.ReadWrite",
    "Contacts.ReadWrite",
    "Tasks.ReadWrite",
]


def _error_details(resp: httpx.Response) -> dict[str, Any]:
    """Extract the OAuth2 error fields from a failed provider response."""
    try:
        body = resp.json()
    except ValueError:
        return {"status_code": resp.status_code}
    if not isinstance(body, dict):
        return {"status_code": resp.status_code}
    logger.debug(
        "Provider error response (%s): %s",
        resp.status_code,
        redact_sensitive_data(body),
    )
    error = body.get("error")
    if isinstance(error, dict):
        # Graph API style: {"error": {"code": ..., "message": ...}}
        return {
            "status_code": resp.status_code,
            "error": error.get("code"),
            "error_description": error.get("message"),
        }
    return {
        "status_code": resp.status_code,
        "error": error,
        "error_description": body.get("error_description"),
    }


class OAuthProvider(ABC):
    """Abstract base class for OAuth2 authorization-code + PKCE providers.

    Parameters
    ----------
    client_id : str
        The OAuth2 client ID.
    client_secret : str
        The OAuth2 client secret (empty string for public clients).
    redirect_uri : str
        The redirect URI registered with the provider.
    scopes : list[str]
        Requested OAuth2 scopes.
    authorize_url : str
        The provider's authorization endpoint.
    token_url : str
        The provider's token exchange endpoint.
    userinfo_url : str
        The provider's identity endpoint.
    timeout : float
        Transport timeout for every request made to the provider.
    """

    kind: ClassVar[Provider]

    def __init__(
        self,
        client_id: str,
        client_secret: str = "",
        redirect_uri: str = "",
        scopes: list[str] | None = None,
        authorize_url: str = "",
        token_url: str = "",
        userinfo_url: str = "",
        timeout: float = 30.0,
    ) -> None:
        """Initialize OAuth provider."""
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = scopes or []
        self.authorize_url = authorize_url
        self.token_url = token_url
        self.userinfo_url = userinfo_url
        self.timeout = timeout
        self._http_client: httpx.AsyncClient | None = None

    @property
    def name(self) -> str:
        """Display name of the provider."""
        return self.kind.value

    def extra_authorize_params(self) -> dict[str, str]:
        """Provider-specific query parameters added to the authorization URL."""
        return {}

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self) -> None:
        """Close the shared HTTP client. Call from app shutdown lifecycle."""
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    def build_authorize_url(self, state: str, pkce: PKCEChallenge) -> str:
        """Build the full authorization URL.

        Parameters
        ----------
        state : str
            CSRF protection token.
        pkce : PKCEChallenge
            PKCE challenge pair for this flow.

        Returns
        -------
        str
            The full authorization URL.
        """
        params: dict[str, str] = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "state": state,
            "scope": " ".join(self.scopes),
            "code_challenge": pkce.challenge,
            "code_challenge_method": pkce.method,
        }
        params.update(self.extra_authorize_params())
        return f"{self.authorize_url}?{urlencode(params)}"

    async def _post_token(self, data: dict[str, str]) -> dict[str, Any]:
        """POST a form to the token endpoint and return the decoded JSON body."""
        if self.client_secret:
            data["client_secret"] = self.client_secret
        client = await self._get_client()
        resp = await client.post(
            self.token_url,
            data=data,
            headers={"Accept": "application/json"},
        )
        resp.raise_for_status()
        raw = resp.json()
        if not isinstance(raw, dict) or not raw.get("access_token"):
            msg = "Token endpoint response has no access_token"
            raise TokenError(msg, provider=self.name)
        return raw

    async def exchange_code(self, code: str, pkce_verifier: str) -> OAuthTokenSet:
        """Exchange an authorization code for tokens.

        Parameters
        ----------
        code : str
            The authorization code from the redirect.
        pkce_verifier : str
            The PKCE code verifier stored when the flow started.

        Returns
        -------
        OAuthTokenSet
            The token set from the provider.

        Raises
        ------
        TokenError
            If the code exchange fails.
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
            "client_id": self.client_id,
            "code_verifier": pkce_verifier,
        }
        try:
            tokens = self._token_set(await self._post_token(data))
        except httpx.HTTPStatusError as exc:
            details = _error_details(exc.response)
            msg = f"Token exchange failed: {exc.response.status_code}"
            raise TokenError(msg, provider=self.name, **details) from exc
        except httpx.HTTPError as exc:
            msg = f"Token exchange request failed: {exc}"
            raise TokenError(msg, provider=self.name) from exc
        except ValueError as exc:
            msg = "Token endpoint returned a malformed response"
            raise TokenError(msg, provider=self.name) from exc

        return tokens

    async def refresh_tokens(self, refresh_token: str) -> OAuthTokenSet:
        """Exchange a refresh token for a new access token.

        The returned token set carries the old refresh token unless the
        provider rotated it.

        Raises
        ------
        TokenRefreshError
            If the refresh fails.
        """
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.client_id,
        }
        try:
            tokens = self._token_set(await self._post_token(data))
        except httpx.HTTPStatusError as exc:
            details = _error_details(exc.response)
            msg = f"Token refresh failed: {exc.response.status_code}"
            raise TokenRefreshError(msg, provider=self.name, **details) from exc
        except httpx.HTTPError as exc:
            msg = f"Token refresh request failed: {exc}"
            raise TokenRefreshError(msg, provider=self.name) from exc
        except TokenError as exc:
            raise TokenRefreshError(exc.message, provider=self.name) from exc
        except ValueError as exc:
            msg = "Token endpoint returned a malformed response"
            raise TokenRefreshError(msg, provider=self.name) from exc

        if tokens.refresh_token is None:
            tokens.refresh_token = refresh_token
        return tokens

    def _token_set(self, raw: dict[str, Any]) -> OAuthTokenSet:
        expires_in = raw.get("expires_in")
        if expires_in is not None:
            try:
                expires_in = int(float(expires_in))
            except (TypeError, ValueError, OverflowError) as exc:
                msg = f"Token endpoint returned an invalid expires_in: {expires_in!r}"
                raise TokenError(msg, provider=self.name) from exc
        return OAuthTokenSet(
            access_token=raw["access_token"],
            token_type=raw.get("token_type") or "Bearer",
            refresh_token=raw.get("refresh_token"),
            expires_in=expires_in,
            scope=raw.get("scope", ""),
            raw=raw,
            issued_at=time.time(),
        )

    async def fetch_identity(self, access_token: str) -> UserIdentity:
        """Fetch the canonical identity behind ``access_token``.

        Raises
        ------
        AuthenticationError
            If the identity endpoint is unreachable or rejects the token.
        """
        try:
            client = await self._get_client()
            resp = await client.get(
                self.userinfo_url,
                headers={"Authorization": f"Bearer {access_token}"},
            )
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPStatusError as exc:
            details = _error_details(exc.response)
            msg = f"Identity lookup failed: {exc.response.status_code}"
            raise AuthenticationError(msg, provider=self.name, **details) from exc
        except httpx.HTTPError as exc:
            msg = f"Identity request failed: {exc}"
            raise AuthenticationError(msg, provider=self.name) from exc
        except ValueError as exc:
            msg = "Identity endpoint returned a malformed response"
            raise AuthenticationError(msg, provider=self.name) from exc

        if not isinstance(payload, dict):
            msg = "Identity endpoint returned a non-object payload"
            raise AuthenticationError(msg, provider=self.name)
        return self.parse_identity(payload)

    @abstractmethod
    def parse_identity(self, payload: dict[str, Any]) -> UserIdentity:
        """Map the provider's identity payload onto a UserIdentity."""


class GoogleProvider(OAuthProvider):
    """Google OAuth2 provider with preset endpoints.

    Requests offline access with forced consent so that a refresh token
    is issued on every link.
    """

    kind = Provider.GOOGLE

    def __init__(
        self,
        client_id: str,
        client_secret: str = "",
        redirect_uri: str = "",
        scopes: list[str] | None = None,
        authorize_url: str = "",
        token_url: str = "",
        userinfo_url: str = "",
        timeout: float = 30.0,
    ) -> None:
        """Initialize Google provider."""
        super().__init__(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
            scopes=scopes or list(GOOGLE_DEFAULT_SCOPES),
            authorize_url=authorize_url or "https://accounts.google.com/o/oauth2/v2/auth",
            token_url=token_url or "https://oauth2.googleapis.com/token",
            userinfo_url=userinfo_url or "https://www.googleapis.com/oauth2/v2/userinfo",
            timeout=timeout,
        )

    def extra_authorize_params(self) -> dict[str, str]:
        return {"access_type": "offline", "prompt": "consent"}

    def parse_identity(self, payload: dict[str, Any]) -> UserIdentity:
        email = payload.get("email")
        return UserIdentity(
            display_name=payload.get("name") or UNKNOWN_IDENTITY,
            username=email or "",
            email=email,
        )


class MicrosoftProvider(OAuthProvider):
    """Microsoft identity platform (Azure AD) OAuth2 provider.

    Parameters
    ----------
    tenant_id : str
        Azure AD tenant ID (default "common" for multi-tenant).
    """

    kind = Provider.MICROSOFT

    def __init__(
        self,
        client_id: str,
        client_secret: str = "",
        redirect_uri: str = "",
        scopes: list[str] | None = None,
        authorize_url: str = "",
        token_url: str = "",
        userinfo_url: str = "",
        timeout: float = 30.0,
        tenant_id: str = "common",
    ) -> None:
        """Initialize Microsoft provider."""
        base = f"https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0"
        super().__init__(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
            scopes=scopes or list(MICROSOFT_DEFAULT_SCOPES),
            authorize_url=authorize_url or f"{base}/authorize",
            token_url=token_url or f"{base}/token",
            userinfo_url=userinfo_url or "https://graph.microsoft.com/v1.0/me",
            timeout=timeout,
        )
        self.tenant_id = tenant_id

    def extra_authorize_params(self) -> dict[str, str]:
        return {"response_mode": "query"}

    def parse_identity(self, payload: dict[str, Any]) -> UserIdentity:
        principal = payload.get("userPrincipalName")
        return UserIdentity(
            display_name=payload.get("displayName") or UNKNOWN_IDENTITY,
            username=principal or "",
            # Graph leaves ``mail`` null for personal accounts
            email=payload.get("mail") or principal,
        )


_PROVIDER_CLASSES: dict[Provider, type[OAuthProvider]] = {
    Provider.GOOGLE: GoogleProvider,
    Provider.MICROSOFT: MicrosoftProvider,
}


def create_provider_from_settings(
    provider: Provider,
    settings: ProviderSettings,
    timeout: float = 30.0,
) -> OAuthProvider:
    """Create an OAuthProvider instance from one provider settings section.

    Parameters
    ----------
    provider : Provider
        Which provider the section configures.
    settings : ProviderSettings
        The ``[google]`` or ``[microsoft]`` settings section.
    timeout : float
        Transport timeout for provider requests.

    Returns
    -------
    OAuthProvider
        A configured provider instance.
    """
    kwargs: dict[str, Any] = {
        "client_id": settings.client_id,
        "client_secret": settings.client_secret,
        "redirect_uri": settings.redirect_uri,
        "scopes": settings.scope_list,
        "authorize_url": settings.authorize_url,
        "token_url": settings.token_url,
        "userinfo_url": settings.userinfo_url,
        "timeout": timeout,
    }
    if provider is Provider.MICROSOFT:
        kwargs["tenant_id"] = getattr(settings, "tenant_id", "common")
    return _PROVIDER_CLASSES[provider](**kwargs)


class ProviderRegistry:
    """Immutable-after-startup table of configured providers.

    Parameters
    ----------
    providers : iterable of OAuthProvider, optional
        Providers to register up front.
    """

    def __init__(self, providers: list[OAuthProvider] | None = None) -> None:
        """Initialize the registry."""
        self._providers: dict[Provider, OAuthProvider] = {}
        for provider in providers or []:
            self.register(provider)

    @classmethod
    def from_settings(cls, settings: AccountsSettings) -> ProviderRegistry:
        """Build a registry holding every provider with a configured client id."""
        registry = cls()
        timeout = settings.auth.http_timeout_seconds
        for section_name, section in settings.configured_providers().items():
            provider = Provider.from_name(section_name)
            registry.register(create_provider_from_settings(provider, section, timeout))
            logger.info("Registered provider %s", provider.value)
        return registry

    def register(self, provider: OAuthProvider) -> None:
        """Register ``provider`` under its kind, replacing any previous entry."""
        self._providers[provider.kind] = provider

    def get(self, provider: Provider | str) -> OAuthProvider:
        """Look up the configured client for ``provider``.

        Raises
        ------
        UnknownProviderError
            If the name is unknown or the provider is not configured.
        """
        kind = provider if isinstance(provider, Provider) else Provider.from_name(provider)
        try:
            return self._providers[kind]
        except KeyError:
            msg = f"Provider is not configured: {kind.value}"
            raise UnknownProviderError(msg, provider=kind.value) from None

    def names(self) -> list[str]:
        """Names of the configured providers, in declaration order."""
        return [kind.value for kind in Provider if kind in self._providers]

    def __contains__(self, provider: object) -> bool:
        return provider in self._providers

    def __len__(self) -> int:
        return len(self._providers)

    async def close(self) -> None:
        """Close every provider's HTTP client."""
        for provider in self._providers.values():
            await provider.close()

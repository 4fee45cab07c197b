"""Unit tests for OAuth2 provider clients and the provider registry."""

# pylint: disable=redefined-outer-name,protected-access

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from cosmic_accounts.auth.pkce import PKCEChallenge
from cosmic_accounts.auth.providers import (
    GOOGLE_DEFAULT_SCOPES,
    GoogleProvider,
    MicrosoftProvider,
    ProviderRegistry,
    create_provider_from_settings,
)
from cosmic_accounts.config import AccountsSettings, GoogleSettings, MicrosoftSettings
from cosmic_accounts.exceptions import (
    AuthenticationError,
    TokenError,
    TokenRefreshError,
    UnknownProviderError,
)
from cosmic_accounts.models import Provider
from tests.conftest import REDIRECT_URI, StubIdentityProvider


def _query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


# ── Authorization URL ───────────────────────────────────────────────


class TestAuthorizeUrl:
    """Tests for build_authorize_url()."""

    def test_google_url(self, google: GoogleProvider) -> None:
        pkce = PKCEChallenge.generate()
        url = google.build_authorize_url("state-abc", pkce)
        assert url.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
        params = _query(url)
        assert params["response_type"] == "code"
        assert params["client_id"] == "client-123"
        assert params["redirect_uri"] == REDIRECT_URI
        assert params["state"] == "state-abc"
        assert params["scope"] == " ".join(GOOGLE_DEFAULT_SCOPES)
        assert params["code_challenge"] == pkce.challenge
        assert params["code_challenge_method"] == "S256"
        assert params["access_type"] == "offline"
        assert params["prompt"] == "consent"

    def test_verifier_never_in_url(self, google: GoogleProvider) -> None:
        pkce = PKCEChallenge.generate()
        url = google.build_authorize_url("s", pkce)
        assert pkce.verifier not in url

    def test_microsoft_url(self, microsoft: MicrosoftProvider) -> None:
        url = microsoft.build_authorize_url("s", PKCEChallenge.generate())
        assert url.startswith("https://login.microsoftonline.com/common/oauth2/v2.0/authorize?")
        params = _query(url)
        assert params["response_mode"] == "query"
        assert "access_type" not in params
        assert "offline_access" in params["scope"].split()

    def test_microsoft_tenant(self) -> None:
        provider = MicrosoftProvider(client_id="c", tenant_id="contoso")
        assert "/contoso/oauth2/v2.0/" in provider.authorize_url
        assert provider.token_url.endswith("/contoso/oauth2/v2.0/token")

    def test_custom_scopes(self) -> None:
        provider = GoogleProvider(client_id="c", scopes=["openid", "email"])
        url = provider.build_authorize_url("s", PKCEChallenge.generate())
        assert _query(url)["scope"] == "openid email"


# ── Token endpoint ──────────────────────────────────────────────────


class TestExchangeCode:
    """Tests for exchange_code()."""

    @pytest.mark.asyncio
    async def test_success(self, google: GoogleProvider, idp: StubIdentityProvider) -> None:
        tokens = await google.exchange_code("code-1", "verifier-1")
        assert tokens.access_token == "tok1"
        assert tokens.refresh_token == "refresh1"
        assert tokens.expires_in == 3600

        form = idp.token_requests()[0]
        assert form == {
            "grant_type": "authorization_code",
            "code": "code-1",
            "redirect_uri": REDIRECT_URI,
            "client_id": "client-123",
            "code_verifier": "verifier-1",
        }

    @pytest.mark.asyncio
    async def test_client_secret_sent_when_configured(self, idp: StubIdentityProvider) -> None:
        provider = GoogleProvider(client_id="c", client_secret="s3cret", redirect_uri=REDIRECT_URI)
        provider._http_client = httpx.AsyncClient(transport=idp.transport())
        await provider.exchange_code("code", "verifier")
        assert idp.token_requests()[0]["client_secret"] == "s3cret"

    @pytest.mark.asyncio
    async def test_rejected_code_keeps_provider_error(
        self, google: GoogleProvider, idp: StubIdentityProvider
    ) -> None:
        idp.token_status = 400
        idp.token_body = {"error": "invalid_grant", "error_description": "Bad code"}
        with pytest.raises(TokenError) as exc_info:
            await google.exchange_code("bad", "verifier")
        assert exc_info.value.context["error"] == "invalid_grant"
        assert exc_info.value.context["error_description"] == "Bad code"
        assert isinstance(exc_info.value.__cause__, httpx.HTTPStatusError)

    @pytest.mark.asyncio
    async def test_network_error(self) -> None:
        provider = GoogleProvider(client_id="c")

        def _fail(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        provider._http_client = httpx.AsyncClient(transport=httpx.MockTransport(_fail))
        with pytest.raises(TokenError, match="request failed"):
            await provider.exchange_code("c", "v")

    @pytest.mark.asyncio
    async def test_missing_access_token(
        self, google: GoogleProvider, idp: StubIdentityProvider
    ) -> None:
        idp.token_body = {"token_type": "Bearer"}
        with pytest.raises(TokenError, match="no access_token"):
            await google.exchange_code("c", "v")

    @pytest.mark.asyncio
    async def test_fractional_expires_in(
        self, google: GoogleProvider, idp: StubIdentityProvider
    ) -> None:
        idp.token_body = {"access_token": "at", "expires_in": "3599.5"}
        tokens = await google.exchange_code("c", "v")
        assert tokens.expires_in == 3599

    @pytest.mark.asyncio
    async def test_invalid_expires_in(
        self, google: GoogleProvider, idp: StubIdentityProvider
    ) -> None:
        idp.token_body = {"access_token": "at", "expires_in": "soon"}
        with pytest.raises(TokenError, match="invalid expires_in"):
            await google.exchange_code("c", "v")

    @pytest.mark.asyncio
    async def test_patched_client(self) -> None:
        """The shared client is created lazily from httpx.AsyncClient."""
        mock_response = MagicMock()
        mock_response.json.return_value = {"access_token": "at", "expires_in": 60}
        mock_response.raise_for_status = MagicMock()

        with patch("httpx.AsyncClient") as mock_client_cls:
            mock_client = AsyncMock()
            mock_client.post.return_value = mock_response
            mock_client.is_closed = False
            mock_client_cls.return_value = mock_client

            provider = GoogleProvider(client_id="c", timeout=5.0)
            tokens = await provider.exchange_code("code", "verifier")

        mock_client_cls.assert_called_once_with(timeout=5.0)
        assert tokens.access_token == "at"
        assert tokens.token_type == "Bearer"


class TestRefreshTokens:
    """Tests for refresh_tokens()."""

    @pytest.mark.asyncio
    async def test_keeps_refresh_token_when_not_rotated(
        self, google: GoogleProvider, idp: StubIdentityProvider
    ) -> None:
        idp.token_body = {"access_token": "tok2", "expires_in": 3600}
        tokens = await google.refresh_tokens("refresh-old")
        assert tokens.access_token == "tok2"
        assert tokens.refresh_token == "refresh-old"
        assert idp.token_requests()[0]["grant_type"] == "refresh_token"

    @pytest.mark.asyncio
    async def test_rotated_refresh_token(
        self, google: GoogleProvider, idp: StubIdentityProvider
    ) -> None:
        idp.token_body = {"access_token": "tok2", "refresh_token": "refresh-new"}
        tokens = await google.refresh_tokens("refresh-old")
        assert tokens.refresh_token == "refresh-new"

    @pytest.mark.asyncio
    async def test_failure_is_refresh_error(
        self, google: GoogleProvider, idp: StubIdentityProvider
    ) -> None:
        idp.token_status = 400
        idp.token_body = {"error": "invalid_grant"}
        with pytest.raises(TokenRefreshError) as exc_info:
            await google.refresh_tokens("revoked")
        assert exc_info.value.provider == "Google"

    @pytest.mark.asyncio
    async def test_missing_access_token_is_refresh_error(
        self, google: GoogleProvider, idp: StubIdentityProvider
    ) -> None:
        idp.token_body = {}
        with pytest.raises(TokenRefreshError):
            await google.refresh_tokens("rt")

    @pytest.mark.asyncio
    async def test_invalid_expires_in_is_refresh_error(
        self, google: GoogleProvider, idp: StubIdentityProvider
    ) -> None:
        idp.token_body = {"access_token": "tok2", "expires_in": {"seconds": 60}}
        with pytest.raises(TokenRefreshError, match="invalid expires_in"):
            await google.refresh_tokens("rt")


# ── Identity ────────────────────────────────────────────────────────


class TestIdentity:
    """Tests for fetch_identity() and the per-provider mappings."""

    @pytest.mark.asyncio
    async def test_google_identity(
        self, google: GoogleProvider, idp: StubIdentityProvider
    ) -> None:
        identity = await google.fetch_identity("tok1")
        assert identity.display_name == "Ada Lovelace"
        assert identity.username == "ada@example.com"
        assert identity.email == "ada@example.com"

        request = idp.identity_requests()[0]
        assert str(request.url) == "https://www.googleapis.com/oauth2/v2/userinfo"
        assert request.headers["Authorization"] == "Bearer tok1"

    def test_google_missing_name(self, google: GoogleProvider) -> None:
        identity = google.parse_identity({"email": "x@example.com"})
        assert identity.display_name == "Unknown"

    def test_microsoft_identity(self, microsoft: MicrosoftProvider) -> None:
        identity = microsoft.parse_identity(
            {
                "displayName": "Grace Hopper",
                "userPrincipalName": "grace@contoso.com",
                "mail": "grace.hopper@contoso.com",
            }
        )
        assert identity.display_name == "Grace Hopper"
        assert identity.username == "grace@contoso.com"
        assert identity.email == "grace.hopper@contoso.com"

    def test_microsoft_mail_falls_back_to_principal(self, microsoft: MicrosoftProvider) -> None:
        identity = microsoft.parse_identity({"userPrincipalName": "me@outlook.com", "mail": None})
        assert identity.email == "me@outlook.com"

    @pytest.mark.asyncio
    async def test_identity_failure(
        self, google: GoogleProvider, idp: StubIdentityProvider
    ) -> None:
        idp.identity_status = 401
        idp.identity_body = {"error": {"code": "InvalidAuthenticationToken", "message": "Expired"}}
        with pytest.raises(AuthenticationError) as exc_info:
            await google.fetch_identity("tok1")
        assert exc_info.value.context["error"] == "InvalidAuthenticationToken"


# ── Lifecycle ───────────────────────────────────────────────────────


class TestClientLifecycle:
    @pytest.mark.asyncio
    async def test_close(self) -> None:
        provider = GoogleProvider(client_id="c")
        client = await provider._get_client()
        assert not client.is_closed
        await provider.close()
        assert client.is_closed
        assert provider._http_client is None

    @pytest.mark.asyncio
    async def test_close_without_client(self) -> None:
        await GoogleProvider(client_id="c").close()


# ── Registry ────────────────────────────────────────────────────────


class TestProviderRegistry:
    """Tests for ProviderRegistry."""

    def test_get_by_enum_and_name(self, providers: ProviderRegistry) -> None:
        assert providers.get(Provider.GOOGLE).kind is Provider.GOOGLE
        assert providers.get("microsoft").kind is Provider.MICROSOFT
        assert providers.get("GOOGLE").kind is Provider.GOOGLE

    def test_unknown_name(self, providers: ProviderRegistry) -> None:
        with pytest.raises(UnknownProviderError):
            providers.get("github")

    def test_unconfigured_provider(self, google: GoogleProvider) -> None:
        registry = ProviderRegistry([google])
        with pytest.raises(UnknownProviderError) as exc_info:
            registry.get(Provider.MICROSOFT)
        assert exc_info.value.provider == "Microsoft"

    def test_names(self, providers: ProviderRegistry) -> None:
        assert providers.names() == ["Google", "Microsoft"]
        assert ProviderRegistry().names() == []

    def test_from_settings_only_registers_configured(self) -> None:
        settings = AccountsSettings(
            google=GoogleSettings(client_id="gid", scopes="openid email"),
            microsoft=MicrosoftSettings(),
        )
        registry = ProviderRegistry.from_settings(settings)
        assert registry.names() == ["Google"]
        assert registry.get("google").scopes == ["openid", "email"]

    def test_create_from_settings_uses_overrides(self) -> None:
        section = MicrosoftSettings(
            client_id="mid",
            tenant_id="contoso",
            token_url="http://localhost:9999/token",
        )
        provider = create_provider_from_settings(Provider.MICROSOFT, section, timeout=3.0)
        assert isinstance(provider, MicrosoftProvider)
        assert provider.token_url == "http://localhost:9999/token"
        assert "/contoso/" in provider.authorize_url
        assert provider.timeout == 3.0

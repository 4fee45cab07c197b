"""Pytest configuration and shared fixtures."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

from typing import Any
from urllib.parse import parse_qs

import httpx
import pytest

from cosmic_accounts.auth.credential_store import MemoryCredentialStore, reset_credential_store
from cosmic_accounts.auth.flow import AuthFlowEngine
from cosmic_accounts.auth.pending import MemoryPendingStore
from cosmic_accounts.auth.providers import GoogleProvider, MicrosoftProvider, ProviderRegistry
from cosmic_accounts.config import clear_settings
from cosmic_accounts.interface import AccountsService
from cosmic_accounts.models import Account, Provider
from cosmic_accounts.registry import AccountRegistry
from cosmic_accounts.services import ServiceExports
from cosmic_accounts.state import MemoryAccountRepository, MemoryNotificationBus


REDIRECT_URI = "http://127.0.0.1:8080/callback"


class StubIdentityProvider:
    """Canned token and identity endpoints behind an httpx.MockTransport.

    Attributes
    ----------
    token_status : int
        Status code returned by the token endpoint.
    token_body : dict
        JSON body returned by the token endpoint.
    identity_status : int
        Status code returned by the identity endpoint.
    identity_body : dict
        JSON body returned by the identity endpoint.
    requests : list[httpx.Request]
        Every request received, in order.
    """

    def __init__(self) -> None:
        self.token_status = 200
        self.token_body: dict[str, Any] = {
            "access_token": "tok1",
            "token_type": "Bearer",
            "expires_in": 3600,
            "refresh_token": "refresh1",
        }
        self.identity_status = 200
        self.identity_body: dict[str, Any] = {
            "name": "Ada Lovelace",
            "email": "ada@example.com",
        }
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        if request.url.path.endswith("/token"):
            return httpx.Response(self.token_status, json=self.token_body)
        return httpx.Response(self.identity_status, json=self.identity_body)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def token_requests(self) -> list[dict[str, str]]:
        """Decoded form bodies of every token endpoint request."""
        forms = []
        for request in self.requests:
            if request.url.path.endswith("/token"):
                parsed = parse_qs(request.content.decode("ascii"))
                forms.append({k: v[0] for k, v in parsed.items()})
        return forms

    def identity_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if not r.url.path.endswith("/token")]


def attach_transport(provider: Any, idp: StubIdentityProvider) -> None:
    """Route a provider's HTTP client through the stub endpoints."""
    provider._http_client = httpx.AsyncClient(transport=idp.transport())


def make_account(
    username: str = "ada@example.com",
    provider: Provider = Provider.GOOGLE,
    **kwargs: Any,
) -> Account:
    """Build an account with default capabilities."""
    kwargs.setdefault("display_name", "Ada Lovelace")
    kwargs.setdefault("email", username)
    kwargs.setdefault("capabilities", provider.default_capabilities())
    return Account(provider=provider, username=username, **kwargs)


# ── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def isolate_singletons(monkeypatch, tmp_path):
    """Keep cached settings, the credential store singleton and config files out of tests."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.delenv("COSMIC_ACCOUNTS_CONFIG_FILE", raising=False)
    clear_settings()
    reset_credential_store()
    yield
    clear_settings()
    reset_credential_store()


@pytest.fixture
def idp() -> StubIdentityProvider:
    return StubIdentityProvider()


@pytest.fixture
def google(idp: StubIdentityProvider) -> GoogleProvider:
    provider = GoogleProvider(client_id="client-123", redirect_uri=REDIRECT_URI)
    attach_transport(provider, idp)
    return provider


@pytest.fixture
def microsoft(idp: StubIdentityProvider) -> MicrosoftProvider:
    provider = MicrosoftProvider(client_id="ms-client", redirect_uri=REDIRECT_URI)
    attach_transport(provider, idp)
    return provider


@pytest.fixture
def providers(google: GoogleProvider, microsoft: MicrosoftProvider) -> ProviderRegistry:
    return ProviderRegistry([google, microsoft])


@pytest.fixture
def credential_store() -> MemoryCredentialStore:
    return MemoryCredentialStore()


@pytest.fixture
def pending_store() -> MemoryPendingStore:
    return MemoryPendingStore()


@pytest.fixture
def repository() -> MemoryAccountRepository:
    return MemoryAccountRepository()


@pytest.fixture
def registry(
    repository: MemoryAccountRepository,
    credential_store: MemoryCredentialStore,
) -> AccountRegistry:
    return AccountRegistry(repository, credential_store)


@pytest.fixture
def engine(
    providers: ProviderRegistry,
    credential_store: MemoryCredentialStore,
    pending_store: MemoryPendingStore,
    registry: AccountRegistry,
) -> AuthFlowEngine:
    return AuthFlowEngine(providers, credential_store, pending_store, registry)


@pytest.fixture
def bus() -> MemoryNotificationBus:
    return MemoryNotificationBus()


@pytest.fixture
def exports() -> ServiceExports:
    return ServiceExports()


@pytest.fixture
def service(
    engine: AuthFlowEngine,
    registry: AccountRegistry,
    bus: MemoryNotificationBus,
    exports: ServiceExports,
) -> AccountsService:
    return AccountsService(engine, registry, bus, exports)

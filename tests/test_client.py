"""Tests for the daemon client.

Request/response calls run against the real app through
``httpx.ASGITransport``; the event stream is fed canned SSE bodies
through ``httpx.MockTransport``.
"""

# pylint: disable=redefined-outer-name,protected-access

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import httpx
import pytest
import pytest_asyncio

from cosmic_accounts.client import AccountsClient, parse_event
from cosmic_accounts.exceptions import (
    AccountAlreadyExistsError,
    AccountNotFoundError,
    DaemonUnavailableError,
    InvalidArgumentsError,
    InvalidCapabilityError,
    InvalidStateError,
    StorageError,
    UnknownProviderError,
)
from cosmic_accounts.interface import AccountsService
from cosmic_accounts.models import Capability, Notification, NotificationKind, Provider
from cosmic_accounts.rpc import create_app, format_event


UNKNOWN_ID = "00000000-0000-0000-0000-000000000000"


@pytest_asyncio.fixture
async def client(service: AccountsService):
    client = AccountsClient(
        base_url="http://daemon",
        transport=httpx.ASGITransport(app=create_app(service)),
    )
    yield client
    await client.close()


async def _link(client: AccountsClient, provider: Provider | str = Provider.GOOGLE) -> str:
    url = await client.start_authentication(provider)
    state = parse_qs(urlparse(url).query)["state"][0]
    return await client.complete_authentication(state, "code")


def _sse_client(handler) -> AccountsClient:
    return AccountsClient(base_url="http://daemon", transport=httpx.MockTransport(handler))


# ── Requests ─────────────────────────────────────────────────────────


class TestAccountsClient:
    """Round trips through the daemon's routes."""

    @pytest.mark.asyncio
    async def test_link_list_and_get(self, client: AccountsClient) -> None:
        account_id = await _link(client)

        accounts = await client.list_accounts()
        assert [str(a.id) for a in accounts] == [account_id]
        account = await client.get_account(account_id)
        assert account.provider is Provider.GOOGLE
        assert account.username == "ada@example.com"
        assert await client.list_providers() == ["Google", "Microsoft"]

    @pytest.mark.asyncio
    async def test_toggles(self, client: AccountsClient) -> None:
        account_id = await _link(client)

        result = await client.set_capability_enabled(account_id, Capability.CALENDAR, False)
        assert result.account.capabilities[Capability.CALENDAR] is False
        assert result.warnings == []
        enabled = await client.list_enabled_accounts(Capability.CALENDAR)
        assert enabled == []
        assert len(await client.list_enabled_accounts("mail")) == 1

        result = await client.set_account_enabled(account_id, False)
        assert not result.account.enabled
        assert await client.list_enabled_accounts("mail") == []

    @pytest.mark.asyncio
    async def test_tokens_and_service_config(self, client: AccountsClient) -> None:
        account_id = await _link(client)

        assert await client.get_access_token(account_id) == "tok1"
        assert await client.get_refresh_token(account_id) == "refresh1"
        assert await client.ensure_credentials_fresh() == {}
        assert await client.ensure_credentials_fresh(account_id) == {}

        config = await client.get_service_config(account_id, Capability.EMAIL)
        assert config.service_type == "Mail"
        assert config.provider_type == "Google"
        assert config.settings["imap_host"] == "imap.gmail.com"

    @pytest.mark.asyncio
    async def test_remove(self, client: AccountsClient) -> None:
        account_id = await _link(client)
        await client.remove_account(account_id)
        assert await client.list_accounts() == []
        with pytest.raises(AccountNotFoundError) as exc_info:
            await client.get_account(account_id)
        assert exc_info.value.account_id == account_id


class TestErrorMapping:
    """Error bodies come back as the exception that produced them."""

    @pytest.mark.asyncio
    async def test_duplicate_link(self, client: AccountsClient) -> None:
        await _link(client)
        with pytest.raises(AccountAlreadyExistsError):
            await _link(client)

    @pytest.mark.asyncio
    async def test_unknown_provider(self, client: AccountsClient) -> None:
        with pytest.raises(UnknownProviderError):
            await client.start_authentication("github")

    @pytest.mark.asyncio
    async def test_invalid_state(self, client: AccountsClient) -> None:
        with pytest.raises(InvalidStateError):
            await client.complete_authentication("bogus", "code")

    @pytest.mark.asyncio
    async def test_unknown_and_malformed_ids(self, client: AccountsClient) -> None:
        with pytest.raises(AccountNotFoundError):
            await client.remove_account(UNKNOWN_ID)
        with pytest.raises(InvalidArgumentsError):
            await client.get_account("not-a-uuid")

    @pytest.mark.asyncio
    async def test_unoffered_capability(self, client: AccountsClient) -> None:
        account_id = await _link(client)
        with pytest.raises(InvalidCapabilityError):
            await client.get_service_config(account_id, "fax")

    @pytest.mark.asyncio
    async def test_request_validation_is_invalid_arguments(self, client: AccountsClient) -> None:
        with pytest.raises(InvalidArgumentsError) as exc_info:
            await client._request("POST", "/authentication", json={})
        assert exc_info.value.context["status_code"] == 422

    @pytest.mark.asyncio
    async def test_unreachable_daemon(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _sse_client(handler)
        with pytest.raises(DaemonUnavailableError, match="Cannot reach"):
            await client.list_accounts()
        await client.close()


# ── Event stream ─────────────────────────────────────────────────────


class TestEvents:
    """Tests for events() and parse_event()."""

    @staticmethod
    def _stream_body() -> str:
        return (
            format_event(Notification(NotificationKind.ACCOUNT_ADDED, "a1", 1.0))
            + ": keep-alive\n\n"
            + format_event(Notification(NotificationKind.ACCOUNT_ALREADY_EXISTS, None, 2.0))
            + format_event(Notification(NotificationKind.ACCOUNT_REMOVED, "a1", 3.0))
        )

    @pytest.mark.asyncio
    async def test_yields_notifications(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                text=self._stream_body(),
            )

        client = _sse_client(handler)
        notes = [n async for n in client.events()]
        await client.close()

        assert seen == ["/accounts/events"]
        assert notes == [
            Notification(NotificationKind.ACCOUNT_ADDED, "a1", 1.0),
            Notification(NotificationKind.ACCOUNT_ALREADY_EXISTS, None, 2.0),
            Notification(NotificationKind.ACCOUNT_REMOVED, "a1", 3.0),
        ]

    @pytest.mark.asyncio
    async def test_kind_filter(self) -> None:
        client = _sse_client(
            lambda request: httpx.Response(200, text=self._stream_body())
        )
        notes = [n async for n in client.events(kinds=["AccountRemoved"])]
        await client.close()
        assert [n.kind for n in notes] == [NotificationKind.ACCOUNT_REMOVED]

    @pytest.mark.asyncio
    async def test_error_status(self) -> None:
        client = _sse_client(
            lambda request: httpx.Response(
                500, json={"error": "storage_error", "error_description": "bus closed"}
            )
        )
        with pytest.raises(StorageError, match="bus closed"):
            async for _ in client.events():
                pass
        await client.close()

    def test_parse_event_skips_comments(self) -> None:
        assert parse_event([": keep-alive"]) is None

    def test_parse_event_malformed(self) -> None:
        with pytest.raises(DaemonUnavailableError):
            parse_event(["event: AccountAdded", 'data: {"kind": "Nope"}'])

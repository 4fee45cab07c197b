"""Client for a running accounts daemon.

Wraps the daemon's ``/accounts`` routes in an ``httpx.AsyncClient`` for
other desktop components. Error bodies are turned back into the
:class:`~cosmic_accounts.exceptions.AccountsException` they came from, so
callers handle the same exception types in-process and over the wire.
"""

from __future__ import annotations

import json
import logging

from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncIterator, Iterable

import httpx

from .exceptions import AccountsException, DaemonUnavailableError, InvalidArgumentsError
from .interface import MutationResult
from .models import Account, Notification, NotificationKind
from .rpc import exception_for
from .services import ServiceConfig


if TYPE_CHECKING:
    from .models import Capability, Provider


logger = logging.getLogger("cosmic_accounts.client")

DEFAULT_BASE_URL = "http://127.0.0.1:8080"


def _name(value: Enum | str) -> str:
    return value.value if isinstance(value, Enum) else value


def _raise_for_error(resp: httpx.Response) -> None:
    """Raise the AccountsException an error response stands for."""
    if resp.is_success:
        return
    try:
        body = resp.json()
    except ValueError:
        body = None

    if isinstance(body, dict) and isinstance(body.get("error"), str):
        exc_type = exception_for(body["error"])
        message = body.get("error_description") or body["error"]
        context: dict[str, Any] = {}
        if body.get("account_id") is not None:
            context["account_id"] = body["account_id"]
        raise exc_type(message, **context)

    if resp.is_client_error:
        # FastAPI request validation ({"detail": [...]}) and unknown routes
        raise InvalidArgumentsError(
            f"Request rejected by the accounts daemon: {resp.status_code}",
            status_code=resp.status_code,
        )
    raise AccountsException(
        f"Accounts daemon failed: {resp.status_code}",
        status_code=resp.status_code,
    )


def parse_event(lines: list[str]) -> Notification | None:
    """Decode one Server-Sent-Events frame into a Notification.

    Frames without a ``data`` field (comments, keep-alives) yield None.
    """
    data = "\n".join(line[5:].lstrip(" ") for line in lines if line.startswith("data:"))
    if not data:
        return None
    try:
        obj = json.loads(data)
        return Notification(
            kind=NotificationKind(obj["kind"]),
            account_id=obj.get("account_id"),
            timestamp=float(obj["timestamp"]),
        )
    except (ValueError, KeyError, TypeError) as exc:
        msg = f"Malformed event from the accounts daemon: {data!r}"
        raise DaemonUnavailableError(msg) from exc


class AccountsClient:
    """Async client for the accounts daemon.

    Parameters
    ----------
    base_url : str
        Where the daemon listens (default ``http://127.0.0.1:8080``).
    timeout : float
        Request timeout in seconds. The event stream has no read timeout.
    transport : httpx.AsyncBaseTransport, optional
        Custom transport (e.g. ``httpx.ASGITransport`` in tests).

    Examples
    --------
    >>> async with AccountsClient() as client:
    ...     url = await client.start_authentication("google")
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> AccountsClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        """Close the shared HTTP client."""
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        client = await self._get_client()
        try:
            resp = await client.request(method, f"/accounts{path}", **kwargs)
        except httpx.TransportError as exc:
            msg = f"Cannot reach the accounts daemon at {self.base_url}: {exc}"
            raise DaemonUnavailableError(msg) from exc
        _raise_for_error(resp)
        try:
            return resp.json()
        except ValueError as exc:
            msg = "Accounts daemon returned a malformed response"
            raise DaemonUnavailableError(msg) from exc

    # ── Queries ────────────────────────────────────────────────────

    async def list_accounts(self) -> list[Account]:
        body = await self._request("GET", "")
        return [Account.model_validate(item) for item in body["accounts"]]

    async def list_enabled_accounts(self, capability: Capability | str) -> list[Account]:
        """Enabled accounts that have ``capability`` switched on."""
        body = await self._request("GET", "/enabled", params={"capability": _name(capability)})
        return [Account.model_validate(item) for item in body["accounts"]]

    async def list_providers(self) -> list[str]:
        body = await self._request("GET", "/providers")
        return list(body["providers"])

    async def get_account(self, account_id: str) -> Account:
        return Account.model_validate(await self._request("GET", f"/{account_id}"))

    async def get_service_config(
        self, account_id: str, capability: Capability | str
    ) -> ServiceConfig:
        body = await self._request("GET", f"/{account_id}/services/{_name(capability)}")
        return ServiceConfig(
            service_type=body["service_type"],
            provider_type=body["provider_type"],
            settings=dict(body.get("settings") or {}),
        )

    # ── Authentication ─────────────────────────────────────────────

    async def start_authentication(self, provider: Provider | str) -> str:
        """Begin linking an account; returns the URL to open in a browser."""
        body = await self._request(
            "POST", "/authentication", json={"provider": _name(provider)}
        )
        return body["authorization_url"]

    async def complete_authentication(self, state: str, code: str) -> str:
        """Finish a flow from its redirect parameters; returns the new account id."""
        body = await self._request(
            "POST", "/authentication/complete", json={"state": state, "code": code}
        )
        return body["account_id"]

    # ── Mutations ──────────────────────────────────────────────────

    async def remove_account(self, account_id: str) -> None:
        await self._request("DELETE", f"/{account_id}")

    async def set_account_enabled(self, account_id: str, enabled: bool) -> MutationResult:
        body = await self._request("PUT", f"/{account_id}/enabled", json={"enabled": enabled})
        return self._mutation(body)

    async def set_capability_enabled(
        self, account_id: str, capability: Capability | str, enabled: bool
    ) -> MutationResult:
        body = await self._request(
            "PUT", f"/{account_id}/capabilities/{_name(capability)}", json={"enabled": enabled}
        )
        return self._mutation(body)

    @staticmethod
    def _mutation(body: dict[str, Any]) -> MutationResult:
        return MutationResult(
            account=Account.model_validate(body["account"]),
            warnings=list(body.get("warnings") or []),
        )

    # ── Credentials ────────────────────────────────────────────────

    async def ensure_credentials_fresh(self, account_id: str | None = None) -> dict[str, str]:
        """Refresh expired credentials; returns per-account failures for a bulk call."""
        body = await self._request(
            "POST", "/credentials/refresh", json={"account_id": account_id}
        )
        return dict(body["failures"])

    async def get_access_token(self, account_id: str) -> str:
        body = await self._request("GET", f"/{account_id}/access-token")
        return body["access_token"]

    async def get_refresh_token(self, account_id: str) -> str:
        body = await self._request("GET", f"/{account_id}/refresh-token")
        return body["refresh_token"]

    # ── Notifications ──────────────────────────────────────────────

    async def events(
        self, kinds: Iterable[NotificationKind | str] | None = None
    ) -> AsyncIterator[Notification]:
        """Yield change notifications from the daemon's event stream.

        Parameters
        ----------
        kinds : iterable of NotificationKind or str, optional
            Only yield these kinds (e.g. just ``AccountAdded``).

        Raises
        ------
        DaemonUnavailableError
            If the daemon cannot be reached or the stream breaks.
        """
        wanted = {NotificationKind(kind) for kind in kinds} if kinds is not None else None
        client = await self._get_client()
        try:
            async with client.stream(
                "GET",
                "/accounts/events",
                timeout=httpx.Timeout(self.timeout, read=None),
            ) as resp:
                if not resp.is_success:
                    await resp.aread()
                    _raise_for_error(resp)
                logger.debug("Subscribed to change notifications at %s", self.base_url)

                frame: list[str] = []
                async for line in resp.aiter_lines():
                    if line:
                        frame.append(line)
                        continue
                    notification = parse_event(frame)
                    frame = []
                    if notification is None:
                        continue
                    if wanted is None or notification.kind in wanted:
                        yield notification
        except httpx.TransportError as exc:
            msg = f"Event stream from {self.base_url} failed: {exc}"
            raise DaemonUnavailableError(msg) from exc

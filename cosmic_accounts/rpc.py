"""Local RPC transport for the accounts interface.

Exposes :class:`~cosmic_accounts.interface.AccountsService` as JSON routes
under ``/accounts`` and its notifications as a Server-Sent-Events stream.
This is the only place the internal exception hierarchy is converted into
transport responses.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import json
import logging

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from .auth.callback_routes import create_callback_router
from .exceptions import (
    AccountAlreadyExistsError,
    AccountNotFoundError,
    AccountsException,
    AuthenticationError,
    CredentialStoreError,
    InvalidArgumentsError,
    InvalidCapabilityError,
    InvalidStateError,
    PartialRemovalError,
    PersistError,
    RemoveError,
    StorageError,
    TokenExpiredError,
    TokenRefreshError,
    UnknownProviderError,
)


if TYPE_CHECKING:
    from .config import AccountsSettings
    from .interface import AccountsService, MutationResult
    from .models import Account, Notification
    from .state import Subscription


logger = logging.getLogger("cosmic_accounts.rpc")


# Most specific first; the first isinstance match wins
_ERROR_STATUS: list[tuple[type[AccountsException], int, str]] = [
    (AccountNotFoundError, 404, "not_found"),
    (UnknownProviderError, 400, "unknown_provider"),
    (InvalidCapabilityError, 400, "invalid_capability"),
    (InvalidArgumentsError, 400, "invalid_arguments"),
    (InvalidStateError, 400, "invalid_state"),
    (AccountAlreadyExistsError, 409, "account_exists"),
    (TokenExpiredError, 401, "token_expired"),
    (TokenRefreshError, 502, "token_refresh_failed"),
    (AuthenticationError, 502, "auth_failed"),
    (PartialRemovalError, 500, "partial_removal"),
    (RemoveError, 500, "remove_failed"),
    (PersistError, 500, "persist_failed"),
    (CredentialStoreError, 500, "persist_failed"),
    (StorageError, 500, "storage_error"),
]


def error_status(exc: AccountsException) -> tuple[int, str]:
    """Map an internal error onto an HTTP status and an error code."""
    for exc_type, status, code in _ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status, code
    return 500, "internal_error"


def exception_for(code: str) -> type[AccountsException]:
    """Map an error code back onto the exception type it stands for."""
    for exc_type, _, known in _ERROR_STATUS:
        if known == code:
            return exc_type
    return AccountsException


def install_error_handlers(app: FastAPI) -> None:
    """Register the single AccountsException -> JSON response conversion."""

    @app.exception_handler(AccountsException)
    async def _accounts_exception_handler(
        request: Request,
        exc: AccountsException,
    ) -> JSONResponse:
        status, code = error_status(exc)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        content: dict[str, Any] = {"error": code, "error_description": exc.message}
        account_id = exc.context.get("account_id")
        if account_id is not None:
            content["account_id"] = account_id
        return JSONResponse(status_code=status, content=content)


class StartAuthenticationRequest(BaseModel):
    provider: str


class CompleteAuthenticationRequest(BaseModel):
    state: str
    code: str


class EnabledRequest(BaseModel):
    enabled: bool


class RefreshRequest(BaseModel):
    account_id: str | None = None


def _account(account: Account) -> dict[str, Any]:
    return account.model_dump(mode="json")


def _mutation(result: MutationResult) -> dict[str, Any]:
    return {"account": _account(result.account), "warnings": result.warnings}


def format_event(notification: Notification) -> str:
    """Render one notification as a Server-Sent-Events frame."""
    return f"event: {notification.kind.value}\ndata: {json.dumps(notification.to_dict())}\n\n"


async def _event_stream(subscription: Subscription) -> AsyncIterator[str]:
    try:
        async for notification in subscription:
            yield format_event(notification)
    finally:
        await subscription.close()


def create_accounts_router(service: AccountsService) -> APIRouter:  # noqa: C901
    """Create a FastAPI router exposing the accounts interface.

    Parameters
    ----------
    service : AccountsService
        The facade every route delegates to.

    Returns
    -------
    APIRouter
        Router mounted at ``/accounts``.
    """
    router = APIRouter(prefix="/accounts", tags=["accounts"])

    # Static paths are registered before ``/{account_id}``

    @router.get("")
    async def list_accounts() -> dict[str, Any]:
        return {"accounts": [_account(a) for a in await service.list_accounts()]}

    @router.get("/providers")
    async def list_providers() -> dict[str, Any]:
        return {"providers": service.list_providers()}

    @router.get("/enabled")
    async def list_enabled_accounts(capability: str) -> dict[str, Any]:
        accounts = await service.list_enabled_accounts(capability)
        return {"accounts": [_account(a) for a in accounts]}

    @router.get("/events")
    async def events() -> StreamingResponse:
        """Stream change notifications as Server-Sent Events."""
        subscription = await service.subscribe()
        return StreamingResponse(
            _event_stream(subscription),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    @router.post("/authentication")
    async def start_authentication(body: StartAuthenticationRequest) -> dict[str, Any]:
        url = await service.start_authentication(body.provider)
        return {"authorization_url": url}

    @router.post("/authentication/complete")
    async def complete_authentication(body: CompleteAuthenticationRequest) -> dict[str, Any]:
        account_id = await service.complete_authentication(body.state, body.code)
        return {"account_id": account_id}

    @router.post("/credentials/refresh")
    async def ensure_credentials_fresh(body: RefreshRequest) -> dict[str, Any]:
        failures = await service.ensure_credentials_fresh(body.account_id)
        return {"failures": failures}

    @router.get("/{account_id}")
    async def get_account(account_id: str) -> dict[str, Any]:
        return _account(await service.get_account(account_id))

    @router.delete("/{account_id}")
    async def remove_account(account_id: str) -> dict[str, Any]:
        await service.remove_account(account_id)
        return {"removed": account_id}

    @router.put("/{account_id}/enabled")
    async def set_account_enabled(account_id: str, body: EnabledRequest) -> dict[str, Any]:
        return _mutation(await service.set_account_enabled(account_id, body.enabled))

    @router.put("/{account_id}/capabilities/{capability}")
    async def set_capability_enabled(
        account_id: str,
        capability: str,
        body: EnabledRequest,
    ) -> dict[str, Any]:
        result = await service.set_capability_enabled(account_id, capability, body.enabled)
        return _mutation(result)

    @router.get("/{account_id}/access-token")
    async def get_access_token(account_id: str) -> dict[str, Any]:
        return {"access_token": await service.get_access_token(account_id)}

    @router.get("/{account_id}/refresh-token")
    async def get_refresh_token(account_id: str) -> dict[str, Any]:
        return {"refresh_token": await service.get_refresh_token(account_id)}

    @router.get("/{account_id}/services/{capability}")
    async def get_service_config(account_id: str, capability: str) -> dict[str, Any]:
        config = await service.get_service_config(account_id, capability)
        return config.to_dict()

    return router


def create_app(service: AccountsService, settings: AccountsSettings | None = None) -> FastAPI:
    """Build the daemon's FastAPI application.

    Parameters
    ----------
    service : AccountsService
        The accounts interface.
    settings : AccountsSettings, optional
        Used for the redirect path; defaults to ``/callback``.

    Returns
    -------
    FastAPI
        App serving the accounts routes, the event stream, and the
        OAuth2 redirect receiver.
    """

    @asynccontextmanager
    async def _lifespan(
        app: FastAPI,  # pylint: disable=unused-argument
    ) -> AsyncIterator[None]:
        await service.start()
        try:
            yield
        finally:
            await service.close()

    callback_path = settings.server.callback_path if settings is not None else "/callback"

    app = FastAPI(title="cosmic-accounts", lifespan=_lifespan)
    app.include_router(create_accounts_router(service))
    app.include_router(create_callback_router(service, callback_path))
    install_error_handlers(app)
    return app

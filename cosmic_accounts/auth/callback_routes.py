"""OAuth2 redirect receiver.

Serves the provider's redirect on the local listener, forwards
``(state, code)`` unmodified into ``complete_authentication``, and renders
a small result page. A provider-reported error, or a redirect missing
``code`` or ``state``, never reaches the accounts core.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import html
import logging

from typing import TYPE_CHECKING

from fastapi import APIRouter
from fastapi.responses import HTMLResponse

from ..exceptions import AccountAlreadyExistsError, AccountNotFoundError, AccountsException


if TYPE_CHECKING:
    from ..interface import AccountsService


logger = logging.getLogger("cosmic_accounts.auth")

_PAGE_STYLE = """
  body {{ font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
         display: flex; align-items: center; justify-content: center;
         height: 100vh; margin: 0; background: #f0f2f5; color: #1a1a2e; }}
  .card {{ text-align: center; padding: 2rem 3rem; background: white;
          border-radius: 12px; box-shadow: 0 2px 12px rgba(0,0,0,.08); }}
  h1 {{ font-size: 1.5rem; margin-bottom: 0.5rem; }}
  h1.error {{ color: #cc0000; }}
  p {{ color: #666; }}
"""

_SUCCESS_HTML = (
    """<!DOCTYPE html>
<html>
<head><title>Account Linked</title>
<style>"""
    + _PAGE_STYLE
    + """</style></head>
<body><div class="card">
  <h1>&#x2705; Account Linked</h1>
  <p>{name} was added. You can close this window.</p>
</div></body></html>"""
)

_ERROR_HTML = (
    """<!DOCTYPE html>
<html>
<head><title>Authentication Error</title>
<style>"""
    + _PAGE_STYLE
    + """</style></head>
<body><div class="card">
  <h1 class="error">&#x274C; {title}</h1>
  <p>{error}</p>
</div></body></html>"""
)


def _error_page(
    message: str,
    status_code: int,
    title: str = "Authentication Failed",
) -> HTMLResponse:
    return HTMLResponse(
        _ERROR_HTML.format(title=html.escape(title), error=html.escape(message)),
        status_code=status_code,
    )


def create_callback_router(service: AccountsService, path: str = "/callback") -> APIRouter:
    """Create a FastAPI router serving the OAuth2 redirect.

    Parameters
    ----------
    service : AccountsService
        The accounts interface to complete flows against.
    path : str
        Path of the redirect URI registered with the providers.

    Returns
    -------
    APIRouter
        Router with a single GET route at ``path``.
    """
    router = APIRouter(tags=["authentication"])

    @router.get(path, response_class=HTMLResponse)
    async def oauth_callback(
        code: str | None = None,
        state: str | None = None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> HTMLResponse:
        """Handle the provider's redirect after the user consents (or declines)."""
        if error:
            logger.warning("Provider reported an authorization error: %s", error)
            return _error_page(error_description or error, 400)

        if not code or not state:
            return _error_page("The redirect is missing its code or state parameter.", 400)

        try:
            account_id = await service.complete_authentication(state, code)
        except AccountAlreadyExistsError:
            return _error_page(
                "This account is already linked.", 409, title="Account Already Linked"
            )
        except AccountsException as exc:
            logger.warning("Completing authorization failed: %s", exc)
            return _error_page(exc.message, 400)

        try:
            name = (await service.get_account(account_id)).username
        except AccountNotFoundError:
            # Removed again before the page was rendered
            name = "The account"
        return HTMLResponse(_SUCCESS_HTML.format(name=html.escape(name)))

    return router

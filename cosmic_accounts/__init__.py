"""cosmic-accounts: online accounts daemon for the desktop.

Links Google and Microsoft accounts through the OAuth2 authorization-code
flow with PKCE, keeps their tokens in the OS secret store, refreshes them
on demand, and exposes the account registry to other desktop components.
"""

from __future__ import annotations

from .auth import AuthFlowEngine, ProviderRegistry
from .client import AccountsClient
from .config import AccountsSettings, clear_settings, get_settings, reload_settings
from .exceptions import AccountsException
from .interface import AccountsService, MutationResult, create_service_from_settings
from .models import Account, Capability, Credential, Notification, NotificationKind, Provider
from .registry import AccountRegistry


__version__ = "0.1.0"

__all__ = [
    "Account",
    "AccountRegistry",
    "AccountsClient",
    "AccountsException",
    "AccountsService",
    "AccountsSettings",
    "AuthFlowEngine",
    "Capability",
    "Credential",
    "MutationResult",
    "Notification",
    "NotificationKind",
    "Provider",
    "ProviderRegistry",
    "__version__",
    "clear_settings",
    "create_service_from_settings",
    "get_settings",
    "reload_settings",
]

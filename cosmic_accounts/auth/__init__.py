"""OAuth2 authentication for cosmic-accounts.

Provides the provider clients, PKCE helpers, credential and
pending-authorization stores, the flow engine, and the redirect receiver.
"""

from __future__ import annotations

from .credential_store import (
    CredentialStore,
    KeyringCredentialStore,
    MemoryCredentialStore,
    RedisCredentialStore,
    get_credential_store,
    reset_credential_store,
)
from .flow import AuthFlowEngine
from .pending import (
    MemoryPendingStore,
    PendingAuthorizationStore,
    RedisPendingStore,
)
from .pkce import PKCEChallenge, generate_state_token
from .providers import (
    GoogleProvider,
    MicrosoftProvider,
    OAuthProvider,
    ProviderRegistry,
    create_provider_from_settings,
)


__all__ = [
    "AuthFlowEngine",
    "CredentialStore",
    "GoogleProvider",
    "KeyringCredentialStore",
    "MemoryCredentialStore",
    "MemoryPendingStore",
    "MicrosoftProvider",
    "OAuthProvider",
    "PKCEChallenge",
    "PendingAuthorizationStore",
    "ProviderRegistry",
    "RedisCredentialStore",
    "RedisPendingStore",
    "create_provider_from_settings",
    "generate_state_token",
    "get_credential_store",
    "reset_credential_store",
]

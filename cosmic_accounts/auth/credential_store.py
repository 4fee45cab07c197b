"""Pluggable credential storage backends.

Provides the CredentialStore ABC and concrete implementations for
in-memory, OS keyring, and Redis-backed secret persistence. Every
backend keys credentials by account id and performs exactly one
backend write per ``save`` or ``delete``.
"""

from __future__ import annotations

import asyncio
import logging
import threading

from abc import ABC, abstractmethod
from typing import Any

import keyring
import keyring.errors

from redis.asyncio import Redis as RedisClient
from redis.exceptions import RedisError

from ..exceptions import CredentialStoreError
from ..models import Credential


logger = logging.getLogger("cosmic_accounts.auth")

DEFAULT_SERVICE_NAME = "cosmic-accounts"


class CredentialStore(ABC):
    """Abstract base class for account credential storage.

    All methods are async to support both local and network-backed stores.
    """

    @abstractmethod
    async def save(self, account_id: str, credential: Credential) -> None:
        """Create or replace the credential for ``account_id``.

        Parameters
        ----------
        account_id : str
            The owning account's id.
        credential : Credential
            The credential to persist.

        Raises
        ------
        CredentialStoreError
            If the backend rejects the write.
        """

    @abstractmethod
    async def load(self, account_id: str) -> Credential | None:
        """Load the credential for ``account_id``.

        Returns
        -------
        Credential or None
            The stored credential, or None if there is none.
        """

    @abstractmethod
    async def delete(self, account_id: str) -> None:
        """Delete the credential for ``account_id``. Missing entries are a no-op.

        Raises
        ------
        CredentialStoreError
            If the backend fails to delete an existing entry.
        """

    async def exists(self, account_id: str) -> bool:
        """Check whether a credential is stored for ``account_id``."""
        return await self.load(account_id) is not None


class MemoryCredentialStore(CredentialStore):
    """In-memory credential store for tests and ephemeral sessions.

    Stores the serialized form so callers never share mutable state
    with the store.
    """

    def __init__(self) -> None:
        """Initialize the memory credential store."""
        self._credentials: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def save(self, account_id: str, credential: Credential) -> None:
        async with self._lock:
            self._credentials[account_id] = credential.to_json()

    async def load(self, account_id: str) -> Credential | None:
        async with self._lock:
            data = self._credentials.get(account_id)
        if data is None:
            return None
        return Credential.from_json(data)

    async def delete(self, account_id: str) -> None:
        async with self._lock:
            self._credentials.pop(account_id, None)

    async def exists(self, account_id: str) -> bool:
        async with self._lock:
            return account_id in self._credentials

    def raw(self, account_id: str) -> str | None:
        """Return the stored serialized credential (for inspection in tests)."""
        return self._credentials.get(account_id)


class KeyringCredentialStore(CredentialStore):
    """OS secret store backed credential store.

    Each credential is stored as one secret item under ``service_name``
    with the account id as the item's user name. Writes replace any
    existing item.

    Parameters
    ----------
    service_name : str
        Service name for keyring items (default "cosmic-accounts").
    """

    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME) -> None:
        """Initialize the keyring credential store."""
        self._service_name = service_name

    async def _run(self, func: Any, *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def save(self, account_id: str, credential: Credential) -> None:
        try:
            await self._run(
                keyring.set_password, self._service_name, account_id, credential.to_json()
            )
        except keyring.errors.KeyringError as exc:
            msg = f"Failed to write secret: {exc}"
            raise CredentialStoreError(msg, account_id=account_id) from exc

    async def load(self, account_id: str) -> Credential | None:
        try:
            data = await self._run(keyring.get_password, self._service_name, account_id)
        except keyring.errors.KeyringError as exc:
            msg = f"Failed to read secret: {exc}"
            raise CredentialStoreError(msg, account_id=account_id) from exc
        if data is None:
            return None
        try:
            return Credential.from_json(data)
        except (ValueError, KeyError) as exc:
            msg = "Stored secret is not a valid credential"
            raise CredentialStoreError(msg, account_id=account_id) from exc

    async def delete(self, account_id: str) -> None:
        try:
            await self._run(keyring.delete_password, self._service_name, account_id)
        except keyring.errors.PasswordDeleteError:
            logger.debug("No secret to delete for account %s", account_id)
        except keyring.errors.KeyringError as exc:
            msg = f"Failed to delete secret: {exc}"
            raise CredentialStoreError(msg, account_id=account_id) from exc


class RedisCredentialStore(CredentialStore):
    """Redis-backed credential store.

    Credentials are stored without TTL; an expired access token is still
    needed for its refresh token.

    Parameters
    ----------
    redis_url : str
        Redis connection URL.
    prefix : str
        Key prefix for namespacing (default "cosmic-accounts").
    pool_size : int
        Connection pool size (default 10).
    redis_client : Any, optional
        Pre-built async client (e.g. fakeredis in tests).
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = DEFAULT_SERVICE_NAME,
        pool_size: int = 10,
        redis_client: Any = None,
    ) -> None:
        """Initialize the Redis credential store."""
        self._prefix = prefix
        self._redis: Any = redis_client or RedisClient.from_url(
            redis_url,
            max_connections=pool_size,
            decode_responses=True,
        )

    def _key(self, account_id: str) -> str:
        """Build a Redis key with prefix."""
        return f"{self._prefix}:credentials:{account_id}"

    async def save(self, account_id: str, credential: Credential) -> None:
        try:
            await self._redis.set(self._key(account_id), credential.to_json())
        except RedisError as exc:
            msg = f"Failed to write secret: {exc}"
            raise CredentialStoreError(msg, account_id=account_id) from exc

    async def load(self, account_id: str) -> Credential | None:
        try:
            data = await self._redis.get(self._key(account_id))
        except RedisError as exc:
            msg = f"Failed to read secret: {exc}"
            raise CredentialStoreError(msg, account_id=account_id) from exc
        if data is None:
            return None
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        try:
            return Credential.from_json(data)
        except (ValueError, KeyError) as exc:
            msg = "Stored secret is not a valid credential"
            raise CredentialStoreError(msg, account_id=account_id) from exc

    async def delete(self, account_id: str) -> None:
        try:
            await self._redis.delete(self._key(account_id))
        except RedisError as exc:
            msg = f"Failed to delete secret: {exc}"
            raise CredentialStoreError(msg, account_id=account_id) from exc

    async def exists(self, account_id: str) -> bool:
        try:
            return bool(await self._redis.exists(self._key(account_id)))
        except RedisError as exc:
            msg = f"Failed to read secret: {exc}"
            raise CredentialStoreError(msg, account_id=account_id) from exc

    async def close(self) -> None:
        """Close the Redis connection pool."""
        await self._redis.aclose()


_store_instance: CredentialStore | None = None
_store_lock = threading.Lock()


def get_credential_store(backend: str = "keyring", **kwargs: Any) -> CredentialStore:
    """Factory function for credential stores.

    Returns a singleton instance. Call ``reset_credential_store()`` to clear
    the cached instance (e.g. in tests).

    Parameters
    ----------
    backend : str
        Storage backend: "memory", "keyring", or "redis".
    **kwargs : Any
        Additional keyword arguments passed to the store constructor.

    Returns
    -------
    CredentialStore
        A configured credential store instance.
    """
    global _store_instance  # noqa: PLW0603

    with _store_lock:
        if _store_instance is not None:
            return _store_instance

        if backend == "memory":
            _store_instance = MemoryCredentialStore()
        elif backend == "keyring":
            _store_instance = KeyringCredentialStore(
                service_name=kwargs.get("service_name", DEFAULT_SERVICE_NAME),
            )
        elif backend == "redis":
            _store_instance = RedisCredentialStore(
                redis_url=kwargs.get("redis_url", "redis://localhost:6379/0"),
                prefix=kwargs.get("prefix", DEFAULT_SERVICE_NAME),
                pool_size=kwargs.get("pool_size", 10),
            )
        else:
            msg = f"Unknown credential store backend: {backend}"
            raise ValueError(msg)

        return _store_instance


def reset_credential_store() -> None:
    """Reset the singleton credential store instance."""
    global _store_instance  # noqa: PLW0603

    with _store_lock:
        _store_instance = None

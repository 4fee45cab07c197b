"""Pending-authorization tables.

A pending authorization is created by ``start_auth_flow`` and consumed
exactly once by the matching ``complete_auth_flow``. Both backends make
the lookup-and-remove a single atomic operation, so a state token can
never be redeemed twice.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time

from abc import ABC, abstractmethod
from typing import Any, Callable

from redis.asyncio import Redis as RedisClient
from redis.exceptions import RedisError

from ..exceptions import StorageError
from ..models import PendingAuthorization


logger = logging.getLogger("cosmic_accounts.auth")

DEFAULT_MAX_PENDING = 1000
DEFAULT_MAX_AGE = 600.0


class PendingAuthorizationStore(ABC):
    """Abstract single-use table of pending authorizations keyed by state token."""

    @abstractmethod
    async def put(self, pending: PendingAuthorization) -> None:
        """Record a pending authorization under its state token."""

    @abstractmethod
    async def pop(self, state_token: str) -> PendingAuthorization | None:
        """Atomically retrieve and remove a pending authorization.

        Returns
        -------
        PendingAuthorization or None
            The entry, or None if it is unknown, expired, or already consumed.
        """

    @abstractmethod
    async def contains(self, state_token: str) -> bool:
        """Check whether a live entry exists for ``state_token``."""

    @abstractmethod
    async def size(self) -> int:
        """Return the current number of live pending entries."""


class MemoryPendingStore(PendingAuthorizationStore):
    """Bounded, TTL-enforced in-process pending table.

    Thread-safe via ``asyncio.Lock``. Evicts expired entries on every
    access and enforces a hard capacity limit by dropping the oldest entry.

    Parameters
    ----------
    max_pending : int
        Maximum number of concurrent pending authorizations.
    max_age : float
        Maximum age of a pending entry in seconds before auto-eviction.
    clock : callable, optional
        Source of the current Unix time (for tests).
    """

    def __init__(
        self,
        max_pending: int = DEFAULT_MAX_PENDING,
        max_age: float = DEFAULT_MAX_AGE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store: dict[str, PendingAuthorization] = {}
        self._lock = asyncio.Lock()
        self._max_pending = max_pending
        self._max_age = max_age
        self._clock = clock

    async def put(self, pending: PendingAuthorization) -> None:
        async with self._lock:
            self._evict_expired()
            if len(self._store) >= self._max_pending:
                oldest_key = min(self._store, key=lambda k: self._store[k].created_at)
                del self._store[oldest_key]
                logger.warning("Pending authorization table full, evicted oldest entry")
            self._store[pending.state_token] = pending

    async def pop(self, state_token: str) -> PendingAuthorization | None:
        async with self._lock:
            self._evict_expired()
            return self._store.pop(state_token, None)

    async def contains(self, state_token: str) -> bool:
        async with self._lock:
            self._evict_expired()
            return state_token in self._store

    async def size(self) -> int:
        async with self._lock:
            self._evict_expired()
            return len(self._store)

    async def cleanup(self) -> int:
        """Explicitly clean up expired entries. Returns count removed."""
        async with self._lock:
            before = len(self._store)
            self._evict_expired()
            return before - len(self._store)

    def _evict_expired(self) -> None:
        """Remove all expired entries (caller must hold lock)."""
        now = self._clock()
        expired = [k for k, v in self._store.items() if now - v.created_at > self._max_age]
        for k in expired:
            del self._store[k]


class RedisPendingStore(PendingAuthorizationStore):
    """Redis-backed pending table for daemons sharing flows across processes.

    Entries are written with an expiry equal to ``max_age`` and consumed
    with ``GETDEL``, which Redis executes atomically.

    Parameters
    ----------
    redis_url : str
        Redis connection URL.
    prefix : str
        Key prefix for namespacing (default "cosmic-accounts").
    max_age : float
        Maximum age of a pending entry in seconds.
    redis_client : Any, optional
        Pre-built async client (e.g. fakeredis in tests).
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = "cosmic-accounts",
        max_age: float = DEFAULT_MAX_AGE,
        redis_client: Any = None,
    ) -> None:
        self._prefix = prefix
        self._ttl = max(1, math.ceil(max_age))
        self._redis: Any = redis_client or RedisClient.from_url(
            redis_url,
            decode_responses=True,
        )

    def _key(self, state_token: str) -> str:
        return f"{self._prefix}:pending:{state_token}"

    async def put(self, pending: PendingAuthorization) -> None:
        try:
            await self._redis.set(
                self._key(pending.state_token), pending.to_json(), ex=self._ttl
            )
        except RedisError as exc:
            raise StorageError(f"Failed to record pending authorization: {exc}") from exc

    async def pop(self, state_token: str) -> PendingAuthorization | None:
        try:
            data = await self._redis.getdel(self._key(state_token))
        except RedisError as exc:
            raise StorageError(f"Failed to read pending authorization: {exc}") from exc
        if data is None:
            return None
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        try:
            return PendingAuthorization.from_json(data)
        except (ValueError, KeyError) as exc:
            # The entry is consumed either way; a corrupt one redeems nothing
            logger.warning("Discarding malformed pending authorization: %s", exc)
            return None

    async def contains(self, state_token: str) -> bool:
        try:
            return bool(await self._redis.exists(self._key(state_token)))
        except RedisError as exc:
            raise StorageError(f"Failed to read pending authorization: {exc}") from exc

    async def size(self) -> int:
        pattern = f"{self._prefix}:pending:*"
        try:
            return len([key async for key in self._redis.scan_iter(match=pattern)])
        except RedisError as exc:
            raise StorageError(f"Failed to count pending authorizations: {exc}") from exc

    async def close(self) -> None:
        """Close the Redis connection pool."""
        await self._redis.aclose()

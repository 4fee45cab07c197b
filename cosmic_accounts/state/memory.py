"""In-memory state backends.

Default implementations for tests and single-process sessions that do
not need the account list to survive a restart.
"""

from __future__ import annotations

import asyncio
import logging

from typing import TYPE_CHECKING, Callable, TypeVar

from .base import AccountRepository, NotificationBus, Subscription


if TYPE_CHECKING:
    from ..models import Account, Notification


logger = logging.getLogger("cosmic_accounts.state")

T = TypeVar("T")


class MemoryAccountRepository(AccountRepository):
    """In-memory account repository.

    Thread-safe via asyncio.Lock. Hands out deep copies so callers can
    never mutate stored records outside of :meth:`update`.
    """

    def __init__(self, accounts: list[Account] | None = None) -> None:
        """Initialize the memory account repository."""
        self._accounts: list[Account] = [a.model_copy(deep=True) for a in accounts or []]
        self._lock = asyncio.Lock()

    async def load(self) -> list[Account]:
        async with self._lock:
            return [a.model_copy(deep=True) for a in self._accounts]

    async def update(self, mutator: Callable[[list[Account]], T]) -> T:
        async with self._lock:
            working = [a.model_copy(deep=True) for a in self._accounts]
            result = mutator(working)
            self._accounts = working
            return result


class MemoryNotificationBus(NotificationBus):
    """In-memory notification bus for single-process deployments.

    Each subscriber owns a bounded asyncio.Queue; a full queue drops
    the event for that subscriber only.

    Parameters
    ----------
    maxsize : int
        Per-subscriber queue capacity (default 1000).
    """

    def __init__(self, maxsize: int = 1000) -> None:
        """Initialize the memory notification bus."""
        self._maxsize = maxsize
        self._subscribers: list[Subscription] = []
        self._lock = asyncio.Lock()

    async def publish(self, notification: Notification) -> None:
        async with self._lock:
            subscribers = list(self._subscribers)
        for subscription in subscribers:
            if not subscription.offer(notification):
                logger.warning(
                    "Dropped %s notification for a slow subscriber", notification.kind.value
                )

    async def subscribe(self) -> Subscription:
        subscription = Subscription(self, maxsize=self._maxsize)
        async with self._lock:
            self._subscribers.append(subscription)
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        async with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    def subscriber_count(self) -> int:
        return len(self._subscribers)

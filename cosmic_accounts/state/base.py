"""Abstract persistence and notification interfaces.

These define the contracts the registry and the accounts interface are
written against. Implementations must make ``AccountRepository.update``
a single atomic read-modify-write.
"""

from __future__ import annotations

import asyncio

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, AsyncIterator, Callable, TypeVar


if TYPE_CHECKING:
    from ..models import Account, Notification


T = TypeVar("T")


class AccountRepository(ABC):
    """Abstract store for the persisted list of account records.

    Records hold no secrets. Order is insertion order.
    """

    @abstractmethod
    async def load(self) -> list[Account]:
        """Return a snapshot of all account records.

        Returns
        -------
        list[Account]
            Copies of the stored records; mutating them has no effect.
        """
        ...

    @abstractmethod
    async def update(self, mutator: Callable[[list[Account]], T]) -> T:
        """Apply ``mutator`` to the record list and persist the result atomically.

        The mutator receives a working copy of the list and may change it
        in place. If it raises, nothing is written and the exception
        propagates. Concurrent updates are serialized.

        Parameters
        ----------
        mutator : callable
            Function mutating the list; its return value is passed through.

        Returns
        -------
        T
            Whatever ``mutator`` returned.

        Raises
        ------
        PersistError
            If the new state cannot be written.
        """
        ...


class Subscription:
    """A subscriber's inbox of notifications.

    Iterate it with ``async for`` or call :meth:`get`. Closing it
    unregisters the subscriber from its bus.

    Parameters
    ----------
    bus : NotificationBus
        The bus that owns this subscription.
    maxsize : int
        Inbox capacity; events published to a full inbox are dropped.
    """

    def __init__(self, bus: NotificationBus, maxsize: int = 1000) -> None:
        self._bus = bus
        self.queue: asyncio.Queue[Notification] = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def offer(self, notification: Notification) -> bool:
        """Enqueue without blocking. Returns False if the event was dropped."""
        try:
            self.queue.put_nowait(notification)
        except asyncio.QueueFull:
            return False
        return True

    async def get(self) -> Notification:
        """Wait for the next notification."""
        return await self.queue.get()

    async def close(self) -> None:
        """Unregister from the bus. Safe to call twice."""
        if not self.closed:
            self.closed = True
            await self._bus.unsubscribe(self)

    def __aiter__(self) -> AsyncIterator[Notification]:
        return self

    async def __anext__(self) -> Notification:
        if self.closed:
            raise StopAsyncIteration
        return await self.get()

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


class NotificationBus(ABC):
    """Abstract fan-out of change notifications to current subscribers.

    Delivery is fire-and-forget: publishing never blocks on a slow
    subscriber, which drops events instead.
    """

    @abstractmethod
    async def publish(self, notification: Notification) -> None:
        """Deliver ``notification`` to every current subscriber."""
        ...

    @abstractmethod
    async def subscribe(self) -> Subscription:
        """Register a new subscriber.

        The subscriber receives every notification published after this
        call returns.
        """
        ...

    @abstractmethod
    async def unsubscribe(self, subscription: Subscription) -> None:
        """Remove ``subscription``; it receives nothing further."""
        ...

    @abstractmethod
    def subscriber_count(self) -> int:
        """Number of currently registered subscribers."""
        ...

"""cosmic-accounts state management package.

Provides the account repository and notification bus contracts plus
their backends. The in-memory backends serve tests and ephemeral
sessions; the file backend persists the account list across restarts.

Usage
-----
    from cosmic_accounts.state import FileAccountRepository, MemoryNotificationBus

    repository = FileAccountRepository("~/.config/cosmic-accounts")
    accounts = await repository.load()
"""

from __future__ import annotations

from .base import AccountRepository, NotificationBus, Subscription
from .file import CONFIG_VERSION, FileAccountRepository
from .memory import MemoryAccountRepository, MemoryNotificationBus


__all__ = [
    "CONFIG_VERSION",
    "AccountRepository",
    "FileAccountRepository",
    "MemoryAccountRepository",
    "MemoryNotificationBus",
    "NotificationBus",
    "Subscription",
]

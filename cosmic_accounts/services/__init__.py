"""Capability-backed services.

Each :class:`~cosmic_accounts.models.Capability` maps to exactly one
handler class. The table is closed: adding a capability means adding
a handler here.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..exceptions import InvalidCapabilityError
from ..models import Capability
from .base import CapabilityService, ServiceConfig, ServiceExports
from .calendar import CalendarService
from .contacts import ContactsService
from .mail import MailService
from .todo import TodoService


if TYPE_CHECKING:
    from ..models import Account


SERVICE_HANDLERS: dict[Capability, type[CapabilityService]] = {
    Capability.EMAIL: MailService,
    Capability.CALENDAR: CalendarService,
    Capability.CONTACTS: ContactsService,
    Capability.TODO: TodoService,
}


def create_service(
    account: Account,
    capability: Capability,
    exports: ServiceExports,
) -> CapabilityService:
    """Build the handler for one capability of ``account``.

    Raises
    ------
    InvalidCapabilityError
        If no handler exists for ``capability``.
    """
    try:
        handler = SERVICE_HANDLERS[capability]
    except KeyError:
        msg = f"No service handles capability {capability}"
        raise InvalidCapabilityError(msg, capability=str(capability)) from None
    return handler(account, exports)


def create_services(account: Account, exports: ServiceExports) -> list[CapabilityService]:
    """Handlers for every capability the account has switched on."""
    return [
        create_service(account, capability, exports)
        for capability, enabled in account.capabilities.items()
        if enabled
    ]


__all__ = [
    "SERVICE_HANDLERS",
    "CalendarService",
    "CapabilityService",
    "ContactsService",
    "MailService",
    "ServiceConfig",
    "ServiceExports",
    "TodoService",
    "create_service",
    "create_services",
]

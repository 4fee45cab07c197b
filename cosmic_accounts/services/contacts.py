"""Contacts (CardDAV) service."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ..models import Capability, Provider
from .base import CapabilityService


if TYPE_CHECKING:
    from ..models import Account


_URIS: dict[Provider, str] = {
    Provider.GOOGLE: "https://www.googleapis.com/.well-known/carddav",
    Provider.MICROSOFT: "https://outlook.office365.com/",
}


class ContactsService(CapabilityService):
    name = "Contacts"
    capability = Capability.CONTACTS

    def settings_for(self, account: Account) -> dict[str, Any]:
        return {"uri": _URIS[account.provider], "accept_ssl_errors": False}

"""Calendar (CalDAV) service."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ..models import Capability, Provider
from .base import CapabilityService


if TYPE_CHECKING:
    from ..models import Account


_URIS: dict[Provider, str] = {
    Provider.GOOGLE: "https://apidata.googleusercontent.com/caldav/v2/",
    Provider.MICROSOFT: "https://outlook.office365.com/",
}


class CalendarService(CapabilityService):
    name = "Calendar"
    capability = Capability.CALENDAR

    def settings_for(self, account: Account) -> dict[str, Any]:
        return {"uri": _URIS[account.provider], "accept_ssl_errors": False}

"""Task list service (Google Tasks / Microsoft To Do)."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ..models import Capability, Provider
from .base import CapabilityService


if TYPE_CHECKING:
    from ..models import Account


_URIS: dict[Provider, str] = {
    Provider.GOOGLE: "https://tasks.googleapis.com/tasks/v1/",
    Provider.MICROSOFT: "https://graph.microsoft.com/v1.0/me/todo",
}


class TodoService(CapabilityService):
    name = "Todo"
    capability = Capability.TODO

    def settings_for(self, account: Account) -> dict[str, Any]:
        return {"uri": _URIS[account.provider]}

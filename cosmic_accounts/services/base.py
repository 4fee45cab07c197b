"""Capability-backed service contract and the exported-service table."""

from __future__ import annotations

import asyncio
import logging

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar


if TYPE_CHECKING:
    from ..models import Account, Capability


logger = logging.getLogger("cosmic_accounts.services")

OBJECT_PATH_ROOT = "/dev/edfloreshz/Accounts"
INTERFACE_ROOT = "dev.edfloreshz.Accounts"


@dataclass
class ServiceConfig:
    """Connection settings a client needs to use one capability of an account.

    Attributes
    ----------
    service_type : str
        The service name (e.g. "Mail").
    provider_type : str
        The account's provider name.
    settings : dict[str, Any]
        Service-specific settings (hosts, URIs, flags).
    """

    service_type: str
    provider_type: str
    settings: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation."""
        return {
            "service_type": self.service_type,
            "provider_type": self.provider_type,
            "settings": dict(self.settings),
        }


class ServiceExports:
    """The daemon's table of exported service endpoints, keyed by object path."""

    def __init__(self) -> None:
        self._exports: dict[str, CapabilityService] = {}
        self._lock = asyncio.Lock()

    async def export(self, service: CapabilityService) -> bool:
        """Export ``service``. Returns False if its path was already exported."""
        async with self._lock:
            if service.object_path in self._exports:
                return False
            self._exports[service.object_path] = service
            return True

    async def unexport(self, object_path: str) -> bool:
        """Unexport the service at ``object_path``. Returns False if none was exported."""
        async with self._lock:
            return self._exports.pop(object_path, None) is not None

    def get(self, object_path: str) -> CapabilityService | None:
        return self._exports.get(object_path)

    def paths(self) -> list[str]:
        """Exported object paths, sorted."""
        return sorted(self._exports)

    def __contains__(self, object_path: object) -> bool:
        return object_path in self._exports

    def __len__(self) -> int:
        return len(self._exports)


class CapabilityService(ABC):
    """One capability of one account, exportable as a service endpoint.

    Parameters
    ----------
    account : Account
        The account this service is bound to.
    exports : ServiceExports
        The table ``add_service``/``remove_service`` operate on.
    """

    name: ClassVar[str]
    capability: ClassVar[Capability]

    def __init__(self, account: Account, exports: ServiceExports) -> None:
        self.account = account
        self.exports = exports

    @property
    def interface_name(self) -> str:
        """Interface name clients bind to."""
        return f"{INTERFACE_ROOT}.{self.name}"

    @property
    def object_path(self) -> str:
        """Object path the endpoint is exported at."""
        return f"{OBJECT_PATH_ROOT}/{self.name}/{self.account.object_id}"

    def is_supported(self, account: Account | None = None) -> bool:
        """Whether the account offers this capability at all."""
        account = account or self.account
        return self.capability in account.capabilities

    def get_config(self, account: Account | None = None) -> ServiceConfig:
        """Connection settings for ``account`` (defaults to the bound account)."""
        account = account or self.account
        return ServiceConfig(
            service_type=self.name,
            provider_type=account.provider.value,
            settings=self.settings_for(account),
        )

    @abstractmethod
    def settings_for(self, account: Account) -> dict[str, Any]:
        """Provider-specific settings for this capability."""

    async def add_service(self) -> bool:
        """Export this endpoint. Idempotent; returns False if already exported."""
        added = await self.exports.export(self)
        if added:
            logger.debug("Exported %s at %s", self.interface_name, self.object_path)
        return added

    async def remove_service(self) -> bool:
        """Unexport this endpoint. Idempotent; returns False if not exported."""
        removed = await self.exports.unexport(self.object_path)
        if removed:
            logger.debug("Unexported %s at %s", self.interface_name, self.object_path)
        return removed

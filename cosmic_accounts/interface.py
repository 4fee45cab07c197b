"""Account service interface.

:class:`AccountsService` is the request/response facade other desktop
components talk to. It composes the flow engine, the registry, the
capability services, and the notification bus:

- every successful mutation is followed by exactly one notification;
- capability fan-out to services happens after the registry commit and
  never rolls it back; failures come back as warnings on the result;
- failures of one account never block operations on the others.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .auth.credential_store import get_credential_store
from .auth.flow import AuthFlowEngine
from .auth.pending import MemoryPendingStore, RedisPendingStore
from .auth.providers import ProviderRegistry
from .exceptions import (
    AccountAlreadyExistsError,
    AccountsException,
    InvalidCapabilityError,
    PartialRemovalError,
    PersistError,
    StorageError,
)
from .models import Account, Capability, Notification, NotificationKind
from .registry import AccountRegistry
from .services import ServiceExports, create_service, create_services
from .state import FileAccountRepository, MemoryAccountRepository, MemoryNotificationBus


if TYPE_CHECKING:
    from .auth.pending import PendingAuthorizationStore
    from .config import AccountsSettings
    from .services import CapabilityService, ServiceConfig
    from .state import AccountRepository, NotificationBus, Subscription


logger = logging.getLogger("cosmic_accounts.interface")


@dataclass
class MutationResult:
    """Outcome of a committed account mutation.

    Attributes
    ----------
    account : Account
        The account as committed.
    warnings : list[str]
        Non-fatal failures from the service fan-out.
    """

    account: Account
    warnings: list[str] = field(default_factory=list)


class AccountsService:
    """Facade over the account lifecycle.

    Parameters
    ----------
    engine : AuthFlowEngine
        Flow engine; its ``registry`` is attached if it has none.
    registry : AccountRegistry
        The account registry.
    bus : NotificationBus, optional
        Where change notifications go (in-memory bus by default).
    exports : ServiceExports, optional
        The exported-service table (a fresh one by default).
    """

    def __init__(
        self,
        engine: AuthFlowEngine,
        registry: AccountRegistry,
        bus: NotificationBus | None = None,
        exports: ServiceExports | None = None,
    ) -> None:
        self.engine = engine
        self.registry = registry
        self.bus = bus if bus is not None else MemoryNotificationBus()
        self.exports = exports if exports is not None else ServiceExports()
        if self.engine.registry is None:
            self.engine.registry = registry

    # ── Lifecycle ──────────────────────────────────────────────────

    async def start(self) -> None:
        """Export services for every enabled account already registered."""
        for account in await self.registry.list():
            if account.enabled:
                await self._fan_out(create_services(account, self.exports), add=True)
        logger.info("Restored %d exported services", len(self.exports))

    async def close(self) -> None:
        """Release provider HTTP clients."""
        await self.engine.close()

    async def subscribe(self) -> Subscription:
        """Subscribe to change notifications."""
        return await self.bus.subscribe()

    # ── Queries ────────────────────────────────────────────────────

    async def list_accounts(self) -> list[Account]:
        return await self.registry.list()

    async def get_account(self, account_id: str) -> Account:
        return await self.registry.get(account_id)

    def list_providers(self) -> list[str]:
        """Names of the providers a flow can be started for."""
        return self.engine.providers.names()

    async def list_enabled_accounts(self, capability: str) -> list[Account]:
        """Enabled accounts that have ``capability`` switched on."""
        cap = Capability.from_name(capability)
        return [a for a in await self.registry.list() if a.enabled and a.capability_enabled(cap)]

    async def get_service_config(self, account_id: str, capability: str) -> ServiceConfig:
        """Connection settings for one capability of an account.

        Raises
        ------
        InvalidCapabilityError
            If the name is unknown or the account does not offer it.
        """
        cap = Capability.from_name(capability)
        account = await self.registry.get(account_id)
        service = create_service(account, cap, self.exports)
        if not service.is_supported():
            msg = f"Account does not support {cap.value}"
            raise InvalidCapabilityError(msg, capability=cap.value, account_id=str(account.id))
        return service.get_config()

    # ── Authentication ─────────────────────────────────────────────

    async def start_authentication(self, provider: str) -> str:
        """Start linking an account; returns the authorization URL."""
        return await self.engine.start_auth_flow(provider)

    async def complete_authentication(self, state_token: str, code: str) -> str:
        """Finish linking an account; returns the new account's id.

        Raises
        ------
        InvalidStateError
            If the state token is unknown, expired, or already used.
        AuthenticationError
            If the provider exchange fails.
        AccountAlreadyExistsError
            If the identity is already linked (``AccountAlreadyExists`` is
            also published).
        StorageError
            If the credential or the account record cannot be written.
        """
        try:
            account = await self.engine.complete_auth_flow(state_token, code)
        except AccountAlreadyExistsError:
            await self._publish(NotificationKind.ACCOUNT_ALREADY_EXISTS)
            raise

        account_id = str(account.id)
        try:
            await self.registry.admit(account)
        except AccountAlreadyExistsError:
            # Lost a race with a concurrent link of the same identity
            await self._discard_credential(account_id)
            await self._publish(NotificationKind.ACCOUNT_ALREADY_EXISTS)
            raise
        except StorageError:
            await self._discard_credential(account_id)
            raise

        await self._fan_out(create_services(account, self.exports), add=True)
        await self._publish(NotificationKind.ACCOUNT_ADDED, account_id)
        return account_id

    async def _discard_credential(self, account_id: str) -> None:
        try:
            await self.engine.delete_credential(account_id)
        except StorageError as exc:
            logger.error(
                "Could not discard credential of unadmitted account %s: %s", account_id, exc
            )

    # ── Mutations ──────────────────────────────────────────────────

    async def remove_account(self, account_id: str) -> None:
        """Remove an account, its exported services, and its secret.

        Raises
        ------
        AccountNotFoundError
            If no account has this id.
        PartialRemovalError
            If the record was removed but the secret was not. The
            account is gone and ``AccountRemoved`` is still published.
        """
        account = await self.registry.get(account_id)
        partial: PartialRemovalError | None = None
        try:
            await self.registry.remove(account.id)
        except PartialRemovalError as exc:
            partial = exc

        services = [create_service(account, cap, self.exports) for cap in account.capabilities]
        await self._fan_out(services, add=False)
        await self._publish(NotificationKind.ACCOUNT_REMOVED, str(account.id))
        if partial is not None:
            raise partial

    async def set_account_enabled(self, account_id: str, enabled: bool) -> MutationResult:
        """Enable or disable an account and export or unexport its services."""
        account = await self.registry.set_enabled(account_id, enabled)
        if enabled:
            warnings = await self._fan_out(create_services(account, self.exports), add=True)
        else:
            services = [create_service(account, cap, self.exports) for cap in account.capabilities]
            warnings = await self._fan_out(services, add=False)
        await self._publish(NotificationKind.ACCOUNT_CHANGED, str(account.id))
        return MutationResult(account=account, warnings=warnings)

    async def set_capability_enabled(
        self,
        account_id: str,
        capability: str,
        enabled: bool,
    ) -> MutationResult:
        """Toggle one capability and fan out to its service.

        The toggle is committed first; a failing service hook is logged
        and reported in ``warnings`` but does not undo the toggle.

        Raises
        ------
        InvalidCapabilityError
            If the name is unknown or the account does not offer it.
        """
        cap = Capability.from_name(capability)
        current = await self.registry.get(account_id)
        if cap not in current.capabilities:
            msg = f"Account does not support {cap.value}"
            raise InvalidCapabilityError(msg, capability=cap.value, account_id=str(current.id))

        account = await self.registry.set_capability(current.id, cap, enabled)
        warnings: list[str] = []
        service = create_service(account, cap, self.exports)
        if enabled and account.enabled:
            warnings = await self._fan_out([service], add=True)
        elif not enabled:
            warnings = await self._fan_out([service], add=False)
        await self._publish(NotificationKind.ACCOUNT_CHANGED, str(account.id))
        return MutationResult(account=account, warnings=warnings)

    # ── Credentials ────────────────────────────────────────────────

    async def ensure_credentials_fresh(self, account_id: str | None = None) -> dict[str, str]:
        """Refresh expired credentials.

        With an id, failures raise. Without one, every account is tried and
        failures are returned as ``{account_id: message}``.
        """
        if account_id is not None:
            account = await self.registry.get(account_id)
            await self.engine.ensure_fresh_credential(str(account.id), account.provider)
            return {}

        failures: dict[str, str] = {}
        for account in await self.registry.list():
            try:
                await self.engine.ensure_fresh_credential(str(account.id), account.provider)
            except AccountsException as exc:
                logger.warning("Could not refresh credentials of %s: %s", account.id, exc)
                failures[str(account.id)] = str(exc)
        return failures

    async def get_access_token(self, account_id: str) -> str:
        """A non-expired access token for the account, refreshing if needed."""
        account = await self.registry.get(account_id)
        credential = await self.engine.ensure_fresh_credential(str(account.id), account.provider)
        try:
            await self.registry.touch(account.id)
        except PersistError as exc:
            logger.warning("Could not record last use of %s: %s", account.id, exc)
        return credential.access_token

    async def get_refresh_token(self, account_id: str) -> str:
        """The stored refresh token, or an empty string if there is none."""
        account = await self.registry.get(account_id)
        credential = await self.engine.get_credential(str(account.id))
        return credential.refresh_token or ""

    # ── Internals ──────────────────────────────────────────────────

    async def _fan_out(self, services: list[CapabilityService], *, add: bool) -> list[str]:
        warnings: list[str] = []
        for service in services:
            hook = service.add_service if add else service.remove_service
            try:
                await hook()
            except Exception as exc:  # noqa: BLE001
                action = "export" if add else "unexport"
                logger.error("Failed to %s %s: %s", action, service.object_path, exc)
                warnings.append(f"{service.name}: failed to {action}: {exc}")
        return warnings

    async def _publish(self, kind: NotificationKind, account_id: str | None = None) -> None:
        await self.bus.publish(Notification(kind=kind, account_id=account_id))


def _build_pending_store(settings: AccountsSettings) -> PendingAuthorizationStore:
    if settings.storage.pending_backend == "redis":
        return RedisPendingStore(
            redis_url=settings.storage.redis_url,
            prefix=settings.storage.redis_prefix,
            max_age=settings.auth.pending_ttl_seconds,
        )
    return MemoryPendingStore(
        max_pending=settings.auth.max_pending,
        max_age=settings.auth.pending_ttl_seconds,
    )


def _build_repository(settings: AccountsSettings) -> AccountRepository:
    if settings.storage.account_backend == "memory":
        return MemoryAccountRepository()
    return FileAccountRepository.from_settings(settings.storage)


def create_service_from_settings(settings: AccountsSettings) -> AccountsService:
    """Wire a complete AccountsService from configuration."""
    credential_store = get_credential_store(
        settings.storage.credential_backend,
        service_name=settings.storage.keyring_service,
        redis_url=settings.storage.redis_url,
        prefix=settings.storage.redis_prefix,
    )
    registry = AccountRegistry(_build_repository(settings), credential_store)
    engine = AuthFlowEngine(
        providers=ProviderRegistry.from_settings(settings),
        credential_store=credential_store,
        pending_store=_build_pending_store(settings),
        registry=registry,
    )
    return AccountsService(engine, registry)

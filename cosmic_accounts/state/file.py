"""File-backed account repository.

Account records live in a versioned JSON document,
``<config_dir>/v<version>/accounts.json``. Every update rewrites the
whole document through a temporary file and ``os.replace`` so readers
never observe a half-written file.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile

from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, TypeVar

from pydantic import ValidationError

from ..exceptions import PersistError
from ..models import Account
from .base import AccountRepository


if TYPE_CHECKING:
    from ..config import StorageSettings


logger = logging.getLogger("cosmic_accounts.state")

T = TypeVar("T")

CONFIG_VERSION = 1
ACCOUNTS_FILENAME = "accounts.json"


class FileAccountRepository(AccountRepository):
    """Account repository persisted as a versioned JSON file.

    Parameters
    ----------
    config_dir : Path or str
        Base configuration directory.
    version : int
        Schema version; selects the ``v<version>`` subdirectory.
    """

    def __init__(self, config_dir: Path | str, version: int = CONFIG_VERSION) -> None:
        """Initialize the file account repository."""
        self.version = version
        self.path = Path(config_dir).expanduser() / f"v{version}" / ACCOUNTS_FILENAME
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: StorageSettings) -> FileAccountRepository:
        """Build a repository from the ``[storage]`` settings section."""
        return cls(settings.config_dir, settings.config_version)

    async def load(self) -> list[Account]:
        async with self._lock:
            return await self._run(self._read)

    async def update(self, mutator: Callable[[list[Account]], T]) -> T:
        async with self._lock:
            accounts = await self._run(self._read)
            result = mutator(accounts)
            await self._run(self._write, accounts)
            return result

    @staticmethod
    async def _run(func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    def _read(self) -> list[Account]:
        if not self.path.exists():
            return []
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            msg = f"Cannot read account registry: {exc}"
            raise PersistError(msg, path=str(self.path)) from exc
        if not isinstance(document, dict) or not isinstance(document.get("accounts", []), list):
            msg = "Account registry is not a registry document"
            raise PersistError(msg, path=str(self.path))

        stored_version = document.get("version", self.version)
        if stored_version != self.version:
            msg = f"Account registry has version {stored_version}, expected {self.version}"
            raise PersistError(msg, path=str(self.path))

        try:
            return [Account.model_validate(item) for item in document.get("accounts", [])]
        except ValidationError as exc:
            msg = f"Account registry contains an invalid record: {exc}"
            raise PersistError(msg, path=str(self.path)) from exc

    def _write(self, accounts: list[Account]) -> None:
        document = {
            "version": self.version,
            "accounts": [account.model_dump(mode="json") for account in accounts],
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=".accounts-", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(document, fh, indent=2)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            msg = f"Cannot write account registry: {exc}"
            raise PersistError(msg, path=str(self.path)) from exc
        logger.debug("Wrote %d account records to %s", len(accounts), self.path)

"""Configuration system for cosmic-accounts using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. pyproject.toml [tool.cosmic-accounts] section (project-level)
3. ./cosmic-accounts.toml (project-level, explicit)
4. ~/.config/cosmic-accounts/config.toml (user-level, overrides project)
5. COSMIC_ACCOUNTS_CONFIG_FILE (explicit file)
6. Environment variables (highest priority)

Environment variables use the COSMIC_ACCOUNTS_ prefix with nested delimiter __.
Example: COSMIC_ACCOUNTS_GOOGLE__CLIENT_ID, COSMIC_ACCOUNTS_STORAGE__CREDENTIAL_BACKEND
"""

from __future__ import annotations

import logging
import os
import sys

from functools import lru_cache
from pathlib import Path
from typing import Any, ClassVar, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


logger = logging.getLogger("cosmic_accounts.config")

APP_ID = "cosmic-accounts"
DEFAULT_REDIRECT_URI = "http://127.0.0.1:8080/callback"


def _user_config_dir() -> Path:
    """Per-user configuration directory (XDG on Linux)."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg) if xdg else Path("~/.config").expanduser()
    return base / APP_ID


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    local_toml = Path(f"{APP_ID}.toml")
    if local_toml.exists():
        files.append(local_toml)

    user_config = _user_config_dir() / "config.toml"
    if user_config.exists():
        files.append(user_config)

    env_config = os.environ.get("COSMIC_ACCOUNTS_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files."""
    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            data = tomllib.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            logger.warning("Ignoring unreadable config file %s: %s", config_file, exc)
            continue

        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get(APP_ID, {})

        merged = _deep_merge(merged, data)

    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


# Field names that contain sensitive data and must be redacted in output.
_SENSITIVE_FIELDS: set[str] = {
    "client_secret",
    "redis_url",
}

_REDACTED = "********"


class LogSettings(BaseSettings):
    """Logging settings.

    Environment prefix: COSMIC_ACCOUNTS_LOG__
    Example: COSMIC_ACCOUNTS_LOG__LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="COSMIC_ACCOUNTS_LOG__",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: str = "%(asctime)s %(name)s - %(levelname)s - %(message)s"


class ServerSettings(BaseSettings):
    """Local RPC + redirect listener settings.

    Environment prefix: COSMIC_ACCOUNTS_SERVER__
    Example: COSMIC_ACCOUNTS_SERVER__PORT=8080
    """

    model_config = SettingsConfigDict(
        env_prefix="COSMIC_ACCOUNTS_SERVER__",
        extra="ignore",
    )

    host: str = Field(default="127.0.0.1", description="Bind address (keep on loopback)")
    port: int = Field(default=8080, ge=1, le=65535, description="Bind port")
    callback_path: str = Field(
        default="/callback",
        description="Path of the OAuth2 redirect receiver",
    )


class StorageSettings(BaseSettings):
    """Persistence backends for secrets, account records and pending flows.

    Environment prefix: COSMIC_ACCOUNTS_STORAGE__
    Example: COSMIC_ACCOUNTS_STORAGE__CREDENTIAL_BACKEND=keyring
    """

    model_config = SettingsConfigDict(
        env_prefix="COSMIC_ACCOUNTS_STORAGE__",
        extra="ignore",
    )

    credential_backend: Literal["memory", "keyring", "redis"] = Field(
        default="keyring",
        description="Secret store for token material: memory, keyring, or redis",
    )
    keyring_service: str = Field(
        default=APP_ID,
        description="Service name used for OS secret store entries",
    )
    account_backend: Literal["memory", "file"] = Field(
        default="file",
        description="Account registry persistence: memory or file",
    )
    config_dir: Path = Field(
        default_factory=_user_config_dir,
        description="Directory holding the versioned account registry",
    )
    config_version: int = Field(
        default=1,
        ge=1,
        description="Schema version of the persisted account registry",
    )
    pending_backend: Literal["memory", "redis"] = Field(
        default="memory",
        description="Pending-authorization table: memory or redis",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL for redis-backed stores",
    )
    redis_prefix: str = Field(default=APP_ID, description="Key prefix for redis-backed stores")


class AuthSettings(BaseSettings):
    """OAuth2 flow settings.

    Environment prefix: COSMIC_ACCOUNTS_AUTH__
    Example: COSMIC_ACCOUNTS_AUTH__PENDING_TTL_SECONDS=300
    """

    model_config = SettingsConfigDict(
        env_prefix="COSMIC_ACCOUNTS_AUTH__",
        extra="ignore",
    )

    pending_ttl_seconds: float = Field(
        default=600.0,
        ge=30.0,
        description="Seconds a started flow may wait for its redirect",
    )
    max_pending: int = Field(
        default=1000,
        ge=1,
        description="Maximum number of concurrently pending flows",
    )
    http_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Transport timeout for provider HTTP requests",
    )


class ProviderSettings(BaseSettings):
    """Static OAuth2 client configuration for one provider.

    A provider is only registered when ``client_id`` is set.
    """

    model_config = SettingsConfigDict(extra="ignore")

    client_id: str = Field(default="", description="OAuth2 client ID")
    client_secret: str = Field(
        default="",
        description="OAuth2 client secret (empty for public clients with PKCE)",
    )
    redirect_uri: str = Field(
        default=DEFAULT_REDIRECT_URI,
        description="Redirect URI registered with the provider",
    )
    scopes: str = Field(default="", description="Space-separated scopes (empty for defaults)")
    authorize_url: str = Field(default="", description="Override for the authorization endpoint")
    token_url: str = Field(default="", description="Override for the token endpoint")
    userinfo_url: str = Field(default="", description="Override for the identity endpoint")

    @property
    def enabled(self) -> bool:
        """Whether this provider is configured."""
        return bool(self.client_id)

    @property
    def scope_list(self) -> list[str] | None:
        """Configured scopes as a list, or None to use provider defaults."""
        scopes = [s.strip() for s in self.scopes.split() if s.strip()]
        return scopes or None


class GoogleSettings(ProviderSettings):
    """Google OAuth2 client.

    Environment prefix: COSMIC_ACCOUNTS_GOOGLE__
    Example: COSMIC_ACCOUNTS_GOOGLE__CLIENT_ID=your-client-id
    """

    model_config = SettingsConfigDict(
        env_prefix="COSMIC_ACCOUNTS_GOOGLE__",
        extra="ignore",
    )


class MicrosoftSettings(ProviderSettings):
    """Microsoft identity platform OAuth2 client.

    Environment prefix: COSMIC_ACCOUNTS_MICROSOFT__
    Example: COSMIC_ACCOUNTS_MICROSOFT__TENANT_ID=common
    """

    model_config = SettingsConfigDict(
        env_prefix="COSMIC_ACCOUNTS_MICROSOFT__",
        extra="ignore",
    )

    tenant_id: str = Field(
        default="common",
        description="Azure AD tenant ID (default 'common' for multi-tenant)",
    )


class AccountsSettings(BaseSettings):
    """Main settings aggregating all configuration sections.

    Environment prefix: COSMIC_ACCOUNTS_

    Configuration sources (in order of precedence):
    1. Built-in defaults
    2. pyproject.toml [tool.cosmic-accounts] section
    3. ./cosmic-accounts.toml (project-level)
    4. ~/.config/cosmic-accounts/config.toml (user-level)
    5. COSMIC_ACCOUNTS_CONFIG_FILE
    6. Environment variables (highest priority)
    """

    model_config = SettingsConfigDict(
        env_prefix="COSMIC_ACCOUNTS_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    log: LogSettings = Field(default_factory=LogSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    google: GoogleSettings = Field(default_factory=GoogleSettings)
    microsoft: MicrosoftSettings = Field(default_factory=MicrosoftSettings)

    _SECTIONS: ClassVar[list[tuple[str, str, str]]] = [
        ("Logging", "LOG", "log"),
        ("Server", "SERVER", "server"),
        ("Storage", "STORAGE", "storage"),
        ("Auth Flow", "AUTH", "auth"),
        ("Google", "GOOGLE", "google"),
        ("Microsoft", "MICROSOFT", "microsoft"),
    ]

    def __init__(self, **data: Any) -> None:
        toml_config = _load_toml_config()

        # Each section is built from TOML first, then its own env vars win
        section_classes = {
            "log": LogSettings,
            "server": ServerSettings,
            "storage": StorageSettings,
            "auth": AuthSettings,
            "google": GoogleSettings,
            "microsoft": MicrosoftSettings,
        }
        for key, section_cls in section_classes.items():
            if key in data:
                continue
            section_data = toml_config.get(key)
            if isinstance(section_data, dict):
                env_overrides = section_cls().model_dump(exclude_unset=True)
                data[key] = section_cls(**{**section_data, **env_overrides})

        super().__init__(**data)

    def configured_providers(self) -> dict[str, ProviderSettings]:
        """Provider sections that carry a client id, keyed by section name."""
        sections: dict[str, ProviderSettings] = {
            "google": self.google,
            "microsoft": self.microsoft,
        }
        return {name: section for name, section in sections.items() if section.enabled}

    def to_env(self) -> str:
        """Export configuration as environment variable assignments."""
        lines = ["# cosmic-accounts configuration as environment variables", ""]

        all_data = self.model_dump(
            exclude={attr: _SENSITIVE_FIELDS for _, _, attr in self._SECTIONS},
        )

        for _, env_prefix, attr_name in self._SECTIONS:
            section_data = all_data.get(attr_name, {})
            for field_name, field_value in section_data.items():
                env_name = f"COSMIC_ACCOUNTS_{env_prefix}__{field_name.upper()}"
                if isinstance(field_value, bool):
                    value_str = "true" if field_value else "false"
                else:
                    value_str = str(field_value)
                lines.append(f'export {env_name}="{value_str}"')
            section_cls = type(getattr(self, attr_name))
            for redacted_name in sorted(_SENSITIVE_FIELDS & section_cls.model_fields.keys()):
                env_name = f"COSMIC_ACCOUNTS_{env_prefix}__{redacted_name.upper()}"
                lines.append(f'export {env_name}="{_REDACTED}"')

        return "\n".join(lines)

    def show(self) -> str:
        """Format settings as a readable table with secrets redacted."""
        lines = ["cosmic-accounts Configuration", "=" * 60, ""]

        all_data = self.model_dump(
            exclude={attr: _SENSITIVE_FIELDS for _, _, attr in self._SECTIONS},
        )

        for display_name, _, attr_name in self._SECTIONS:
            section_data = all_data.get(attr_name, {})
            lines.append(f"\n{display_name}")
            lines.append("-" * 40)
            for field_name, field_value in section_data.items():
                value_str = str(field_value)
                if len(value_str) > 50:
                    value_str = value_str[:47] + "..."
                lines.append(f"  {field_name:20} = {value_str}")
            section_cls = type(getattr(self, attr_name))
            lines.extend(
                f"  {rn:20} = {_REDACTED}"
                for rn in sorted(_SENSITIVE_FIELDS & section_cls.model_fields.keys())
            )

        return "\n".join(lines)


def config_sources() -> list[Path]:
    """Configuration files that currently contribute to the settings."""
    return _find_config_files()


@lru_cache(maxsize=1)
def get_settings() -> AccountsSettings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return AccountsSettings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()


def reload_settings() -> AccountsSettings:
    """Reload settings from all sources."""
    clear_settings()
    return get_settings()

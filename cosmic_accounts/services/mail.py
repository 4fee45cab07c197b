"""Mail (IMAP/SMTP with XOAUTH2) service."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ..models import Capability, Provider
from .base import CapabilityService


if TYPE_CHECKING:
    from ..models import Account


_HOSTS: dict[Provider, tuple[str, str]] = {
    Provider.GOOGLE: ("imap.gmail.com", "smtp.gmail.com"),
    Provider.MICROSOFT: ("outlook.office365.com", "smtp.office365.com"),
}


class MailService(CapabilityService):
    """Exposes IMAP/SMTP connection settings for an account's mailbox."""

    name = "Mail"
    capability = Capability.EMAIL

    def settings_for(self, account: Account) -> dict[str, Any]:
        imap_host, smtp_host = _HOSTS[account.provider]
        settings: dict[str, Any] = {
            "imap_host": imap_host,
            "smtp_host": smtp_host,
            "imap_use_ssl": True,
            "smtp_use_tls": True,
            "smtp_auth_xoauth2": True,
        }
        if account.email:
            settings["email_address"] = account.email
            settings["imap_user_name"] = account.email
            settings["smtp_user_name"] = account.email
        settings["name"] = account.display_name
        return settings

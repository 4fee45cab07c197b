"""Tests for the account and credential data model."""

from __future__ import annotations

import uuid

from datetime import datetime, timedelta, timezone

import pytest

from cosmic_accounts.exceptions import InvalidCapabilityError, UnknownProviderError
from cosmic_accounts.models import (
    Account,
    Capability,
    Credential,
    OAuthTokenSet,
    PendingAuthorization,
    Provider,
)


class TestEnums:
    def test_capability_names(self):
        assert Capability.from_name("calendar") is Capability.CALENDAR
        assert Capability.from_name(" TODO ") is Capability.TODO
        assert Capability.from_name("mail") is Capability.EMAIL
        with pytest.raises(InvalidCapabilityError):
            Capability.from_name("fax")

    def test_provider_names(self):
        assert Provider.from_name("microsoft") is Provider.MICROSOFT
        with pytest.raises(UnknownProviderError) as exc_info:
            Provider.from_name("yahoo")
        assert exc_info.value.provider == "yahoo"

    def test_default_capabilities(self):
        caps = Provider.GOOGLE.default_capabilities()
        assert list(caps) == Capability.ordered()
        assert all(caps.values())


class TestAccount:
    def test_capabilities_are_ordered(self):
        account = Account(
            provider=Provider.GOOGLE,
            display_name="Ada",
            username="ada@example.com",
            capabilities={Capability.TODO: True, Capability.EMAIL: False},
        )
        assert list(account.capabilities) == [Capability.EMAIL, Capability.TODO]
        assert not account.capability_enabled(Capability.EMAIL)
        assert not account.capability_enabled(Capability.CALENDAR)

    def test_ids_are_unique(self):
        first = Account(provider=Provider.GOOGLE, display_name="a", username="a")
        second = Account(provider=Provider.GOOGLE, display_name="a", username="a")
        assert first.id != second.id
        assert first.object_id == first.id.hex

    def test_json_round_trip(self):
        account = Account(
            id=uuid.UUID("12345678-1234-5678-1234-567812345678"),
            provider=Provider.MICROSOFT,
            display_name="Grace",
            username="grace@contoso.com",
            capabilities={Capability.CALENDAR: True},
        )
        dumped = account.model_dump(mode="json")
        assert dumped["capabilities"] == {"Calendar": True}
        assert Account.model_validate(dumped) == account


class TestCredential:
    def test_expiry_boundary(self):
        now = datetime(2030, 1, 1, tzinfo=timezone.utc)
        credential = Credential(access_token="a", expires_at=now)
        assert credential.is_expired(now)
        assert not credential.is_expired(now - timedelta(seconds=1))

    def test_no_expiry_never_expires(self):
        assert not Credential(access_token="a").is_expired()

    def test_from_token_set_falls_back_to_requested_scopes(self):
        tokens = OAuthTokenSet(access_token="a", expires_in=60, issued_at=0.0)
        credential = Credential.from_token_set(tokens, ["openid", "email"])
        assert credential.scope == ["openid", "email"]
        assert credential.expires_at == datetime(1970, 1, 1, 0, 1, tzinfo=timezone.utc)

    def test_from_token_set_uses_granted_scopes(self):
        tokens = OAuthTokenSet(access_token="a", scope="openid profile")
        credential = Credential.from_token_set(tokens, ["ignored"])
        assert credential.scope == ["openid", "profile"]
        assert credential.expires_at is None


class TestPendingAuthorization:
    def test_json(self):
        pending = PendingAuthorization("state", Provider.GOOGLE, "verifier", created_at=5.0)
        assert PendingAuthorization.from_json(pending.to_json()) == pending

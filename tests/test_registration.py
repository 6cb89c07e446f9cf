"""
tests/test_registration.py -- Unit tests for RegistrationCodeIssuer.

Covers:
  - Code format (8 uppercase hex chars) and 24h expiry
  - Single use: a second redemption with any username fails
  - Expired codes are never redeemable, even when unused (24h TTL, redeem at +25h)
  - Duplicate username fails and leaves the code unused
  - created_by is inherited from the code; role is always `user`
  - Collision retries and ExhaustedAttempts
  - list / delete / purge_expired housekeeping
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

import pytest

from auth.credentials import CredentialStore
from auth.errors import ExhaustedAttempts, InvalidRegistrationCode, NotFound, UsernameTaken, WeakPassword
from auth.models import ROLE_ADMIN, ROLE_USER
from auth.registration import RegistrationCodeIssuer
from auth.store import AuthStore

T0 = datetime(2026, 5, 4, 8, 30, tzinfo=timezone.utc)


class TestGenerate:
    def test_code_format_and_ttl(self, issuer: RegistrationCodeIssuer) -> None:
        code = issuer.generate("boss", now=T0)
        assert re.fullmatch(r"[0-9A-F]{8}", code.code)
        assert code.expires_at == T0 + timedelta(hours=24)
        assert code.created_by == "boss"
        assert code.id is not None

    def test_codes_are_unique(self, issuer: RegistrationCodeIssuer) -> None:
        codes = {issuer.generate("boss", now=T0).code for _ in range(20)}
        assert len(codes) == 20

    def test_collision_is_retried(self, auth_store: AuthStore, credentials: CredentialStore) -> None:
        values = iter(["AAAA0001", "AAAA0001", "BBBB0002"])
        issuer = RegistrationCodeIssuer(auth_store, credentials, code_factory=lambda: next(values))
        assert issuer.generate("boss", now=T0).code == "AAAA0001"
        assert issuer.generate("boss", now=T0).code == "BBBB0002"

    def test_exhausted_attempts(self, auth_store: AuthStore, credentials: CredentialStore) -> None:
        issuer = RegistrationCodeIssuer(auth_store, credentials, code_factory=lambda: "CAFE0000", max_attempts=3)
        issuer.generate("boss", now=T0)
        with pytest.raises(ExhaustedAttempts) as exc_info:
            issuer.generate("boss", now=T0)
        assert exc_info.value.status_code == 409


class TestRedeem:
    def test_redeem_creates_user_with_inherited_creator(
        self, issuer: RegistrationCodeIssuer, auth_store: AuthStore
    ) -> None:
        code = issuer.generate("boss", now=T0)
        claimed, user = issuer.redeem(code.code, "newbie", "newbie-pw", "New Person", now=T0 + timedelta(hours=1))

        assert user.username == "newbie"
        assert user.role == ROLE_USER
        assert user.created_by == "boss"
        assert claimed.is_used is True
        assert claimed.used_by == "newbie"

        stored = auth_store.get_code(code.code)
        assert stored.is_used is True
        assert stored.used_at == T0 + timedelta(hours=1)

    def test_new_user_can_log_in(self, issuer: RegistrationCodeIssuer, credentials: CredentialStore) -> None:
        code = issuer.generate("boss", now=T0)
        _, user = issuer.redeem(code.code, "newbie", "newbie-pw", "New Person", now=T0)
        assert credentials.verify("newbie", "newbie-pw").id == user.id

    def test_redeem_at_most_once(self, issuer: RegistrationCodeIssuer) -> None:
        code = issuer.generate("boss", now=T0)
        issuer.redeem(code.code, "first", "first-pw", "First", now=T0)
        with pytest.raises(InvalidRegistrationCode):
            issuer.redeem(code.code, "second", "second-pw", "Second", now=T0)

    def test_expired_code_rejected(self, issuer: RegistrationCodeIssuer, auth_store: AuthStore) -> None:
        """Generated at T0 with a 24h TTL, redeemed at T0 + 25h."""
        code = issuer.generate("boss", now=T0)
        with pytest.raises(InvalidRegistrationCode):
            issuer.redeem(code.code, "late", "late-pass", "Late", now=T0 + timedelta(hours=25))
        assert auth_store.get_code(code.code).is_used is False
        assert auth_store.get_by_username("late") is None

    def test_code_rejected_exactly_at_expiry(self, issuer: RegistrationCodeIssuer) -> None:
        code = issuer.generate("boss", now=T0)
        with pytest.raises(InvalidRegistrationCode):
            issuer.redeem(code.code, "late", "late-pass", "Late", now=code.expires_at)

    def test_unknown_code_rejected(self, issuer: RegistrationCodeIssuer) -> None:
        with pytest.raises(InvalidRegistrationCode):
            issuer.redeem("DEADBEEF", "ghost", "ghost-pw", "Ghost", now=T0)

    def test_duplicate_username_leaves_code_unused(
        self, issuer: RegistrationCodeIssuer, credentials: CredentialStore, auth_store: AuthStore
    ) -> None:
        credentials.create("taken", "taken-pw", "Taken", ROLE_ADMIN, "system")
        code = issuer.generate("boss", now=T0)

        with pytest.raises(UsernameTaken):
            issuer.redeem(code.code, "taken", "other-pw", "Impostor", now=T0)

        stored = auth_store.get_code(code.code)
        assert stored.is_used is False
        assert stored.used_by is None
        # Still redeemable by someone else.
        _, user = issuer.redeem(code.code, "fresh", "fresh-pw", "Fresh", now=T0)
        assert user.username == "fresh"

    def test_weak_password_leaves_code_unused(self, issuer: RegistrationCodeIssuer, auth_store: AuthStore) -> None:
        code = issuer.generate("boss", now=T0)
        with pytest.raises(WeakPassword):
            issuer.redeem(code.code, "weak", "123", "Weak", now=T0)
        assert auth_store.get_code(code.code).is_used is False


class TestHousekeeping:
    def test_list_active_only(self, issuer: RegistrationCodeIssuer) -> None:
        used = issuer.generate("boss", now=T0)
        issuer.redeem(used.code, "someone", "someone-pw", "Someone", now=T0)
        old = issuer.generate("boss", now=T0 - timedelta(hours=30))
        fresh = issuer.generate("boss", now=T0)

        active = [c.code for c in issuer.list(active_only=True, now=T0)]
        everything = [c.code for c in issuer.list(active_only=False, now=T0)]

        assert active == [fresh.code]
        assert set(everything) == {used.code, old.code, fresh.code}

    def test_delete(self, issuer: RegistrationCodeIssuer, auth_store: AuthStore) -> None:
        code = issuer.generate("boss", now=T0)
        issuer.delete(code.id)
        assert auth_store.get_code_by_id(code.id) is None

    def test_delete_missing(self, issuer: RegistrationCodeIssuer) -> None:
        with pytest.raises(NotFound):
            issuer.delete(99999)

    def test_purge_expired(self, issuer: RegistrationCodeIssuer) -> None:
        issuer.generate("boss", now=T0 - timedelta(hours=48))
        issuer.generate("boss", now=T0 - timedelta(hours=25))
        keep = issuer.generate("boss", now=T0)

        assert issuer.purge_expired(now=T0) == 2
        assert [c.code for c in issuer.list(active_only=False, now=T0)] == [keep.code]

"""
auth/registration.py -- Single-use, time-limited onboarding codes.

An admin mints a code; a new user redeems it once, before it expires, to
create a `user`-role account. The account inherits created_by from the code so
every self-registered user traces back to the admin who invited them.

Codes are secrets.token_hex(n).upper() -- 8 uppercase hex characters with the
default n=4. Collisions are retried up to Settings.registration_code_max_attempts
times; the UNIQUE constraint on the code column catches the race between the
existence check and the insert.

Layer rule: no imports from api/ or client/.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError

from auth.credentials import CredentialStore
from auth.errors import ExhaustedAttempts, InvalidRegistrationCode, NotFound, UsernameTaken
from auth.models import ROLE_USER, RegistrationCode, User, utcnow
from auth.store import AuthStore
from core.config import get_settings

logger = logging.getLogger("quotegate.auth.registration")

_settings = get_settings()


def _random_code() -> str:
    return secrets.token_hex(_settings.registration_code_bytes).upper()


class RegistrationCodeIssuer:
    def __init__(
        self,
        store: AuthStore,
        credentials: CredentialStore,
        code_factory: Callable[[], str] = _random_code,
        ttl: timedelta | None = None,
        max_attempts: int | None = None,
    ) -> None:
        self.store = store
        self.credentials = credentials
        self._code_factory = code_factory
        self.ttl = ttl or timedelta(hours=_settings.registration_code_ttl_hours)
        self.max_attempts = max_attempts or _settings.registration_code_max_attempts

    def generate(self, created_by: str, now: datetime | None = None) -> RegistrationCode:
        """Mint a fresh code valid for `ttl`. Raises ExhaustedAttempts on repeated collisions."""
        now = now or utcnow()
        for attempt in range(1, self.max_attempts + 1):
            value = self._code_factory()
            if self.store.code_exists(value):
                logger.debug("Registration code collision on attempt %d", attempt)
                continue
            code = RegistrationCode(code=value, expires_at=now + self.ttl, created_by=created_by)
            try:
                code.id = self.store.create_code(code)
            except IntegrityError:
                logger.debug("Registration code raced on attempt %d", attempt)
                continue
            logger.info("Registration code issued by %s, expires %s", created_by, code.expires_at.isoformat())
            return code
        logger.warning("Registration code generation exhausted %d attempts", self.max_attempts)
        raise ExhaustedAttempts()

    def redeem(
        self,
        code: str,
        username: str,
        password: str,
        display_name: str,
        now: datetime | None = None,
    ) -> tuple[RegistrationCode, User]:
        """Consume `code` and register `username` as a `user`-role account.

        Raises InvalidRegistrationCode if the code is unknown, used or expired,
        UsernameTaken if the username exists. Either failure leaves the code
        unused.
        """
        self.credentials.ensure_acceptable(password)
        user = User(
            username=username,
            display_name=display_name,
            role=ROLE_USER,
            credential=self.credentials.hash(password),
        )
        try:
            redeemed = self.store.redeem_code(code, user, now or utcnow())
        except IntegrityError as exc:
            logger.info("Registration with code rejected: username taken")
            raise UsernameTaken() from exc
        if redeemed is None:
            logger.info("Registration rejected: code invalid, used or expired")
            raise InvalidRegistrationCode()
        claimed, user_id = redeemed
        logger.info("Registration code %s redeemed by user_id=%s", claimed.id, user_id)
        return claimed, self.store.get_by_id(user_id)

    def list(self, active_only: bool = True, now: datetime | None = None) -> list[RegistrationCode]:
        return self.store.list_codes(active_only, now or utcnow())

    def delete(self, code_id: int) -> None:
        if not self.store.delete_code(code_id):
            raise NotFound("Registration code not found.")

    def purge_expired(self, now: datetime | None = None) -> int:
        removed = self.store.purge_expired_codes(now or utcnow())
        if removed:
            logger.info("Purged %d expired registration codes", removed)
        return removed

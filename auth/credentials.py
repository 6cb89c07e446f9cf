"""
auth/credentials.py -- Password hashing, verification and lazy migration.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper) with a configurable
       cost factor (Settings.bcrypt_rounds). Canonical form is the 60-char
       modular-crypt string "$2b$<cost>$<salt+hash>".

  Legacy plaintext: accounts created by the old registration flow still hold
       the plaintext password. A matching login succeeds, and a migration job
       is handed to a worker pool that hashes the password and swaps the stored
       value with a compare-and-swap. The login never waits for it and never
       fails because of it -- a failed migration is logged and retried on the
       next login.

  Timing equalization: verify() always runs one bcrypt comparison, against
       _DUMMY_HASH when the username is unknown, so response time does not
       reveal whether a username exists.

Layer rule: no imports from api/ or client/.
"""

from __future__ import annotations

import hmac
import logging
import re
import threading
from concurrent.futures import Future, ThreadPoolExecutor

import bcrypt
from sqlalchemy.exc import IntegrityError

from auth.errors import InvalidCredentials, UsernameTaken, ValidationFailed, WeakPassword
from auth.models import ROLES, User
from auth.store import AuthStore
from core.config import get_settings

logger = logging.getLogger("quotegate.auth.credentials")

_settings = get_settings()

_BCRYPT_RE = re.compile(r"^\$2[aby]\$\d{2}\$[./A-Za-z0-9]{53}$")

# bcrypt's input limit. Request models count characters, so a password of
# multibyte characters can pass them and still be too long here.
BCRYPT_MAX_BYTES = 72


def _fits_bcrypt(password: str) -> bool:
    return len(password.encode("utf-8")) <= BCRYPT_MAX_BYTES


def hash_password(plain: str, rounds: int | None = None) -> str:
    """Return a bcrypt hash of the plaintext password.

    bcrypt raises ValueError past BCRYPT_MAX_BYTES. Callers run
    password_problem() first, which rejects such passwords.
    """
    salt = bcrypt.gensalt(rounds=rounds or _settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A password over BCRYPT_MAX_BYTES can never match a stored hash, but it
    still pays for one comparison so the rejection is not faster.
    """
    encoded = plain.encode("utf-8")
    try:
        if len(encoded) > BCRYPT_MAX_BYTES:
            bcrypt.checkpw(encoded[:BCRYPT_MAX_BYTES], hashed.encode("utf-8"))
            return False
        return bcrypt.checkpw(encoded, hashed.encode("utf-8"))
    except ValueError:
        return False


def is_canonical_hash(credential: str | None) -> bool:
    return bool(credential) and _BCRYPT_RE.match(credential) is not None


def password_problem(password: str) -> str | None:
    """Return why `password` is unacceptable, or None if it passes the policy."""
    if len(password) < _settings.password_min_length:
        return f"Password must be at least {_settings.password_min_length} characters."
    if not password.strip():
        return "Password must not be blank."
    if not _fits_bcrypt(password):
        return f"Password must be at most {BCRYPT_MAX_BYTES} bytes when UTF-8 encoded."
    return None


# Computed once at module load so the first unknown-user login is not
# measurably slower than later ones.
_DUMMY_HASH: str = hash_password("quotegate_timing_dummy")


class CredentialStore:
    """Verifies, creates and rewrites user credentials.

    Usage:
        credentials = CredentialStore(store)
        user = credentials.verify("alice", "pw123456")
        credentials.close()   # waits for pending migrations
    """

    def __init__(self, store: AuthStore, rounds: int | None = None, workers: int | None = None) -> None:
        self.store = store
        self.rounds = rounds or _settings.bcrypt_rounds
        self._executor = ThreadPoolExecutor(
            max_workers=workers or _settings.hash_workers,
            thread_name_prefix="credential-migrate",
        )
        self._pending: set[Future] = set()
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify(self, username: str, password: str) -> User:
        """Return the active user whose password matches, else raise InvalidCredentials."""
        user = self.store.get_by_username(username, active_only=True)
        if user is None:
            verify_password(password, _DUMMY_HASH)
            logger.info("Login rejected for unknown or inactive username")
            raise InvalidCredentials()
        if not self.check(user, password):
            logger.info("Login rejected for user_id=%s: password mismatch", user.id)
            raise InvalidCredentials()
        return user

    def check(self, user: User, password: str) -> bool:
        """Compare `password` with the user's stored credential.

        A match against a legacy plaintext credential schedules its migration.
        """
        stored = user.credential or ""
        if is_canonical_hash(stored):
            return verify_password(password, stored)
        # Legacy plaintext. Spend one bcrypt round anyway so both paths cost the same.
        verify_password(password, _DUMMY_HASH)
        if not hmac.compare_digest(password.encode("utf-8"), stored.encode("utf-8")):
            return False
        if _fits_bcrypt(password):
            self._schedule_migration(user.id, stored, password)
        else:
            logger.warning(
                "Legacy credential for user_id=%s exceeds %d bytes and cannot be migrated; password change required",
                user.id,
                BCRYPT_MAX_BYTES,
            )
        return True

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, username: str, password: str, display_name: str, role: str, created_by: str | None) -> User:
        """Create an account with a freshly hashed password."""
        if role not in ROLES:
            raise ValidationFailed("Invalid role. Must be 'admin' or 'user'.", errors=[{"field": "role"}])
        self.ensure_acceptable(password)
        user = User(
            username=username,
            display_name=display_name,
            role=role,
            credential=self.hash(password),
            created_by=created_by,
        )
        try:
            user.id = self.store.create_user(user)
        except IntegrityError as exc:
            raise UsernameTaken() from exc
        logger.info("User created: user_id=%s role=%s created_by=%s", user.id, role, created_by)
        return self.store.get_by_id(user.id) or user

    def set_password(self, user: User, new_password: str) -> None:
        """Store `new_password` in canonical hashed form."""
        self.ensure_acceptable(new_password)
        hashed = self.hash(new_password)
        self.store.update_credential(user.id, hashed)
        user.credential = hashed

    def hash(self, password: str) -> str:
        return hash_password(password, self.rounds)

    @staticmethod
    def ensure_acceptable(password: str, field: str = "password") -> None:
        problem = password_problem(password)
        if problem:
            raise WeakPassword(problem, errors=[{"field": field, "message": problem}])

    # ------------------------------------------------------------------
    # Migration worker pool
    # ------------------------------------------------------------------

    def _schedule_migration(self, user_id: int, legacy: str, password: str) -> None:
        future = self._executor.submit(self._migrate, user_id, legacy, password)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._migration_done)

    def _migrate(self, user_id: int, legacy: str, password: str) -> bool:
        swapped = self.store.replace_credential(user_id, legacy, self.hash(password))
        if swapped:
            logger.info("Migrated legacy credential to bcrypt for user_id=%s", user_id)
        else:
            logger.info("Legacy credential for user_id=%s already replaced, migration skipped", user_id)
        return swapped

    def _migration_done(self, future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.warning("Legacy credential migration failed: %s", exc)
        with self._idle:
            self._pending.discard(future)
            self._idle.notify_all()

    def flush(self, timeout: float | None = None) -> bool:
        """Block until every scheduled migration has finished and been logged.

        Returns False if `timeout` ran out first.
        """
        with self._idle:
            return self._idle.wait_for(lambda: not self._pending, timeout=timeout)

    def close(self) -> None:
        self._executor.shutdown(wait=True)

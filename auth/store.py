"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. AuthStore is the repository; _row_to_user /
_row_to_code are the mappers. Services and routes never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Concurrency:
  Username uniqueness is enforced by the UNIQUE constraint, not by a prior
  SELECT. create_user() lets IntegrityError propagate and callers map it.

  Registration-code redemption is a single transaction: an atomic conditional
  UPDATE claims the code (is_used = 0 AND expires_at > now), then the user row
  is inserted. A duplicate username raises IntegrityError inside the
  transaction, which rolls the claim back.

  Legacy credential migration is a compare-and-swap on the old plaintext value
  so it can never overwrite a password changed in the meantime.

Timestamps are stored as fixed-width UTC ISO-8601 strings
(isoformat(timespec="microseconds")), so string comparison in SQL orders them
correctly.

Layer rule: no imports from api/ or client/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import CapabilityWindow, RegistrationCode, User

_DEFAULT_DB_URL = "sqlite:///quotegate_auth.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(64), nullable=False, unique=True),
    Column("credential", Text, nullable=False),  # bcrypt hash, or legacy plaintext
    Column("display_name", String(255), nullable=False),
    Column("role", String(16), nullable=False, server_default="user"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_by", String(64)),
    Column("capability_enabled", Integer, nullable=False, server_default="0"),
    Column("capability_expires_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_codes = Table(
    "registration_codes",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("code", String(32), nullable=False, unique=True),
    Column("is_used", Integer, nullable=False, server_default="0"),
    Column("used_by", String(64)),
    Column("used_at", String(32)),
    Column("expires_at", String(32), nullable=False, index=True),
    Column("created_by", String(64), nullable=False),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Engine setup
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by the migration writer."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return _iso(datetime.now(timezone.utc))


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for User and RegistrationCode entities.

    Usage:
        store = AuthStore("sqlite:///auth.db")
        uid = store.create_user(User(username="alice", display_name="Alice", role="user", credential=h))
        user = store.get_by_username("alice")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Cheap liveness probe for GET /health."""
        with self.engine.connect() as conn:
            return conn.execute(select(1)).scalar() == 1

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username already exists.
        """
        with self.engine.begin() as conn:
            return self._insert_user(conn, user)

    def get_by_username(self, username: str, active_only: bool = False) -> User | None:
        """Look up a user by exact username (case-sensitive)."""
        query = _users.select().where(_users.c.username == username)
        if active_only:
            query = query.where(_users.c.is_active == 1)
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self, active_only: bool = True) -> list[User]:
        """Return users newest first. Soft-deleted users are hidden unless active_only=False."""
        query = _users.select().order_by(_users.c.id.desc())
        if active_only:
            query = query.where(_users.c.is_active == 1)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_credential(self, user_id: int, credential: str) -> bool:
        """Overwrite the stored credential. Returns False if user_id was not found."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(credential=credential, updated_at=_now_iso())
            )
        return result.rowcount > 0

    def replace_credential(self, user_id: int, expected: str, credential: str) -> bool:
        """Compare-and-swap the credential. Returns False if it no longer equals `expected`."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.credential == expected))
                .values(credential=credential, updated_at=_now_iso())
            )
        return result.rowcount > 0

    def deactivate_user(self, user_id: int) -> bool:
        """Soft delete. Rows are never removed."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.is_active == 1))
                .values(is_active=0, updated_at=_now_iso())
            )
        return result.rowcount > 0

    def set_capability(self, user_id: int, window: CapabilityWindow) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(
                    capability_enabled=1 if window.enabled else 0,
                    capability_expires_at=_iso(window.expires_at) if window.expires_at else None,
                    updated_at=_now_iso(),
                )
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Registration codes
    # ------------------------------------------------------------------

    def code_exists(self, code: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(_codes.c.id).where(_codes.c.code == code)).fetchone()
        return row is not None

    def create_code(self, code: RegistrationCode) -> int:
        """Insert a registration code. Raises IntegrityError on a duplicate code value."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _codes.insert().values(
                    code=code.code,
                    is_used=0,
                    expires_at=_iso(code.expires_at),
                    created_by=code.created_by,
                    created_at=_now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    def get_code(self, code: str) -> RegistrationCode | None:
        with self.engine.connect() as conn:
            row = conn.execute(_codes.select().where(_codes.c.code == code)).fetchone()
        return _row_to_code(row) if row is not None else None

    def get_code_by_id(self, code_id: int) -> RegistrationCode | None:
        with self.engine.connect() as conn:
            row = conn.execute(_codes.select().where(_codes.c.id == code_id)).fetchone()
        return _row_to_code(row) if row is not None else None

    def list_codes(self, active_only: bool, now: datetime) -> list[RegistrationCode]:
        """Return codes newest first. active_only keeps unused, unexpired codes."""
        query = _codes.select().order_by(_codes.c.id.desc())
        if active_only:
            query = query.where((_codes.c.is_used == 0) & (_codes.c.expires_at > _iso(now)))
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_code(r) for r in rows]

    def delete_code(self, code_id: int) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_codes.delete().where(_codes.c.id == code_id))
        return result.rowcount > 0

    def purge_expired_codes(self, now: datetime) -> int:
        """Store-level TTL eviction. Returns the number of codes removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_codes.delete().where(_codes.c.expires_at <= _iso(now)))
        return result.rowcount

    def redeem_code(self, code: str, user: User, now: datetime) -> tuple[RegistrationCode, int] | None:
        """Claim `code` for `user` and insert the user, atomically.

        Returns (claimed code, new user id), or None if the code does not
        exist, is used or has expired. user.created_by is taken from the code.
        Raises IntegrityError (and rolls the claim back) on a duplicate username.
        """
        stamp = _iso(now)
        with self.engine.begin() as conn:
            claimed = conn.execute(
                _codes.update()
                .where((_codes.c.code == code) & (_codes.c.is_used == 0) & (_codes.c.expires_at > stamp))
                .values(is_used=1, used_by=user.username, used_at=stamp)
            )
            if claimed.rowcount != 1:
                return None
            row = conn.execute(_codes.select().where(_codes.c.code == code)).fetchone()
            redeemed = _row_to_code(row)
            user.created_by = redeemed.created_by
            user_id = self._insert_user(conn, user)
        return redeemed, user_id

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _insert_user(conn, user: User) -> int:
        stamp = _now_iso()
        result = conn.execute(
            _users.insert().values(
                username=user.username,
                credential=user.credential,
                display_name=user.display_name,
                role=user.role,
                is_active=1 if user.is_active else 0,
                created_by=user.created_by,
                capability_enabled=1 if user.capability.enabled else 0,
                capability_expires_at=_iso(user.capability.expires_at) if user.capability.expires_at else None,
                created_at=stamp,
                updated_at=stamp,
            )
        )
        return result.inserted_primary_key[0]


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        credential=row.credential,
        display_name=row.display_name,
        role=row.role,
        is_active=bool(row.is_active),
        created_by=row.created_by,
        capability=CapabilityWindow(
            enabled=bool(row.capability_enabled),
            expires_at=_parse(row.capability_expires_at),
        ),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_code(row) -> RegistrationCode:
    return RegistrationCode(
        id=row.id,
        code=row.code,
        is_used=bool(row.is_used),
        used_by=row.used_by,
        used_at=_parse(row.used_at),
        expires_at=_parse(row.expires_at),
        created_by=row.created_by,
        created_at=row.created_at,
    )

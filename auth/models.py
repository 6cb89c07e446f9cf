"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and
services do the work. The only behaviour kept here is time-dependent validity,
which is recomputed from `now` on every call and never cached.

Layer rule: no imports from api/ or client/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

ROLE_ADMIN = "admin"
ROLE_USER = "user"
ROLES = frozenset({ROLE_ADMIN, ROLE_USER})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CapabilityWindow:
    """Time-boxed grant of an otherwise admin-only write permission.

    Never swept. An expired window simply stops being active.
    """

    enabled: bool = False
    expires_at: datetime | None = None

    def is_active(self, now: datetime | None = None) -> bool:
        if not self.enabled or self.expires_at is None:
            return False
        return (now or utcnow()) < self.expires_at


@dataclass
class User:
    """A local account.

    credential holds either a canonical bcrypt hash or, for accounts created
    before hashing was introduced, the legacy plaintext password. The first
    successful login against a plaintext value migrates it (see
    auth.credentials.CredentialStore.verify).
    """

    username: str
    display_name: str
    role: str  # "admin" or "user"; immutable after creation
    id: int | None = None
    credential: str | None = None
    is_active: bool = True
    created_by: str | None = None
    capability: CapabilityWindow = field(default_factory=CapabilityWindow)
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class RegistrationCode:
    """Single-use onboarding code minted by an admin."""

    code: str
    expires_at: datetime
    created_by: str
    id: int | None = None
    is_used: bool = False
    used_by: str | None = None
    used_at: datetime | None = None
    created_at: str | None = None

    def is_redeemable(self, now: datetime | None = None) -> bool:
        return not self.is_used and (now or utcnow()) < self.expires_at


@dataclass(frozen=True)
class Identity:
    """The authenticated caller, derived from verified access-token claims.

    Attached to request.state.identity by the session gate and passed
    explicitly to services. subject is the user id.
    """

    subject: int
    role: str
    display_name: str
    username: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @classmethod
    def from_user(cls, user: User) -> Identity:
        return cls(subject=user.id, role=user.role, display_name=user.display_name, username=user.username)

    def legacy_fields(self) -> dict[str, str]:
        """Values for the older role/name checks that predate Identity.

        Exposed as request.state.user_role / request.state.user_name. The
        request headers themselves are never rewritten.
        """
        return {"user_role": self.role, "user_name": self.username}

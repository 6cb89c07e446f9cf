"""
auth/policy.py -- Declarative authorization policies and the single decision point.

Routes never inline role or capability conditionals. They declare a policy
object and authorize() evaluates it:

    authorize(RolePolicy({"admin"}), identity)
    authorize(CapabilityPolicy(), identity, store=store)

authorize() raises Unauthenticated when there is no identity and Forbidden
when the policy denies; it returns the identity otherwise. auth/dependencies.py
adapts these into FastAPI dependencies.

Layer rule: no imports from api/ or client/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from auth import capability
from auth.errors import Forbidden, Unauthenticated
from auth.models import ROLE_ADMIN, Identity
from auth.store import AuthStore

logger = logging.getLogger("quotegate.auth.policy")


@dataclass(frozen=True)
class RolePolicy:
    """Allow identities whose role is in `allowed`."""

    allowed: frozenset[str]
    message: str = "Insufficient permissions."

    def permits(self, identity: Identity, store: AuthStore | None, now: datetime | None) -> bool:
        return identity.role in self.allowed


@dataclass(frozen=True)
class CapabilityPolicy:
    """Allow admins, and non-admins holding an active capability window."""

    message: str = "Vendor edit access is not granted or has expired."

    def permits(self, identity: Identity, store: AuthStore | None, now: datetime | None) -> bool:
        if store is None:
            return identity.is_admin
        return capability.check(store, identity, now)


ADMIN_ONLY = RolePolicy(frozenset({ROLE_ADMIN}), "Admin access required.")


def authorize(
    policy: RolePolicy | CapabilityPolicy,
    identity: Identity | None,
    store: AuthStore | None = None,
    now: datetime | None = None,
) -> Identity:
    if identity is None:
        raise Unauthenticated()
    if not policy.permits(identity, store, now):
        logger.info("Denied %s for user_id=%s role=%s", type(policy).__name__, identity.subject, identity.role)
        raise Forbidden(policy.message)
    return identity

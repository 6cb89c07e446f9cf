"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and authorization.

The session gate (auth/middleware.py) has already verified the bearer token
and put an Identity on request.state by the time these run. They only read it
and hand it to auth.policy.authorize(), the single decision point.

get_identity()        -- 401 if no identity is attached.
require_role(*roles)  -- 401 without identity, 403 if the role is not allowed.
require_admin         -- require_role("admin").
require_capability    -- admin, or a non-admin with an active capability window
                         (re-read from the store on every call).

Layer rule: no imports from api/ or client/.
  auth/dependencies.py may import from fastapi because it is part of the
  FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.errors import Unauthenticated
from auth.models import ROLE_ADMIN, Identity
from auth.policy import CapabilityPolicy, RolePolicy, authorize
from auth.store import AuthStore

_CAPABILITY = CapabilityPolicy()


def try_get_identity(request: Request) -> Identity | None:
    return getattr(request.state, "identity", None)


def get_identity(request: Request) -> Identity:
    """Require authentication. Use as Depends(get_identity)."""
    identity = try_get_identity(request)
    if identity is None:
        # Only reachable for routes mounted on a public path by mistake.
        raise Unauthenticated()
    return identity


def require_role(*roles: str) -> Callable[[Request], Identity]:
    """Build a dependency that admits only the given roles.

    Use as a FastAPI dependency:
        @router.get("/admin-only")
        def route(identity: Identity = Depends(require_role("admin"))): ...
    """
    allowed = frozenset(roles)
    message = "Admin access required." if allowed == {ROLE_ADMIN} else "Insufficient permissions."
    policy = RolePolicy(allowed, message)

    def dependency(request: Request) -> Identity:
        return authorize(policy, try_get_identity(request))

    return dependency


require_admin = require_role(ROLE_ADMIN)


def require_capability(request: Request) -> Identity:
    """Gate for writes that admins or capability-window holders may perform."""
    store: AuthStore = request.app.state.auth_store
    return authorize(_CAPABILITY, try_get_identity(request), store=store)

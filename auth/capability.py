"""
auth/capability.py -- Admin-granted, time-boxed write permission.

A capability window lets one non-admin user perform writes that are normally
admin-only (vendor edits) until it expires. It is stored on the user row as
{enabled, expires_at} and evaluated lazily: every check re-reads the row, so a
revoked or expired grant is denied on the very next request. Nothing sweeps
expired windows.

Layer rule: no imports from api/ or client/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from auth.errors import Forbidden, NotFound, ValidationFailed
from auth.models import CapabilityWindow, Identity, utcnow
from auth.store import AuthStore
from core.config import get_settings

logger = logging.getLogger("quotegate.auth.capability")

_settings = get_settings()


def grant(
    store: AuthStore,
    admin: Identity,
    target_user_id: int,
    enable: bool,
    hours: float | None = None,
    now: datetime | None = None,
) -> CapabilityWindow:
    """Open a window of `hours` for the target user, or close it when enable is False."""
    if not admin.is_admin:
        raise Forbidden("Only administrators can grant vendor edit access.")
    target = store.get_by_id(target_user_id)
    if target is None or not target.is_active:
        raise NotFound("User not found.")

    if enable:
        hours = _settings.capability_default_hours if hours is None else hours
        if hours <= 0:
            raise ValidationFailed("hours must be positive.", errors=[{"field": "hours"}])
        window = CapabilityWindow(enabled=True, expires_at=(now or utcnow()) + timedelta(hours=hours))
    else:
        window = CapabilityWindow()

    store.set_capability(target_user_id, window)
    logger.info(
        "Vendor edit window %s for user_id=%s by %s (expires_at=%s)",
        "granted" if window.enabled else "revoked",
        target_user_id,
        admin.username,
        window.expires_at.isoformat() if window.expires_at else None,
    )
    return window


def current_window(store: AuthStore, user_id: int) -> CapabilityWindow | None:
    """Freshly read window of an active user, or None if the user is gone."""
    user = store.get_by_id(user_id)
    if user is None or not user.is_active:
        return None
    return user.capability


def check(store: AuthStore, identity: Identity, now: datetime | None = None) -> bool:
    """True if `identity` may perform a capability-gated write at `now`."""
    if identity.is_admin:
        return True
    window = current_window(store, identity.subject)
    return window is not None and window.is_active(now)

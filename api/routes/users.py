"""
api/routes/users.py -- Delegated vendor-edit capability endpoint.

Routes:
  POST /users/{id}/vendor-edit  -- open or close a user's vendor edit window (admin only)

The window itself is enforced by auth.dependencies.require_capability on the
vendor write routes, which re-reads it from the store on every request.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import CapabilityWindowView, Envelope, VendorEditGrant
from auth import capability
from auth.dependencies import require_admin
from auth.models import Identity
from auth.store import AuthStore

# Auth policy:
# - POST /users/{id}/vendor-edit: requires admin (require_admin); capability.grant re-checks the role
router = APIRouter()


@router.post("/users/{user_id}/vendor-edit", response_model=Envelope[CapabilityWindowView])
async def set_vendor_edit(
    request: Request,
    user_id: int,
    body: VendorEditGrant,
    admin: Identity = Depends(require_admin),
) -> Envelope[CapabilityWindowView]:
    """Grant `hours` of vendor edit access (default 5), or revoke it with enable=false."""
    store: AuthStore = request.app.state.auth_store
    window = capability.grant(store, admin, user_id, body.enable, body.hours)
    message = "Vendor edit access granted." if window.enabled else "Vendor edit access revoked."
    return Envelope[CapabilityWindowView](data=CapabilityWindowView.from_window(window), message=message)

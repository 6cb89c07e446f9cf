"""
api/routes/auth.py -- Session, account and registration-code REST endpoints.

Routes:
  POST   /auth/login                        -- password login; access token + refresh cookie
  POST   /auth/refresh                      -- new access token from the refresh cookie
  POST   /auth/register                     -- redeem a registration code for a new account
  POST   /auth/change-password              -- change own password (old password required)
  GET    /auth/me                           -- current identity and capability window
  GET    /auth/users                        -- list active users (admin only)
  POST   /auth/users                        -- create user (admin only)
  DELETE /auth/users/{id}                   -- soft-delete user (admin only)
  PUT    /auth/users/{id}/reset-password    -- reset to the configured default (admin only)
  POST   /auth/registration-codes           -- mint a code (admin only)
  GET    /auth/registration-codes           -- list codes (admin only)
  DELETE /auth/registration-codes/{id}      -- delete a code (admin only)

Security:
  POST /login is rate-limited per IP (Settings.login_rate_limit).
  CredentialStore.verify() does timing equalization -- use it, never inline a
      lookup + compare.
  Login and refresh responses carry Cache-Control: no-store.
  DELETE /users/{id} refuses self-deletion.

Handlers that hash or verify passwords are plain `def` so FastAPI runs them on
its threadpool instead of blocking the event loop with bcrypt.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    CapabilityWindowView,
    ChangePasswordRequest,
    Envelope,
    IssuedCodeData,
    LoginData,
    LoginRequest,
    MeData,
    RefreshData,
    RegisterRequest,
    RegistrationCodeView,
    UserCreate,
    UserView,
    envelope,
)
from auth import capability
from auth.credentials import CredentialStore
from auth.dependencies import get_identity, require_admin
from auth.errors import Forbidden, InvalidCredentials, NotFound, TokenError, Unauthenticated, ValidationFailed
from auth.models import Identity
from auth.registration import RegistrationCodeIssuer
from auth.store import AuthStore
from auth.tokens import (
    REFRESH_COOKIE,
    REFRESH_TOKEN,
    access_token_expires_in,
    clear_refresh_cookie,
    issue_access_token,
    issue_refresh_token,
    set_refresh_cookie,
    verify_token,
)
from core.config import get_settings

logger = logging.getLogger("quotegate.api.auth")

_settings = get_settings()

# Auth policy:
# - POST   /auth/login:                      public (session gate whitelist)
# - POST   /auth/refresh:                    public -- authenticated by the refresh cookie instead
# - POST   /auth/register:                   public -- authenticated by the registration code instead
# - POST   /auth/change-password:            requires auth (get_identity); own account unless admin
# - GET    /auth/me:                         requires auth (get_identity)
# - GET    /auth/users:                      requires admin (require_admin)
# - POST   /auth/users:                      requires admin (require_admin)
# - DELETE /auth/users/{id}:                 requires admin (require_admin)
# - PUT    /auth/users/{id}/reset-password:  requires admin (require_admin)
# - *      /auth/registration-codes[/{id}]:  requires admin (require_admin)
router = APIRouter()


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _refresh_rejected() -> JSONResponse:
    """401 that also drops the unusable refresh cookie from the browser."""
    resp = JSONResponse(
        status_code=401,
        content={"success": False, "message": Unauthenticated.message},
        headers={"WWW-Authenticate": "Bearer"},
    )
    clear_refresh_cookie(resp)
    return _no_store(resp)


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=Envelope[LoginData])
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password.

    The access token goes in the body; the refresh token only ever travels in
    the httpOnly cookie. Wrong username and wrong password share one message.
    """
    credentials: CredentialStore = request.app.state.credentials
    try:
        user = credentials.verify(body.username, body.password)
    except InvalidCredentials as exc:
        return _no_store(JSONResponse(status_code=401, content={"success": False, "message": exc.message}))

    identity = Identity.from_user(user)
    data = LoginData(
        access_token=issue_access_token(identity),
        expires_in=access_token_expires_in(),
        user=UserView.from_user(user),
    )
    resp = JSONResponse(status_code=200, content=envelope(data, "Login successful."))
    set_refresh_cookie(resp, issue_refresh_token(identity))
    logger.info("Login succeeded for user_id=%s", user.id)
    return _no_store(resp)


@router.post("/auth/refresh", response_model=Envelope[RefreshData])
def refresh(request: Request) -> JSONResponse:
    """Exchange the refresh cookie for a new access token.

    The account is re-read so a soft-deleted user cannot keep refreshing. The
    refresh token itself is not rotated; it expires on its own schedule.
    """
    token = request.cookies.get(REFRESH_COOKIE)
    if not token:
        logger.info("Refresh rejected: no refresh cookie")
        raise Unauthenticated()
    try:
        claims = verify_token(token, REFRESH_TOKEN)
    except TokenError as exc:
        logger.info("Refresh rejected: %s", type(exc).__name__)
        return _refresh_rejected()

    store: AuthStore = request.app.state.auth_store
    user = store.get_by_id(claims.identity.subject)
    if user is None or not user.is_active:
        logger.info("Refresh rejected: user_id=%s no longer active", claims.identity.subject)
        return _refresh_rejected()

    data = RefreshData(
        access_token=issue_access_token(Identity.from_user(user)),
        expires_in=access_token_expires_in(),
    )
    return _no_store(JSONResponse(status_code=200, content=envelope(data)))


@router.post("/auth/register", response_model=Envelope[UserView], status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a `user`-role account by redeeming a registration code.

    The code is checked first; a taken username leaves the code unused.
    """
    issuer: RegistrationCodeIssuer = request.app.state.issuer
    _, user = issuer.redeem(
        body.registration_code.upper(),
        body.username,
        body.password,
        body.display_name,
    )
    return JSONResponse(status_code=201, content=envelope(UserView.from_user(user), "Registration successful."))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/change-password", response_model=Envelope[None])
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    identity: Identity = Depends(get_identity),
) -> Envelope[None]:
    """Change a password after proving knowledge of the old one.

    Non-admins may only change their own password.
    """
    username = body.username or identity.username
    if username != identity.username and not identity.is_admin:
        raise Forbidden("You can only change your own password.")

    credentials: CredentialStore = request.app.state.credentials
    credentials.ensure_acceptable(body.new_password, field="newPassword")

    store: AuthStore = request.app.state.auth_store
    user = store.get_by_username(username, active_only=True)
    if user is None:
        raise NotFound("User not found.")
    if not credentials.check(user, body.old_password):
        logger.info("Password change rejected for user_id=%s: old password mismatch", user.id)
        raise InvalidCredentials("Old password is incorrect.")

    credentials.set_password(user, body.new_password)
    logger.info("Password changed for user_id=%s", user.id)
    return Envelope[None](message="Password changed.")


@router.get("/auth/me", response_model=Envelope[MeData])
async def me(request: Request, identity: Identity = Depends(get_identity)) -> Envelope[MeData]:
    """Return the caller's identity with a freshly read capability window."""
    store: AuthStore = request.app.state.auth_store
    window = capability.current_window(store, identity.subject)
    return Envelope[MeData](
        data=MeData(
            id=identity.subject,
            username=identity.username,
            display_name=identity.display_name,
            role=identity.role,
            capability_window=CapabilityWindowView.from_window(window) if window is not None else None,
        )
    )


# ---------------------------------------------------------------------------
# User management (admin only)
# ---------------------------------------------------------------------------


@router.get("/auth/users", response_model=Envelope[list[UserView]])
async def list_users(request: Request, admin: Identity = Depends(require_admin)) -> Envelope[list[UserView]]:
    """List active user accounts. Admin only."""
    store: AuthStore = request.app.state.auth_store
    return Envelope[list[UserView]](data=[UserView.from_user(u) for u in store.list_users()])


@router.post("/auth/users", response_model=Envelope[UserView], status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    admin: Identity = Depends(require_admin),
) -> Envelope[UserView]:
    """Create an account directly, without a registration code. Admin only."""
    credentials: CredentialStore = request.app.state.credentials
    user = credentials.create(body.username, body.password, body.display_name, body.role, admin.username)
    return Envelope[UserView](data=UserView.from_user(user), message="User created.")


@router.delete("/auth/users/{user_id}", response_model=Envelope[None])
async def delete_user(
    request: Request,
    user_id: int,
    admin: Identity = Depends(require_admin),
) -> Envelope[None]:
    """Soft-delete an account (is_active = False). Admin only.

    Admins cannot delete themselves. Issued tokens stay valid until expiry,
    but refresh stops working immediately.
    """
    if user_id == admin.subject:
        raise ValidationFailed("You cannot delete your own account.")
    store: AuthStore = request.app.state.auth_store
    if not store.deactivate_user(user_id):
        raise NotFound("User not found.")
    logger.info("User user_id=%s deactivated by %s", user_id, admin.username)
    return Envelope[None](message="User deleted.")


@router.put("/auth/users/{user_id}/reset-password", response_model=Envelope[None])
def reset_password(
    request: Request,
    user_id: int,
    admin: Identity = Depends(require_admin),
) -> Envelope[None]:
    """Reset a password to Settings.default_reset_password. Admin only."""
    store: AuthStore = request.app.state.auth_store
    user = store.get_by_id(user_id)
    if user is None or not user.is_active:
        raise NotFound("User not found.")
    credentials: CredentialStore = request.app.state.credentials
    credentials.set_password(user, _settings.default_reset_password)
    logger.info("Password reset for user_id=%s by %s", user_id, admin.username)
    return Envelope[None](message="Password reset to the default password.")


# ---------------------------------------------------------------------------
# Registration codes (admin only)
# ---------------------------------------------------------------------------


@router.post("/auth/registration-codes", response_model=Envelope[IssuedCodeData], status_code=201)
async def create_registration_code(
    request: Request,
    admin: Identity = Depends(require_admin),
) -> Envelope[IssuedCodeData]:
    issuer: RegistrationCodeIssuer = request.app.state.issuer
    code = issuer.generate(admin.username)
    return Envelope[IssuedCodeData](
        data=IssuedCodeData(id=code.id, code=code.code, expires_at=code.expires_at),
        message="Registration code created.",
    )


@router.get("/auth/registration-codes", response_model=Envelope[list[RegistrationCodeView]])
async def list_registration_codes(
    request: Request,
    active_only: bool = Query(default=True, alias="activeOnly"),
    admin: Identity = Depends(require_admin),
) -> Envelope[list[RegistrationCodeView]]:
    issuer: RegistrationCodeIssuer = request.app.state.issuer
    codes = issuer.list(active_only=active_only)
    return Envelope[list[RegistrationCodeView]](data=[RegistrationCodeView.from_code(c) for c in codes])


@router.delete("/auth/registration-codes/{code_id}", response_model=Envelope[None])
async def delete_registration_code(
    request: Request,
    code_id: int,
    admin: Identity = Depends(require_admin),
) -> Envelope[None]:
    issuer: RegistrationCodeIssuer = request.app.state.issuer
    issuer.delete(code_id)
    logger.info("Registration code id=%s deleted by %s", code_id, admin.username)
    return Envelope[None](message="Registration code deleted.")


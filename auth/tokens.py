"""
auth/tokens.py -- Access/refresh JWT issuance, verification and cookie helpers.

Security design decisions:
  JWT: python-jose with HS256. Both token kinds are signed with SECRET_KEY and
       carry sub (user id), role, name (display name), username, typ, iat and
       exp. typ keeps the two kinds apart: a refresh token is never accepted
       where an access token is expected, and vice versa.

  Expiry: checked here rather than by jose, against an injectable `now`, so
       that a token is valid for every t < iat + ttl and expired for every
       t >= iat + ttl. jose alone would still accept t == exp.

  Statelessness: verify_token() is pure -- no I/O, no store lookup. There is
       no revocation list; a token is honoured until its own expiry even after
       the client logs out.

  Refresh cookie: httponly, SameSite=strict, scoped to /auth so it is only
       sent to the refresh endpoint family, secure when SECURE_COOKIES=true.

Layer rule: no imports from api/ or client/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from jose import JWTError, jwt

from auth.errors import TokenExpired, TokenInvalid
from auth.models import ROLES, Identity
from core.config import get_settings

logger = logging.getLogger("quotegate.auth.tokens")

_settings = get_settings()

_ALGORITHM = "HS256"

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"

REFRESH_COOKIE = "refresh_token"
REFRESH_COOKIE_PATH = "/auth"


@dataclass(frozen=True)
class TokenClaims:
    """Verified contents of a token."""

    identity: Identity
    token_type: str
    issued_at: datetime
    expires_at: datetime

    @classmethod
    def from_payload(cls, payload: dict) -> TokenClaims:
        """Raises KeyError/TypeError/ValueError on a malformed payload."""
        role = payload["role"]
        if role not in ROLES:
            raise ValueError(f"unknown role {role!r}")
        identity = Identity(
            subject=int(payload["sub"]),
            role=role,
            display_name=str(payload.get("name", "")),
            username=str(payload["username"]),
        )
        return cls(
            identity=identity,
            token_type=payload["typ"],
            issued_at=datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc),
            expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
        )


# ---------------------------------------------------------------------------
# Issuance
# ---------------------------------------------------------------------------


def _issue(identity: Identity, token_type: str, ttl_seconds: int, now: datetime | None) -> str:
    issued = int((now or datetime.now(timezone.utc)).timestamp())
    payload = {
        "sub": str(identity.subject),
        "role": identity.role,
        "name": identity.display_name,
        "username": identity.username,
        "typ": token_type,
        "iat": issued,
        "exp": issued + ttl_seconds,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def issue_access_token(identity: Identity, now: datetime | None = None) -> str:
    """Short-lived bearer token (Settings.access_token_expire_seconds, 20 minutes by default)."""
    return _issue(identity, ACCESS_TOKEN, _settings.access_token_expire_seconds, now)


def issue_refresh_token(identity: Identity, now: datetime | None = None) -> str:
    """Long-lived token, only ever sent in the refresh cookie (7 days by default)."""
    return _issue(identity, REFRESH_TOKEN, _settings.refresh_token_expire_seconds, now)


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


def verify_token(token: str, expected_type: str = ACCESS_TOKEN, now: datetime | None = None) -> TokenClaims:
    """Verify signature, type and expiry.

    Raises TokenExpired once now >= exp, TokenInvalid for everything else
    (bad signature, malformed, wrong typ, missing claims).
    """
    try:
        payload = jwt.decode(
            token,
            _settings.secret_key,
            algorithms=[_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError as exc:
        raise TokenInvalid() from exc
    try:
        claims = TokenClaims.from_payload(payload)
    except (KeyError, TypeError, ValueError) as exc:
        raise TokenInvalid() from exc
    if claims.token_type != expected_type:
        raise TokenInvalid()
    moment = now or datetime.now(timezone.utc)
    if moment >= claims.expires_at:
        raise TokenExpired()
    return claims


def access_token_expires_in() -> int:
    return _settings.access_token_expire_seconds


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_refresh_cookie(response, token: str) -> None:
    """Write the refresh token as an httpOnly, SameSite=strict cookie.

    max_age matches the refresh TTL so cookie and token expire together.
    """
    response.set_cookie(
        REFRESH_COOKIE,
        value=token,
        max_age=_settings.refresh_token_expire_seconds,
        path=REFRESH_COOKIE_PATH,
        httponly=True,
        samesite="strict",
        secure=_settings.secure_cookies,
    )


def clear_refresh_cookie(response) -> None:
    response.delete_cookie(
        REFRESH_COOKIE,
        path=REFRESH_COOKIE_PATH,
        httponly=True,
        samesite="strict",
        secure=_settings.secure_cookies,
    )

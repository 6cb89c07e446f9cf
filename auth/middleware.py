"""
auth/middleware.py -- Per-request session gate.

Every request must carry `Authorization: Bearer <access token>` unless its path
is on the public whitelist or it is a read-only status poll. On success the
verified identity is attached to request.state; on failure the request ends
here with a 401 whose message never says whether the token was missing,
forged or expired. The reason goes to the log only.

Legacy bridge: request.state.user_role and request.state.user_name carry the
same role and username for older checks that read per-request fields instead
of Identity. They are derived from the verified claims, never from client
headers, and the request headers are left untouched.

Registered in api/main.py with app.middleware("http")(session_gate).
"""

from __future__ import annotations

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from auth.errors import TokenError, Unauthenticated
from auth.tokens import ACCESS_TOKEN, verify_token

logger = logging.getLogger("quotegate.auth.middleware")

PUBLIC_PATHS = frozenset({"/auth/login", "/auth/register", "/auth/refresh", "/health"})
PUBLIC_GET_PREFIXES = ("/maintenance", "/announcement")


def is_public(method: str, path: str) -> bool:
    if method == "OPTIONS" or path.rstrip("/") in PUBLIC_PATHS:
        return True
    return method in ("GET", "HEAD") and path.startswith(PUBLIC_GET_PREFIXES)


def bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _unauthenticated() -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"success": False, "message": Unauthenticated.message},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def session_gate(request: Request, call_next):
    """Verify the access token and attach Identity, or short-circuit with 401."""
    if is_public(request.method, request.url.path):
        return await call_next(request)

    token = bearer_token(request)
    if token is None:
        logger.info("Rejected %s %s: no bearer token", request.method, request.url.path)
        return _unauthenticated()
    try:
        claims = verify_token(token, ACCESS_TOKEN)
    except TokenError as exc:
        logger.info("Rejected %s %s: %s", request.method, request.url.path, type(exc).__name__)
        return _unauthenticated()

    identity = claims.identity
    request.state.identity = identity
    for name, value in identity.legacy_fields().items():
        setattr(request.state, name, value)
    return await call_next(request)

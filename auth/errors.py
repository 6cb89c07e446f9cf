"""
auth/errors.py -- Error taxonomy for the auth subsystem.

Every error carries the HTTP status it maps to, a human-readable message and
optional field-level detail. api/main.py renders all of them in the standard
{success, message, errors} envelope, so services raise and never build
responses themselves.

Unauthenticated messages are deliberately generic. Callers must not learn
whether a username exists, or whether a token was expired rather than forged.

Layer rule: no imports from api/ or client/.
"""

from __future__ import annotations

from typing import Any


class AuthError(Exception):
    """Base class. status_code and message are class defaults, overridable per instance."""

    status_code: int = 500
    message: str = "Internal error."

    def __init__(self, message: str | None = None, errors: list[dict[str, Any]] | None = None) -> None:
        self.message = message or type(self).message
        self.errors = errors
        super().__init__(self.message)


class Unauthenticated(AuthError):
    status_code = 401
    message = "Authentication required."


class InvalidCredentials(Unauthenticated):
    message = "Invalid username or password."


class TokenError(Unauthenticated):
    """Raised by auth.tokens.verify_token(). The subclass is for logs only."""

    message = "Invalid or expired token."


class TokenExpired(TokenError):
    pass


class TokenInvalid(TokenError):
    pass


class Forbidden(AuthError):
    status_code = 403
    message = "Insufficient permissions."


class ValidationFailed(AuthError):
    status_code = 400
    message = "Request validation failed."


class WeakPassword(ValidationFailed):
    message = "Password does not meet the password policy."


class InvalidRegistrationCode(ValidationFailed):
    message = "Registration code is invalid or has expired."


class UsernameTaken(ValidationFailed):
    message = "Username already exists."


class NotFound(AuthError):
    status_code = 404
    message = "Not found."


class Conflict(AuthError):
    status_code = 409
    message = "Conflict."


class ExhaustedAttempts(Conflict):
    message = "Could not generate a unique registration code, please retry."

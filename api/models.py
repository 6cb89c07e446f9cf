"""
API request and response models for quotegate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire format: JSON keys are camelCase (accessToken, displayName, ...) via an
alias generator; Python attributes stay snake_case. Every response is wrapped in
the {success, message?, data?, errors?} envelope.
"""

from datetime import datetime
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import CapabilityWindow, RegistrationCode, User

T = TypeVar("T")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


class Envelope(_CamelModel, Generic[T]):
    """Top-level wrapper for every JSON response."""

    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None
    errors: Optional[list[dict[str, Any]]] = None


def envelope(data: Any = None, message: Optional[str] = None) -> dict:
    """Serialise a success envelope the way FastAPI would, for hand-built JSONResponses."""
    return Envelope[Any](data=data, message=message).model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Shared response rows
# ---------------------------------------------------------------------------


class CapabilityWindowView(_CamelModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool
    expires_at: Optional[datetime] = None
    active: bool = False

    @classmethod
    def from_window(cls, window: CapabilityWindow) -> "CapabilityWindowView":
        return cls(enabled=window.enabled, expires_at=window.expires_at, active=window.is_active())


class UserView(_CamelModel):
    """Public projection of a user -- never includes the credential."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    display_name: str
    role: str
    is_active: bool = True
    created_by: Optional[str] = None
    created_at: Optional[str] = None
    capability_window: CapabilityWindowView

    @classmethod
    def from_user(cls, user: User) -> "UserView":
        return cls(
            id=user.id,
            username=user.username,
            display_name=user.display_name,
            role=user.role,
            is_active=user.is_active,
            created_by=user.created_by,
            created_at=user.created_at,
            capability_window=CapabilityWindowView.from_window(user.capability),
        )


class RegistrationCodeView(_CamelModel):
    model_config = ConfigDict(frozen=True)

    id: int
    code: str
    is_used: bool
    used_by: Optional[str] = None
    used_at: Optional[datetime] = None
    expires_at: datetime
    created_by: str
    created_at: Optional[str] = None

    @classmethod
    def from_code(cls, code: RegistrationCode) -> "RegistrationCodeView":
        return cls(
            id=code.id,
            code=code.code,
            is_used=code.is_used,
            used_by=code.used_by,
            used_at=code.used_at,
            expires_at=code.expires_at,
            created_by=code.created_by,
            created_at=code.created_at,
        )


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class LoginRequest(_CamelModel):
    username: str = Field(min_length=1, max_length=64)
    password: str = Field(min_length=1, max_length=72)


class RegisterRequest(_CamelModel):
    username: str = Field(min_length=3, max_length=64)
    password: str = Field(min_length=1, max_length=72)
    display_name: str = Field(min_length=1, max_length=255)
    registration_code: str = Field(min_length=1, max_length=32)


class ChangePasswordRequest(_CamelModel):
    # Defaults to the caller.
    username: Optional[str] = Field(default=None, min_length=1, max_length=64)
    old_password: str = Field(min_length=1, max_length=72)
    new_password: str = Field(min_length=1, max_length=72)


class UserCreate(_CamelModel):
    username: str = Field(min_length=3, max_length=64)
    password: str = Field(min_length=1, max_length=72)
    display_name: str = Field(min_length=1, max_length=255)
    role: str = "user"


class VendorEditGrant(_CamelModel):
    enable: bool
    hours: Optional[float] = Field(default=None, gt=0, le=24 * 30)


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class LoginData(_CamelModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserView


class RefreshData(_CamelModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int


class MeData(_CamelModel):
    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    display_name: str
    role: str
    capability_window: Optional[CapabilityWindowView] = None


class IssuedCodeData(_CamelModel):
    model_config = ConfigDict(frozen=True)

    id: int
    code: str
    expires_at: datetime


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------


class MaintenanceSchedule(_CamelModel):
    delay: int = Field(default=60, ge=0, le=24 * 3600)
    msg: Optional[str] = Field(default=None, max_length=500)


class AnnouncementPublish(_CamelModel):
    msg: str = Field(min_length=1, max_length=2000)


class MaintenanceData(_CamelModel):
    model_config = ConfigDict(frozen=True)

    status: str
    message: str
    start_at: Optional[datetime] = None
    delay_seconds: int = 0
    begins_at: Optional[datetime] = None
    last_ended_at: Optional[datetime] = None


class AnnouncementData(_CamelModel):
    model_config = ConfigDict(frozen=True)

    message: str
    created_at: Optional[datetime] = None


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]

"""
API request and response models for Tourbook REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

UserResponse has no password or reset-token fields, so a hashed password can
never be serialized by accident -- there is nowhere to put it.

Wire names follow the public client contract (passwordConfirm,
passwordCurrent); populate_by_name also accepts the snake_case names.
"""

from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from auth.models import Role, User

# ---------------------------------------------------------------------------
# Request models
#
# Only name and email are whitespace-stripped. Password fields are passed
# through byte for byte on every model, so the string a user sets is the
# string that later logs in.
# ---------------------------------------------------------------------------

NameText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
EmailText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/users/signup.

    There is no role field: self-service signup always creates a regular
    user. Admins promote accounts through PATCH /api/v1/users/{id}.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: NameText
    email: EmailText
    password: str = Field(min_length=1, max_length=255)
    password_confirm: str = Field(alias="passwordConfirm", min_length=1, max_length=255)


class LoginRequest(BaseModel):
    email: EmailText
    password: str = Field(min_length=1, max_length=255)


class ForgotPasswordRequest(BaseModel):
    email: EmailText


class ResetPasswordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    password: str = Field(min_length=1, max_length=255)
    password_confirm: str = Field(alias="passwordConfirm", min_length=1, max_length=255)


class UpdatePasswordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    password_current: str = Field(alias="passwordCurrent", min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)
    password_confirm: str = Field(alias="passwordConfirm", min_length=1, max_length=255)


class UpdateMeRequest(BaseModel):
    """Request body for PATCH /api/v1/users/update-me.

    Password fields are accepted only so the route can reject them with a
    pointer to /update-my-password instead of silently dropping them.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[Annotated[str, StringConstraints(strip_whitespace=True, max_length=100)]] = None
    email: Optional[Annotated[str, StringConstraints(strip_whitespace=True, max_length=255)]] = None
    password: Optional[str] = None
    password_confirm: Optional[str] = Field(default=None, alias="passwordConfirm")


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/users/{id} (admin only)."""

    role: Optional[Role] = None
    active: Optional[bool] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str
    role: Role
    photo: str
    active: bool
    created_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role,
            photo=user.photo,
            active=user.active,
            created_at=user.created_at,
        )


class UserData(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: UserResponse


class AuthResponse(BaseModel):
    """Returned by signup, login, reset-password, and update-my-password."""

    model_config = ConfigDict(frozen=True)

    status: str = "success"
    token: str
    data: UserData


class UserEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "success"
    data: UserData


class UserListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "success"
    results: int
    data: list[UserResponse]


class SessionResponse(BaseModel):
    """Response for GET /api/v1/users/session. user is None for anonymous visitors."""

    model_config = ConfigDict(frozen=True)

    authenticated: bool
    user: Optional[UserResponse] = None


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "success"
    message: Optional[str] = None


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str

"""
API request and response models for the auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Request bodies are validated here, before anything reaches AuthService, so
the auth core never inspects untyped payloads. Field names are camelCase on
the wire (refreshToken, createdAt) and snake_case in Python.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import AuthResult, PublicUser
from auth.passwords import MAX_PASSWORD_BYTES, password_too_long

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", no whitespace, a dot in the domain part.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _password_fits_bcrypt(value: str) -> str:
    if password_too_long(value):
        raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes in UTF-8")
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = _CAMEL

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=MAX_PASSWORD_BYTES)
    name: Optional[str] = Field(default=None, max_length=255)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _password_fits_bcrypt(value)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = _CAMEL

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=MAX_PASSWORD_BYTES)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _password_fits_bcrypt(value)


class RefreshTokenRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh and /logout."""

    model_config = _CAMEL

    refresh_token: str = Field(min_length=1, max_length=4096)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public user view. Never carries a password field."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int
    email: str
    name: Optional[str]
    created_at: str

    @classmethod
    def from_domain(cls, user: PublicUser) -> "UserResponse":
        return cls(id=user.id, email=user.email, name=user.name, created_at=user.created_at)


class AuthResponse(BaseModel):
    """Response for register, login, and refresh."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    user: UserResponse
    access_token: str
    refresh_token: str

    @classmethod
    def from_result(cls, result: AuthResult) -> "AuthResponse":
        """Factory Method -- the domain-to-wire mapping lives with the wire model."""
        return cls(
            user=UserResponse.from_domain(result.user),
            access_token=result.access_token,
            refresh_token=result.refresh_token,
        )


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me."""

    model_config = ConfigDict(frozen=True)

    user: UserResponse


class ProtectedResponse(BaseModel):
    """Response for the sample protected route."""

    model_config = ConfigDict(frozen=True)

    message: str
    user: UserResponse


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


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
    uptime: float
    timestamp: str


class RootResponse(BaseModel):
    """Response for GET / -- service banner."""

    model_config = ConfigDict(frozen=True)

    message: str
    version: str
    timestamp: str

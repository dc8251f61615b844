"""
API request and response models for Gatehouse REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire names are camelCase (usernameOrEmail, accessToken); Python attribute
names stay snake_case. Responses are serialized with by_alias=True.

Validation here mirrors auth.service.validate_registration / validate_login,
so malformed input is rejected with 422 before any store or bcrypt work.
"""

from typing import Optional

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import MIN_PASSWORD_LENGTH, Principal

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    The email is checked with email-validator but stored exactly as given;
    EmailStr is avoided because it rewrites the domain to lowercase.
    """

    username: str = Field(min_length=1, max_length=255)
    email: str = Field(max_length=320)
    password: str = Field(min_length=MIN_PASSWORD_LENGTH, max_length=1024)

    @field_validator("username")
    @classmethod
    def username_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("username must not be blank")
        return value

    @field_validator("email")
    @classmethod
    def email_is_valid(cls, value: str) -> str:
        try:
            validate_email(value, check_deliverability=False)
        except EmailNotValidError as exc:
            raise ValueError(str(exc)) from exc
        return value


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = ConfigDict(populate_by_name=True)

    username_or_email: str = Field(alias="usernameOrEmail", min_length=1, max_length=320)
    password: str = Field(min_length=MIN_PASSWORD_LENGTH, max_length=1024)

    @field_validator("username_or_email")
    @classmethod
    def identifier_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("usernameOrEmail must not be blank")
        return value


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public identity of a principal. Never carries password material."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str

    @classmethod
    def from_principal(cls, principal: Principal) -> "UserResponse":
        return cls(id=principal.id, username=principal.username, email=principal.email)


class AuthResponse(BaseModel):
    """Response body for successful register and login calls."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    access_token: str = Field(alias="accessToken")
    user: UserResponse


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
    """Response for GET /healthz."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"

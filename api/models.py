"""
API request and response models for AuthGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Field names follow the public contract (user_name, phone_number, isAdmin,
code_reset), so existing front-ends keep working.
"""

from datetime import date
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator, model_validator

from auth.tokens import PASSWORD_MAX_BYTES, password_too_long

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# Identifier and profile fields are trimmed. Passwords are taken verbatim, so
# the same string works at sign-up, sign-in and reset.
Trimmed = Annotated[str, StringConstraints(strip_whitespace=True)]


def _check_password_bytes(value: Optional[str]) -> Optional[str]:
    if value is not None and password_too_long(value):
        raise ValueError(f"password must be at most {PASSWORD_MAX_BYTES} bytes")
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignInRequest(BaseModel):
    """Request body for POST /api/v1/auth/sign-in.

    user_name accepts a user name, an email address or a phone number.
    The password is mandatory here; password-less sessions are only issued
    by the OAuth callbacks.
    """

    user_name: Trimmed = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1)
    webpage_key: Optional[Trimmed] = Field(default=None, max_length=100)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, v: Optional[str]) -> Optional[str]:
        return _check_password_bytes(v)


class SignUpRequest(BaseModel):
    """Request body for POST /api/v1/auth/sign-up."""

    user_name: Trimmed = Field(min_length=1, max_length=255)
    email: Optional[Trimmed] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)
    phone_number: Optional[Trimmed] = Field(default=None, min_length=3, max_length=32)
    password: Optional[str] = Field(default=None, min_length=1)
    user_first_name: Optional[Trimmed] = Field(default=None, max_length=255)
    user_last_name: Optional[Trimmed] = Field(default=None, max_length=255)
    date_of_birth: Optional[date] = None
    user_image_url: Optional[Trimmed] = Field(default=None, max_length=2048)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, v: Optional[str]) -> Optional[str]:
        return _check_password_bytes(v)


class ForgotPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/forgot-password. Email or phone is required."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: Optional[str] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)
    phone_number: Optional[str] = Field(default=None, min_length=3, max_length=32)
    redirect_to: Optional[str] = Field(default=None, max_length=2048)

    @model_validator(mode="after")
    def require_contact(self) -> "ForgotPasswordRequest":
        if not self.email and not self.phone_number:
            raise ValueError("email or phone_number is required")
        return self


class ResetPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/reset-password."""

    code_reset: str = Field(min_length=1, max_length=4096)
    password: str = Field(min_length=1)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, v: Optional[str]) -> Optional[str]:
        return _check_password_bytes(v)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class SessionResponse(BaseModel):
    """Token pair plus the public session payload.

    webpage_url is present only when the request named a redirect webpage
    that exists.
    """

    model_config = ConfigDict(populate_by_name=True)

    access_token: str
    refresh_token: str
    user_id: int
    user_name: str
    is_admin: bool = Field(alias="isAdmin")
    permissions: list[str] = Field(default_factory=list)
    webpage_url: Optional[str] = None


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me -- the verified access-token payload."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: int
    user_name: str
    is_admin: bool = Field(alias="isAdmin")
    permissions: list[str] = Field(default_factory=list)


class ResetCodeResponse(BaseModel):
    code_reset: str


class PasswordUpdatedResponse(BaseModel):
    user_id: int
    updated: bool


class OAuthProviderInfo(BaseModel):
    name: str
    label: str


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

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)

"""
API request and response models for the LearnHub auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Wire format is camelCase (firstName, refreshToken, ...). Models declare
snake_case fields and use the to_camel alias generator; populate_by_name lets
tests and internal callers use either form.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from cache.otp import OTPPurpose

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

_REQUEST_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    str_strip_whitespace=True,
)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RegisterRoleEnum(str, Enum):
    """Roles open to self-registration. ADMIN accounts are never self-created."""

    STUDENT = "STUDENT"
    TEACHER = "TEACHER"
    PARENT = "PARENT"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _EmailRequest(BaseModel):
    model_config = _REQUEST_CONFIG

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> Any:
        """Trim and lowercase so lookups are case-insensitive."""
        if isinstance(value, str):
            return value.strip().lower()
        return value


class RegisterRequest(_EmailRequest):
    """Request body for POST /api/v1/auth/register.

    Only the minimum length is checked here. The full strength rules run in
    AuthService so the response can list every failing rule at once.
    """

    password: str = Field(min_length=8, max_length=128)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=32)
    role: RegisterRoleEnum


class LoginRequest(_EmailRequest):
    password: str = Field(min_length=1, max_length=128)


class RefreshTokenRequest(BaseModel):
    # Optional at the schema level: AuthService reports a missing token
    # itself with "Refresh token is required".
    model_config = _REQUEST_CONFIG

    refresh_token: Optional[str] = None


class VerifyEmailRequest(BaseModel):
    model_config = ConfigDict(**_REQUEST_CONFIG, coerce_numbers_to_str=True)

    otp: str = Field(min_length=1, max_length=12)


class VerifyOTPRequest(_EmailRequest):
    model_config = ConfigDict(**_REQUEST_CONFIG, coerce_numbers_to_str=True)

    otp: str = Field(min_length=1, max_length=12)
    purpose: OTPPurpose


class ForgotPasswordRequest(_EmailRequest):
    pass


class ResetPasswordRequest(_EmailRequest):
    model_config = ConfigDict(**_REQUEST_CONFIG, coerce_numbers_to_str=True)

    otp: str = Field(min_length=1, max_length=12)
    # No min length here: a short new password is reported by the strength
    # check as an itemised list. change-password rejects it at the schema.
    new_password: str = Field(min_length=1, max_length=128)


class ChangePasswordRequest(BaseModel):
    model_config = _REQUEST_CONFIG

    old_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=8, max_length=128)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class ProfileResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: Optional[int] = None
    role: str
    created_at: Optional[str] = None


class UserResponse(BaseModel):
    """Public view of a user. There is no password or two-factor field to leak."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str
    email: str
    phone: Optional[str] = None
    first_name: str
    last_name: str
    role: str
    is_active: bool
    is_email_verified: bool
    referral_code: str
    last_login: Optional[str] = None
    created_at: Optional[str] = None
    profile: Optional[ProfileResponse] = None


class ApiResponse(BaseModel):
    """Envelope for every response: {success, message?, data?, errors?}.

    Serialize with model_dump(exclude_none=True) so absent keys are omitted
    rather than sent as null.
    """

    success: bool
    message: Optional[str] = None
    data: Optional[Any] = None
    errors: Optional[list[Any]] = None
    stack: Optional[list[str]] = None  # DEBUG mode only, 500 responses


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str
    version: str
    timestamp: str
    components: dict[str, str]

"""
api/routes/v1/auth.py -- Authentication and session REST endpoints.

Routes:
  POST /api/v1/auth/register          -- create account; 201 with user + tokens
  POST /api/v1/auth/login             -- password login; user + tokens
  POST /api/v1/auth/logout            -- revoke all sessions, blacklist token (requires auth)
  POST /api/v1/auth/refresh-token     -- new access token from a stored refresh token
  POST /api/v1/auth/verify-email      -- consume the email OTP (requires auth)
  POST /api/v1/auth/verify-otp        -- consume an OTP for any purpose (public)
  POST /api/v1/auth/resend-otp        -- issue a fresh email OTP (requires auth)
  POST /api/v1/auth/forgot-password   -- issue a password reset OTP; always 200
  POST /api/v1/auth/reset-password    -- set a new password with the reset OTP
  POST /api/v1/auth/change-password   -- set a new password with the old one (requires auth)
  GET  /api/v1/auth/me                -- current user and role profile (requires auth)

Security:
  [H2] register and login are rate-limited by settings.auth_rate_limit per IP,
       stricter than the default API limit.
  [M5] Cache-Control: no-store on every response that carries a token.

Handlers are plain def functions: the store and the cache client are
blocking, so FastAPI runs them in its thread pool. Request bodies are
validated by Pydantic before the handler runs; AuthError subclasses raised
by the service are turned into responses by the handler in api/main.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    ApiResponse,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    ProfileResponse,
    RefreshTokenRequest,
    RegisterRequest,
    ResetPasswordRequest,
    UserResponse,
    VerifyEmailRequest,
    VerifyOTPRequest,
)
from auth.dependencies import get_auth_service, get_bearer_token, get_current_user
from auth.models import AuthResult, Profile, User
from auth.tokens import sanitize_user
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - register, login:        public, rate-limited [H2]
# - refresh-token:          public -- the refresh token is the credential
# - verify-otp:             public -- used before the user can log in
# - forgot/reset-password:  public
# - logout, verify-email, resend-otp, change-password, me: require auth (get_current_user)
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", status_code=201)
@limiter.limit(_settings.auth_rate_limit)  # [H2]
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account, its role profile and a first session.

    An email verification OTP is issued as a side effect.
    """
    result = get_auth_service(request).register(
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        role=body.role.value,
        phone=body.phone,
    )
    return _token_response(201, "User registered successfully. Please verify your email.", result)


@router.post("/auth/login")
@limiter.limit(_settings.auth_rate_limit)  # [H2]
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce the same 401 body.
    """
    result = get_auth_service(request).login(body.email, body.password)
    return _token_response(200, "Login successful", result)


@router.post("/auth/refresh-token")
def refresh_token(request: Request, body: RefreshTokenRequest) -> JSONResponse:
    access_token = get_auth_service(request).refresh(body.refresh_token)
    resp = _respond(200, data={"accessToken": access_token})
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/verify-otp")
def verify_otp(request: Request, body: VerifyOTPRequest) -> JSONResponse:
    user_id = get_auth_service(request).verify_otp(body.email, body.otp, body.purpose.value)
    return _respond(200, "OTP verified successfully", data={"userId": user_id})


@router.post("/auth/forgot-password")
def forgot_password(request: Request, body: ForgotPasswordRequest) -> JSONResponse:
    """Always 200 with the same message, registered email or not."""
    message = get_auth_service(request).forgot_password(body.email)
    return _respond(200, message)


@router.post("/auth/reset-password")
def reset_password(request: Request, body: ResetPasswordRequest) -> JSONResponse:
    get_auth_service(request).reset_password(body.email, body.otp, body.new_password)
    return _respond(200, "Password reset successfully")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout")
def logout(request: Request, current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Revoke every refresh token of the user and blacklist the presented access token."""
    get_auth_service(request).logout(current_user, get_bearer_token(request))
    return _respond(200, "Logout successful")


@router.post("/auth/verify-email")
def verify_email(
    request: Request,
    body: VerifyEmailRequest,
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    get_auth_service(request).verify_email(current_user, body.otp)
    return _respond(200, "Email verified successfully")


@router.post("/auth/resend-otp")
def resend_otp(request: Request, current_user: User = Depends(get_current_user)) -> JSONResponse:
    get_auth_service(request).resend_otp(current_user)
    return _respond(200, "OTP sent successfully")


@router.post("/auth/change-password")
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    get_auth_service(request).change_password(current_user, body.old_password, body.new_password)
    return _respond(200, "Password changed successfully")


@router.get("/auth/me")
def me(request: Request, current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Return the sanitized current user with its role profile."""
    user, profile = get_auth_service(request).current_user(current_user)
    return _respond(200, data=_user_payload(user, profile))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _respond(status_code: int, message: str | None = None, data: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ApiResponse(success=True, message=message, data=data).model_dump(exclude_none=True),
    )


def _token_response(status_code: int, message: str, result: AuthResult) -> JSONResponse:
    resp = _respond(
        status_code,
        message,
        data={
            "user": _user_payload(result.user),
            "accessToken": result.access_token,
            "refreshToken": result.refresh_token,
        },
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _user_payload(user: User, profile: Profile | None = None) -> dict:
    """Map a domain User to its public camelCase JSON form."""
    data = sanitize_user(user)
    if profile is not None:
        data["profile"] = ProfileResponse(id=profile.id, role=profile.role, created_at=profile.created_at)
    return UserResponse.model_validate(data).model_dump(by_alias=True, mode="json")

"""
auth/errors.py -- Operational error taxonomy for the auth subsystem.

Every expected failure is an AuthError carrying an HTTP status code, a
client-safe message and an optional itemised error list. api/main.py
registers one exception handler for the base class, so route code never
builds error responses by hand. Anything that is not an AuthError is a
programming error and ends up in the generic 500 handler.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations


class AuthError(Exception):
    status_code: int = 400
    code: str = "bad_request"
    default_message: str = "Bad request"

    def __init__(self, message: str | None = None, errors: list | None = None, status_code: int | None = None) -> None:
        self.message = message or self.default_message
        self.errors = errors
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class BadRequestError(AuthError):
    pass


class ValidationFailedError(AuthError):
    code = "validation_error"
    default_message = "Validation failed"


class WeakPasswordError(AuthError):
    code = "weak_password"
    default_message = "Password does not meet requirements"


class ConflictError(AuthError):
    status_code = 409
    code = "conflict"
    default_message = "User with this email or phone already exists"


class InvalidCredentialsError(AuthError):
    # Same message for "no such user" and "wrong password" -- never reveal
    # which one failed.
    status_code = 401
    code = "invalid_credentials"
    default_message = "Invalid credentials"


class AccountDeactivatedError(AuthError):
    status_code = 403
    code = "account_deactivated"
    default_message = "Account is deactivated. Please contact support."


class InvalidOTPError(AuthError):
    code = "invalid_otp"
    default_message = "Invalid or expired OTP"


class UnauthorizedError(AuthError):
    status_code = 401
    code = "unauthorized"
    default_message = "Not authorized"


class NotFoundError(AuthError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"

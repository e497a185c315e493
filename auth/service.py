"""
auth/service.py -- Authentication and session flows.

AuthService orchestrates the credential utilities (auth/tokens.py), the
persistent store (auth/store.py), and the short-lived cache state (OTPs and
the access token blacklist). Every handle is injected through the
constructor; api/main.py builds one instance in lifespan and tests build
their own around in-memory stores.

Each public method is one flow. Expected failures are raised as AuthError
subclasses (auth/errors.py); the API layer turns them into responses.

Security:
  [C1] login() runs bcrypt even when the email is unknown, and reports the
       same InvalidCredentialsError for "no such user" and "wrong password".
  [C2] forgot_password() returns the same message whether or not the email
       is registered.
  [C3] reset_password() and change_password() revoke every refresh token of
       the user when settings.revoke_sessions_on_password_change is set
       (the default). A stolen session must not survive a password change.

Layer rule: no imports from api/. cache/ types are referenced for typing only.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable, Optional

from sqlalchemy.exc import IntegrityError

from auth.errors import (
    AccountDeactivatedError,
    BadRequestError,
    ConflictError,
    InvalidCredentialsError,
    InvalidOTPError,
    NotFoundError,
    UnauthorizedError,
    WeakPasswordError,
)
from auth.models import AuthResult, Profile, RefreshToken, User
from auth.tokens import (
    ACCESS,
    REFRESH,
    InvalidTokenError,
    burn_password_check,
    create_token,
    decode_token,
    generate_otp,
    generate_referral_code,
    hash_password,
    validate_password_strength,
    verify_password,
)
from core.config import Settings, get_settings

if TYPE_CHECKING:
    from auth.store import UserStore
    from cache.blacklist import TokenBlacklist
    from cache.otp import OTPStore

logger = logging.getLogger("learnhub.auth")

EMAIL_OTP = "email"
PASSWORD_RESET_OTP = "password_reset"

FORGOT_PASSWORD_MESSAGE = "If the email exists, a password reset OTP has been sent"

OTPSender = Callable[[User, str, str], None]
Clock = Callable[[], datetime]


def log_otp_sender(user: User, purpose: str, otp: str) -> None:
    """Default OTP delivery: log that a code was issued.

    Real delivery (email/SMS) is an external collaborator. The code itself
    only appears at DEBUG level.
    """
    logger.info("Issued %s OTP for user %s", purpose, user.id)
    logger.debug("%s OTP for %s: %s", purpose, user.email, otp)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthService:
    def __init__(
        self,
        store: UserStore,
        otp_store: OTPStore,
        blacklist: TokenBlacklist,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        otp_sender: Optional[OTPSender] = None,
    ) -> None:
        self.store = store
        self.otp_store = otp_store
        self.blacklist = blacklist
        self.settings = settings or get_settings()
        self.clock = clock or _utcnow
        self.otp_sender = otp_sender or log_otp_sender

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        role: str,
        phone: Optional[str] = None,
    ) -> AuthResult:
        """Create an account with its role profile, issue tokens, and send an email OTP."""
        self._require_strong_password(password)

        if self.store.find_by_email_or_phone(email, phone) is not None:
            raise ConflictError()

        user = User(
            email=email,
            phone=phone or None,
            first_name=first_name,
            last_name=last_name,
            role=role,
            hashed_password=hash_password(password),
            referral_code=generate_referral_code(first_name, last_name),
        )
        access_token, refresh_row = self._issue_tokens(user.id)
        try:
            self.store.create_account(user, refresh_row)
        except IntegrityError as exc:
            # A concurrent registration took the email/phone between the check and the insert.
            raise ConflictError() from exc

        self._issue_otp(user, EMAIL_OTP)
        logger.info("Registered user %s (%s)", user.id, user.role)
        return AuthResult(user=user, access_token=access_token, refresh_token=refresh_row.token)

    def login(self, email: str, password: str) -> AuthResult:
        """Authenticate with email + password and open a new session."""
        user = self.store.get_by_email(email)
        if user is None:
            # Equalize timing -- do NOT return early before running bcrypt [C1]
            burn_password_check(password)
            raise InvalidCredentialsError()
        if not user.is_active:
            raise AccountDeactivatedError()
        if not verify_password(password, user.hashed_password):
            raise InvalidCredentialsError()

        access_token, refresh_row = self._issue_tokens(user.id)
        self.store.record_login(user.id, refresh_row)
        logger.info("Login: %s", user.id)
        refreshed = self.store.get_by_id(user.id) or user
        return AuthResult(user=refreshed, access_token=access_token, refresh_token=refresh_row.token)

    def logout(self, user: User, access_token: Optional[str]) -> None:
        """End every session of the user and blacklist the presented access token."""
        revoked = self.store.delete_refresh_tokens(user.id)
        if access_token:
            self.blacklist.add(access_token)
        logger.info("Logout: %s (%d refresh tokens revoked)", user.id, revoked)

    def refresh(self, refresh_token: Optional[str]) -> str:
        """Exchange a stored, unexpired refresh token for a new access token.

        The refresh token itself is not rotated.
        """
        if not refresh_token:
            raise BadRequestError("Refresh token is required")
        try:
            claims = decode_token(refresh_token, REFRESH)
        except InvalidTokenError as exc:
            raise UnauthorizedError("Invalid or expired refresh token") from exc

        stored = self.store.get_refresh_token(refresh_token)
        if stored is None or self._is_expired(stored):
            raise UnauthorizedError("Invalid or expired refresh token")
        return create_token(claims["userId"], ACCESS)

    # ------------------------------------------------------------------
    # Access token authentication
    # ------------------------------------------------------------------

    def authenticate(self, access_token: Optional[str]) -> User:
        """Resolve a bearer access token to an active user.

        Rejects missing, malformed, expired, and blacklisted tokens, and
        tokens whose user no longer exists or has been deactivated.
        """
        if not access_token:
            raise UnauthorizedError("Not authorized, no token")
        try:
            claims = decode_token(access_token, ACCESS)
        except InvalidTokenError as exc:
            raise UnauthorizedError("Not authorized, token failed") from exc
        if self.blacklist.contains(access_token):
            raise UnauthorizedError("Token has been revoked")
        user = self.store.get_by_id(claims["userId"])
        if user is None or not user.is_active:
            raise UnauthorizedError("User not found or inactive")
        return user

    def current_user(self, user: User) -> tuple[User, Optional[Profile]]:
        """Return the freshest copy of user along with its role profile."""
        fresh = self.store.get_by_id(user.id) or user
        return fresh, self.store.get_profile(fresh.id, fresh.role)

    # ------------------------------------------------------------------
    # OTP flows
    # ------------------------------------------------------------------

    def verify_email(self, user: User, otp: Optional[str]) -> None:
        if not otp:
            raise BadRequestError("OTP is required")
        if not self.otp_store.take_once(EMAIL_OTP, user.id, otp):
            raise InvalidOTPError()
        self.store.mark_email_verified(user.id)
        logger.info("Email verified: %s", user.id)

    def verify_otp(self, email: str, otp: str, purpose: str) -> str:
        """Consume an OTP for any purpose and return the owning user id."""
        if not email or not otp or not purpose:
            raise BadRequestError("Email, OTP, and purpose are required")
        user = self.store.get_by_email(email)
        if user is None:
            raise NotFoundError("User not found")
        try:
            consumed = self.otp_store.take_once(purpose, user.id, otp)
        except ValueError as exc:
            raise BadRequestError(f"Unknown OTP purpose: {purpose}") from exc
        if not consumed:
            raise InvalidOTPError()
        return user.id

    def resend_otp(self, user: User) -> None:
        self._issue_otp(user, EMAIL_OTP)

    # ------------------------------------------------------------------
    # Password flows
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> str:
        """Send a password reset OTP if the account exists. Same answer either way [C2]."""
        user = self.store.get_by_email(email)
        if user is not None:
            self._issue_otp(user, PASSWORD_RESET_OTP)
        return FORGOT_PASSWORD_MESSAGE

    def reset_password(self, email: str, otp: str, new_password: str) -> None:
        user = self.store.get_by_email(email)
        if user is None:
            raise NotFoundError("User not found")
        pending = self.otp_store.peek(PASSWORD_RESET_OTP, user.id)
        if pending is None or pending != str(otp):
            raise InvalidOTPError()
        # Strength is checked before consuming the code so a weak first
        # attempt does not burn the OTP.
        self._require_strong_password(new_password)
        if not self.otp_store.take_once(PASSWORD_RESET_OTP, user.id, otp):
            raise InvalidOTPError()
        self._set_password(user, new_password)
        logger.info("Password reset: %s", user.id)

    def change_password(self, user: User, old_password: str, new_password: str) -> None:
        stored = self.store.get_by_id(user.id) or user
        if not verify_password(old_password, stored.hashed_password):
            raise InvalidCredentialsError("Current password is incorrect", status_code=400)
        self._require_strong_password(new_password)
        self._set_password(stored, new_password)
        logger.info("Password changed: %s", user.id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_strong_password(self, password: str) -> None:
        check = validate_password_strength(password)
        if not check.is_valid:
            raise WeakPasswordError(errors=check.errors)

    def _set_password(self, user: User, new_password: str) -> None:
        revoked = self.store.update_password(
            user.id,
            hash_password(new_password),
            revoke_sessions=self.settings.revoke_sessions_on_password_change,
        )
        if revoked:
            logger.info("Revoked %d refresh tokens for %s after password change", revoked, user.id)

    def _issue_tokens(self, user_id: str) -> tuple[str, RefreshToken]:
        access_token = create_token(user_id, ACCESS)
        refresh_token = create_token(user_id, REFRESH)
        expires_at = self.clock() + timedelta(days=self.settings.refresh_token_expire_days)
        return access_token, RefreshToken(token=refresh_token, user_id=user_id, expires_at=expires_at.isoformat())

    def _issue_otp(self, user: User, purpose: str) -> None:
        otp = generate_otp()
        if not self.otp_store.put(purpose, user.id, otp):
            logger.warning("Could not cache %s OTP for user %s", purpose, user.id)
        self.otp_sender(user, purpose, otp)

    def _is_expired(self, token: RefreshToken) -> bool:
        expires_at = datetime.fromisoformat(token.expires_at)
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= self.clock()

"""
auth/tokens.py -- JWT, password hashing, OTP and other credential utilities.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with two
       different secrets and carry different lifetimes, so a leaked refresh
       secret cannot mint access tokens. Every token carries a random jti:
       two refresh tokens issued for one user within the same second would
       otherwise be byte-identical and collide on the store's UNIQUE column.

  Passwords: bcrypt directly (work factor 12). _DUMMY_HASH enables timing
       equalization on login so response time does not reveal whether an
       email is registered [C1].

  OTPs and referral codes: secrets module, never random.

Layer rule: no imports from api/ or cache/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import re
import secrets
import string
import uuid
from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

logger = logging.getLogger("learnhub.auth")

_settings = get_settings()

_ALGORITHM = "HS256"
_BCRYPT_ROUNDS = 12

ACCESS = "access"
REFRESH = "refresh"


class InvalidTokenError(Exception):
    """Raised by decode_token() for a bad signature, expiry, or token kind."""


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=_BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first login attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("learnhub_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run one bcrypt comparison against the dummy hash and discard the result."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def _secret_for(kind: str) -> str:
    if kind == REFRESH:
        return _settings.jwt_refresh_secret
    if kind == ACCESS:
        return _settings.jwt_secret
    raise ValueError(f"Unknown token kind: {kind!r}")


def _lifetime_for(kind: str) -> timedelta:
    if kind == REFRESH:
        return timedelta(days=_settings.refresh_token_expire_days)
    return timedelta(seconds=_settings.access_token_expire_seconds)


def create_token(user_id: str, kind: str = ACCESS) -> str:
    """Encode a signed JWT for user_id.

    kind selects the signing secret and the lifetime ("access" or "refresh").
    """
    now = datetime.now(timezone.utc)
    payload = {
        "userId": user_id,
        "type": kind,
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": now + _lifetime_for(kind),
    }
    return jwt.encode(payload, _secret_for(kind), algorithm=_ALGORITHM)


def decode_token(token: str, kind: str = ACCESS) -> dict:
    """Verify a JWT against the secret for kind and return its claims.

    Raises InvalidTokenError on a bad signature, an expired token, a token
    of the other kind, or a payload without a userId claim.
    """
    try:
        payload = jwt.decode(token, _secret_for(kind), algorithms=[_ALGORITHM])
    except JWTError as exc:
        raise InvalidTokenError(str(exc)) from exc
    if payload.get("type") != kind or "userId" not in payload:
        raise InvalidTokenError(f"Not a valid {kind} token")
    return payload


# ---------------------------------------------------------------------------
# OTP and referral codes
# ---------------------------------------------------------------------------


def generate_otp() -> str:
    """Return a 6-digit numeric code drawn uniformly from [100000, 999999]."""
    return str(100000 + secrets.randbelow(900000))


_REFERRAL_ALPHABET = string.ascii_uppercase + string.digits


def generate_referral_code(first_name: str, last_name: str) -> str:
    """Return uppercased initials followed by 6 random alphanumeric characters."""
    initials = (first_name[:1] + last_name[:1]).upper()
    suffix = "".join(secrets.choice(_REFERRAL_ALPHABET) for _ in range(6))
    return f"{initials}{suffix}"


# ---------------------------------------------------------------------------
# Password strength
# ---------------------------------------------------------------------------

PASSWORD_MIN_LENGTH = 8
# bcrypt rejects input longer than 72 bytes.
PASSWORD_MAX_BYTES = 72
_SPECIAL_CHARS = '!@#$%^&*(),.?":{}|<>'
_SPECIAL_RE = re.compile("[" + re.escape(_SPECIAL_CHARS) + "]")


@dataclass
class PasswordCheck:
    is_valid: bool
    errors: list[str] = field(default_factory=list)


def validate_password_strength(password: str) -> PasswordCheck:
    """Check password against every strength rule and report all failures."""
    errors: list[str] = []
    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        errors.append(f"Password must be at most {PASSWORD_MAX_BYTES} bytes long")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one number")
    if not _SPECIAL_RE.search(password):
        errors.append("Password must contain at least one special character")
    return PasswordCheck(is_valid=not errors, errors=errors)


# ---------------------------------------------------------------------------
# Output sanitization
# ---------------------------------------------------------------------------

_SENSITIVE_FIELDS = frozenset(
    {
        "password",
        "hashed_password",
        "password_hash",
        "two_factor_enabled",
        "two_factor_secret",
        "twoFactorEnabled",
        "twoFactorSecret",
    }
)


def sanitize_user(user: Any) -> dict:
    """Return a shallow dict copy of user without password or two-factor fields.

    Accepts a User dataclass or any mapping.
    """
    if is_dataclass(user) and not isinstance(user, type):
        data = asdict(user)
    else:
        data = dict(user)
    return {k: v for k, v in data.items() if k not in _SENSITIVE_FIELDS}

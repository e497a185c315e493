"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; the store and the service do the work.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum


class Role(str, Enum):
    STUDENT = "STUDENT"
    TEACHER = "TEACHER"
    PARENT = "PARENT"
    ADMIN = "ADMIN"


@dataclass
class User:
    """A platform identity.

    id is a UUID string generated in Python before insert, so tokens can be
    issued for the user inside the same transaction that creates the row.

    referral_code is derived from the name initials plus a random suffix.
    Uniqueness is enforced by the store, not at generation time.
    """

    email: str
    first_name: str
    last_name: str
    role: str  # one of Role
    hashed_password: str
    referral_code: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    phone: str | None = None
    is_active: bool = True
    is_email_verified: bool = False
    two_factor_enabled: bool = False
    last_login: str | None = None
    created_at: str | None = None


@dataclass
class Profile:
    """Role-specific profile row. At most one per user, matching the user's role."""

    user_id: str
    role: str
    id: int | None = None
    created_at: str | None = None


@dataclass
class RefreshToken:
    """A persisted refresh token.

    Valid only while the row exists and expires_at (ISO 8601, UTC) is in the
    future. Rows are deleted on logout for every session of the user.
    """

    token: str
    user_id: str
    expires_at: str
    id: int | None = None
    created_at: str | None = None


@dataclass
class AuthResult:
    """What register and login hand back to the route layer."""

    user: User
    access_token: str
    refresh_token: str

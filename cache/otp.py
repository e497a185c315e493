"""
cache/otp.py -- One-time passcode storage on top of the cache gateway.

Keys follow "{purpose}_otp:{user_id}", e.g. "email_otp:<uuid>" and
"password_reset_otp:<uuid>". Issuing a new code for the same purpose
overwrites the previous one (last write wins) and restarts the TTL.

take_once() is the only way to check a code: it requires the entry to be
present and to match exactly, and deletes it on success. A wrong guess
leaves the entry in place until it expires.

The check and the delete are two round trips. Two concurrent calls with the
right code can both observe it before either deletes it; DEL is idempotent,
so the worst case is the same code accepted twice within the same instant.
"""

from __future__ import annotations

from enum import Enum

from cache.store import CacheGateway

_DEFAULT_OTP_TTL = 600  # 10 minutes


class OTPPurpose(str, Enum):
    email = "email"
    password_reset = "password_reset"


class OTPStore:
    def __init__(self, cache: CacheGateway, ttl: int = _DEFAULT_OTP_TTL) -> None:
        self._cache = cache
        self.ttl = ttl

    @staticmethod
    def key(purpose: str, user_id: str) -> str:
        return f"{OTPPurpose(purpose).value}_otp:{user_id}"

    def put(self, purpose: str, user_id: str, otp: str) -> bool:
        """Store otp for (purpose, user_id). Returns False if the cache is unavailable."""
        return self._cache.set(self.key(purpose, user_id), otp, ttl=self.ttl)

    def peek(self, purpose: str, user_id: str) -> str | None:
        """Return the pending code without consuming it."""
        value = self._cache.get(self.key(purpose, user_id))
        return None if value is None else str(value)

    def take_once(self, purpose: str, user_id: str, expected: str) -> bool:
        """Consume the pending code if it matches expected exactly."""
        key = self.key(purpose, user_id)
        stored = self._cache.get(key)
        if stored is None or str(stored) != str(expected):
            return False
        self._cache.delete(key)
        return True

"""
cache/store.py -- Redis-backed key/value cache gateway.

Holds short-lived state only: one-time passcodes and blacklisted access
tokens. Everything stored here can be re-derived (an OTP can be resent, the
blacklist is a second line of defense behind token expiry), so every
operation fails soft: errors are logged and reported as a cache miss or a
False return value, never raised to the caller.

Values are JSON-encoded on write and decoded on read.

Usage:
    cache = CacheGateway.from_url("redis://localhost:6379/0")
    cache.set("email_otp:42", "123456", ttl=600)
    cache.get("email_otp:42")        # "123456" or None
    cache.delete("email_otp:42")
    cache.close()
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import redis
from redis.exceptions import RedisError

logger = logging.getLogger("learnhub.cache")

_DEFAULT_TTL = 60 * 60  # 1 hour in seconds


class CacheGateway:
    def __init__(self, client: redis.Redis, default_ttl: int = _DEFAULT_TTL) -> None:
        self._client = client
        self.default_ttl = default_ttl

    @classmethod
    def from_url(cls, url: str, default_ttl: int = _DEFAULT_TTL) -> "CacheGateway":
        """Build a gateway around a pooled Redis client for url.

        Short timeouts keep a dead Redis from stalling requests -- the
        gateway turns the timeout into a logged miss.
        """
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        return cls(client, default_ttl=default_ttl)

    def get(self, key: str) -> Optional[Any]:
        """Return the decoded value for key, or None on miss or error."""
        try:
            raw = self._client.get(key)
            if raw is None:
                return None
            return json.loads(raw)
        except (RedisError, ValueError) as exc:
            logger.error("Cache GET error for %s: %s", key, exc)
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Store value under key with an expiry in seconds. Returns False on error."""
        try:
            self._client.set(key, json.dumps(value), ex=ttl or self.default_ttl)
        except (RedisError, TypeError, ValueError) as exc:
            logger.error("Cache SET error for %s: %s", key, exc)
            return False
        return True

    def delete(self, key: str) -> bool:
        try:
            self._client.delete(key)
        except RedisError as exc:
            logger.error("Cache DEL error for %s: %s", key, exc)
            return False
        return True

    def flush_all(self) -> bool:
        """Remove every key from the current Redis database."""
        try:
            self._client.flushall()
        except RedisError as exc:
            logger.error("Cache FLUSH error: %s", exc)
            return False
        return True

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except RedisError:
            return False

    def close(self) -> None:
        try:
            self._client.close()
        except RedisError as exc:
            logger.warning("Cache close error: %s", exc)

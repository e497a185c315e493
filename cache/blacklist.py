"""
cache/blacklist.py -- Revoked access tokens, keyed "blacklist:{token}".

An entry only has to outlive the token it revokes, so the TTL is the
configured upper bound on access token lifetime (24 hours by default).
When the cache is unreachable contains() reports False: the token still
expires on its own.
"""

from __future__ import annotations

from cache.store import CacheGateway

_DEFAULT_BLACKLIST_TTL = 60 * 60 * 24


class TokenBlacklist:
    def __init__(self, cache: CacheGateway, ttl: int = _DEFAULT_BLACKLIST_TTL) -> None:
        self._cache = cache
        self.ttl = ttl

    @staticmethod
    def key(token: str) -> str:
        return f"blacklist:{token}"

    def add(self, token: str) -> bool:
        return self._cache.set(self.key(token), True, ttl=self.ttl)

    def contains(self, token: str) -> bool:
        return bool(self._cache.get(self.key(token)))

"""
auth/blacklist.py -- TokenBlacklist: cache-backed access-token denylist.

An entry is the cache key "blacklist:<token>" holding True, written with a TTL
of ACCESS_TOKEN_TTL seconds. The TTL is the configured lifetime, not the
token's decoded remainder, so a token near its natural expiry stays listed a
little longer than it needs to. The cost is cache space only.

Failure policy:
  is_blacklisted() fails open. A miss, any value other than True, or a cache
  outage all read as "not blacklisted" so an unreachable cache cannot lock
  every user out. The outage is logged.

  add() fails closed. A StorageUnavailable from the cache propagates so a
  logout that could not deny the token is reported, not silently accepted.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Optional

from auth.tokens import fingerprint
from cache.store import TTLCache
from core.config import Settings, get_settings
from core.errors import StorageUnavailable

logger = logging.getLogger("gatekeeper.auth.blacklist")

_PREFIX = "blacklist:"


def _key(token: str) -> str:
    return f"{_PREFIX}{token}"


class TokenBlacklist:
    def __init__(self, cache: TTLCache, settings: Optional[Settings] = None) -> None:
        self.cache = cache
        self.settings = settings or get_settings()

    def add(self, access_token: str) -> None:
        self.cache.set(_key(access_token), True, self.settings.access_token_ttl)
        logger.debug("Blacklisted access token %s", fingerprint(access_token))

    def is_blacklisted(self, access_token: str) -> bool:
        try:
            value = self.cache.get(_key(access_token))
        except StorageUnavailable:
            logger.error("Blacklist lookup failed, treating token as not blacklisted", exc_info=True)
            return False
        return value is True

    def add_many(self, user_id: str, access_tokens: Iterable[str]) -> int:
        """Blacklist every token in access_tokens. Returns how many were added."""
        count = 0
        for token in access_tokens:
            self.add(token)
            count += 1
        if count:
            logger.info("Blacklisted %d access tokens for user %s", count, user_id)
        return count

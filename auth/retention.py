"""
auth/retention.py -- Deletes rows and cache entries past their retention window.

The auth components only revoke and mark used; nothing they do deletes a
token. This module is the cleanup collaborator that does. It runs from the
background loop in api/main.py and from `python main.py purge`.

Retention windows live in auth/store.py:
  refresh tokens        30 days after expiry
  reset tokens          7 days after expiry
  login attempts        30 days after creation
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from auth.store import AuthStore
from cache.store import TTLCache

logger = logging.getLogger("gatekeeper.auth.retention")


def run_retention(store: AuthStore, cache: Optional[TTLCache] = None, now: Optional[datetime] = None) -> dict[str, int]:
    """Purge expired rows (and expired cache entries when a cache is given).

    Returns per-table deletion counts, plus "cache" when a cache was purged.
    """
    now = now or datetime.now(timezone.utc)
    counts = store.purge_expired(now)
    if cache is not None:
        counts["cache"] = cache.purge_expired()
    total = sum(counts.values())
    if total:
        logger.info("Retention purge removed %d rows: %s", total, counts)
    else:
        logger.debug("Retention purge found nothing to remove")
    return counts

"""
core/context.py -- Explicit per-request context.

The caller identity and connection metadata travel as an argument through
every call chain that needs them. There is no thread-local or contextvar
holding the "current user".
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional


@dataclass(frozen=True)
class RequestContext:
    """Who is calling and from where.

    user_id is None for unauthenticated calls (login, refresh, reset). ip and
    user_agent are diagnostic only and never drive an authorization decision.
    """

    user_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    def as_user(self, user_id: str) -> "RequestContext":
        """Return a copy attributed to user_id (e.g. once a login succeeds)."""
        return replace(self, user_id=user_id)


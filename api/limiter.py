"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/auth.py (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. Per-route limits come from Settings so deployments can tune
them; RATE_LIMIT_ENABLED=false turns every limit off (tests).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

_settings = get_settings()

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    enabled=_settings.rate_limit_enabled,
)


def login_limit() -> str:
    return _settings.login_rate_limit


def reset_request_limit() -> str:
    return _settings.reset_request_rate_limit


def reset_confirm_limit() -> str:
    return _settings.reset_confirm_rate_limit

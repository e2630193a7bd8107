"""
auth/tokens.py -- Access-token codec, device descriptor, and TokenIssuer.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       the identity id, email, display name, user type, a unique jti, and
       expiry. Verification returns None on any failure -- the dependency
       layer turns that into a 401.

       The jti makes every issued token string unique, even two logins for
       the same identity within one second. The denylist is keyed by the
       token string, so logging out one session must not shadow another.

  Refresh tokens are opaque random strings persisted server-side (see
       auth/refresh.py); they are not JWTs.

  SECRET_KEY: sourced from core.config.get_settings(), which refuses to start
       without a key of at least 32 characters outside debug mode [M6][M7].

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional

from jose import JWTError, jwt

from auth.models import Identity, RefreshToken, TokenBundle
from core.config import Settings, get_settings
from core.context import RequestContext

if TYPE_CHECKING:
    from auth.refresh import RefreshTokenStore

logger = logging.getLogger("gatekeeper.auth.tokens")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Device descriptor
#
# Diagnostic metadata stored on refresh tokens so a user can tell sessions
# apart. Never used in an authorization decision.
# ---------------------------------------------------------------------------

_BROWSER_RE = re.compile(r"(Chrome|Firefox|Safari|Edge|Opera|MSIE|Trident)[/\s](\d+)", re.IGNORECASE)
_OS_RE = re.compile(r"(Windows|Mac OS|Linux|Android|iOS|iPhone|iPad)[^\s;)]*", re.IGNORECASE)

UNKNOWN_DEVICE = "unknown device"
UNKNOWN_BROWSER = "unknown browser"
UNKNOWN_OS = "unknown OS"


def fingerprint(token: str) -> str:
    """Short prefix for correlating a token in logs without logging the token."""
    return token[:8] + "..."


def parse_device_info(user_agent: Optional[str]) -> str:
    """Derive "<browser> on <os>" from a User-Agent header.

    >>> parse_device_info("Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120.0 Safari/537.36")
    'Chrome on Windows'
    """
    if not user_agent:
        return UNKNOWN_DEVICE
    browser_match = _BROWSER_RE.search(user_agent)
    os_match = _OS_RE.search(user_agent)
    browser = browser_match.group(1) if browser_match else UNKNOWN_BROWSER
    os_name = os_match.group(1).replace("_", " ") if os_match else UNKNOWN_OS
    return f"{browser} on {os_name}"


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(
    identity: Identity,
    expire_seconds: int = 0,
    *,
    now: Optional[datetime] = None,
    secret_key: Optional[str] = None,
) -> str:
    """Encode a signed JWT for identity.

    Args:
        identity:       The verified identity (must have an id).
        expire_seconds: Lifetime in seconds. If 0 (default), uses
                        Settings.access_token_ttl.
        now:            Issue time; defaults to the current UTC time.
        secret_key:     Signing key override; defaults to Settings.secret_key.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.access_token_ttl
    issued_at = now or datetime.now(timezone.utc)
    payload = {
        "sub": identity.id,
        "user_id": identity.id,
        "email": identity.email,
        "name": identity.name,
        "user_type": identity.user_type,
        "jti": uuid.uuid4().hex,
        "iat": issued_at,
        "exp": issued_at + timedelta(seconds=duration),
    }
    return jwt.encode(payload, secret_key or _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str, *, secret_key: Optional[str] = None) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure.

    Expired tokens, bad signatures and tokens missing the identity claims all
    come back as None.
    """
    try:
        payload = jwt.decode(token, secret_key or _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if "user_id" not in payload or "user_type" not in payload:
        return None
    return payload


# ---------------------------------------------------------------------------
# Issuer
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Mints the access token and has RefreshTokenStore persist the refresh token.

    Usage:
        issuer = TokenIssuer(refresh_tokens)
        bundle = issuer.issue(identity, ctx)
    """

    def __init__(self, refresh_tokens: RefreshTokenStore, settings: Optional[Settings] = None) -> None:
        self.refresh_tokens = refresh_tokens
        self.settings = settings or _settings

    def issue(self, identity: Identity, ctx: RequestContext) -> TokenBundle:
        """Issue a fresh access token and a new refresh token (new device session)."""
        refresh = self.refresh_tokens.issue(
            identity.id,
            device_info=parse_device_info(ctx.user_agent),
            user_agent=ctx.user_agent,
            ip_address=ctx.ip_address,
        )
        return self.bundle(identity, refresh)

    def bundle(self, identity: Identity, refresh: RefreshToken) -> TokenBundle:
        """Pair a newly signed access token with an already persisted refresh token."""
        ttl = self.settings.access_token_ttl
        return TokenBundle(
            access_token=create_access_token(identity, ttl, secret_key=self.settings.secret_key),
            refresh_token=refresh.token,
            expires_in=ttl,
            user_id=identity.id,
            name=identity.name,
            user_type=identity.user_type,
        )

"""
auth/refresh.py -- RefreshTokenStore: issue, rotate and revoke refresh tokens.

One active chain per device session. A refresh token is an opaque random
string (secrets.token_urlsafe, 48 bytes of entropy) persisted in the
refresh_token table; it is exchanged exactly once for a successor.

Rotation:
  rotate(presented) revokes the presented row and inserts its successor in a
  single transaction guarded by a compare-and-set on revoked 0 -> 1. Two
  concurrent rotations of the same token can both find it valid, but only
  the one whose UPDATE flips the flag mints a successor; the other gets
  InvalidToken.

Session id:
  By default every issued row, including a rotation successor, gets a fresh
  session_id. With PRESERVE_SESSION_ON_ROTATION=true the successor inherits
  the predecessor's session_id so a device keeps one id across refreshes.

Rows are revoked, never deleted, here. Deletion is auth/retention.py's job.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Optional

from auth.models import RefreshToken
from auth.store import AuthStore
from auth.tokens import fingerprint
from core.config import Settings, get_settings
from core.errors import InvalidToken

logger = logging.getLogger("gatekeeper.auth.refresh")

_TOKEN_BYTES = 48


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefreshTokenStore:
    """Service over AuthStore's refresh_token table.

    Usage:
        refresh_tokens = RefreshTokenStore(store)
        row = refresh_tokens.issue(user_id, "Chrome on Windows", ua, "10.0.0.1")
        predecessor, successor = refresh_tokens.rotate(row.token)
    """

    def __init__(
        self,
        store: AuthStore,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.clock = clock

    def _new_row(
        self,
        user_id: str,
        now: datetime,
        device_info: Optional[str],
        user_agent: Optional[str],
        ip_address: Optional[str],
        session_id: Optional[str] = None,
    ) -> RefreshToken:
        return RefreshToken(
            token=secrets.token_urlsafe(_TOKEN_BYTES),
            user_id=user_id,
            expires_at=now + timedelta(seconds=self.settings.refresh_token_ttl),
            session_id=session_id or str(uuid.uuid4()),
            device_info=device_info,
            user_agent=user_agent,
            ip_address=ip_address,
        )

    def issue(
        self,
        user_id: str,
        device_info: Optional[str] = None,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> RefreshToken:
        """Persist and return a new refresh token for a new device session."""
        now = self.clock()
        row = self._new_row(user_id, now, device_info, user_agent, ip_address)
        return self.store.insert_refresh_token(row, now, actor=user_id)

    def rotate(
        self,
        presented: str,
        device_info: Optional[str] = None,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> tuple[RefreshToken, RefreshToken]:
        """Exchange presented for a successor. Returns (revoked_predecessor, successor).

        The successor's diagnostic fields come from the rotating request; when
        none are given the predecessor's are carried over.

        Raises:
            InvalidToken: presented is unknown, expired, revoked, or was
                          rotated by a concurrent caller first.
        """
        now = self.clock()

        def build_successor(predecessor: RefreshToken) -> RefreshToken:
            return self._new_row(
                predecessor.user_id,
                now,
                device_info or predecessor.device_info,
                user_agent or predecessor.user_agent,
                ip_address or predecessor.ip_address,
                session_id=predecessor.session_id if self.settings.preserve_session_on_rotation else None,
            )

        rotated = self.store.rotate_refresh_token(presented, now, build_successor)
        if rotated is None:
            logger.info("Refresh token %s rejected for rotation", fingerprint(presented))
            raise InvalidToken()
        return rotated

    def revoke(self, token: str) -> bool:
        """Revoke one token. No-op (False) if it is absent or already revoked."""
        return self.store.revoke_refresh_token(token, self.clock())

    def revoke_all(self, user_id: str) -> int:
        """Revoke every active token for user_id and return how many were active."""
        count = self.store.revoke_all_refresh_tokens(user_id, self.clock(), actor=user_id)
        if count:
            logger.debug("Revoked %d refresh tokens", count)
        return count

    def active_sessions(self, user_id: str) -> list[RefreshToken]:
        return self.store.list_active_refresh_tokens(user_id, self.clock())

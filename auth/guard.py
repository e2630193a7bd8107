"""
auth/guard.py -- Brute-force lockout over a per-email sliding window.

States per email: Open (login allowed) and Locked (login rejected regardless
of whether the password is right).

  is_locked(email):
    count failed attempts with created_at >= now - LOCKOUT_WINDOW.
    Fewer than MAX_FAILED_ATTEMPTS -> Open.
    Otherwise take the most recent failure; lockout ends at its created_at +
    LOCKOUT_DURATION. Before that -> Locked(remaining_ms), after -> Open.
    Old failure rows are left in place by this check.

  record_attempt(email, successful, ...):
    always appends a row; a success also deletes that email's failed rows so
    the next failure starts a fresh count.

The check and the record are separate store calls, not one transaction. Two
concurrent logins for the same email can both pass is_locked() before either
records its failure. The guard therefore throttles sequential guessing; the
per-IP rate limit on the login route covers bursts.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Optional

from auth.models import LockStatus, LoginAttempt
from auth.store import AuthStore

logger = logging.getLogger("gatekeeper.auth.guard")

MAX_FAILED_ATTEMPTS = 5
LOCKOUT_WINDOW = timedelta(minutes=15)
LOCKOUT_DURATION = timedelta(minutes=30)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LoginAttemptGuard:
    def __init__(self, store: AuthStore, clock: Callable[[], datetime] = _utcnow) -> None:
        self.store = store
        self.clock = clock

    def is_locked(self, email: str) -> LockStatus:
        now = self.clock()
        failures = self.store.count_failed_attempts_since(email, now - LOCKOUT_WINDOW)
        if failures < MAX_FAILED_ATTEMPTS:
            return LockStatus(locked=False)

        last = self.store.latest_failed_attempt(email)
        if last is None:
            return LockStatus(locked=False)
        lockout_end = last.created_at + LOCKOUT_DURATION
        if now < lockout_end:
            return LockStatus(locked=True, remaining_ms=int((lockout_end - now).total_seconds() * 1000))
        return LockStatus(locked=False)

    def record_attempt(
        self,
        email: str,
        successful: bool,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> LoginAttempt:
        attempt = self.store.insert_login_attempt(
            LoginAttempt(
                email=email,
                successful=successful,
                created_at=self.clock(),
                ip_address=ip_address,
                user_agent=user_agent,
            )
        )
        if successful:
            cleared = self.store.delete_failed_attempts(email)
            if cleared:
                logger.debug("Cleared %d failed attempts after successful login", cleared)
        return attempt

    def recent_failures(self, email: str) -> int:
        """Failed attempts for email inside the current window."""
        return self.store.count_failed_attempts_since(email, self.clock() - LOCKOUT_WINDOW)

    def clear(self, email: str) -> int:
        """Administrative unlock: drop every failed attempt for email."""
        return self.store.delete_failed_attempts(email)

"""
auth/reset.py -- PasswordResetFlow: single-use, time-boxed reset tokens.

  request(email):
    Unknown email -> the same generic message as a known one, nothing written.
    Known email   -> every unused token for the user is marked used, a new
                     token (expires now + RESET_TOKEN_TTL) is stored in the
                     same transaction, and the reset e-mail is handed to the
                     notification sender. Outside production the raw token
                     is also returned so it can be exercised without a mailbox.

  confirm(token, new_password):
    The token must be unused and unexpired. Marking it used and writing the
    new password hash happen in one conditional transaction, so a token
    redeemed twice concurrently changes the password once. Afterwards every
    refresh token of the user is revoked.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from auth.models import PasswordResetToken
from auth.passwords import set_password
from auth.refresh import RefreshTokenStore
from auth.store import AuthStore
from core.config import Settings, get_settings
from core.errors import ResetTokenInvalid
from core.mailer import EmailClient

logger = logging.getLogger("gatekeeper.auth.reset")

RESET_TOKEN_SENT = "If the email is registered, a password reset link has been sent."
PASSWORD_RESET = "Password has been reset successfully."

_TOKEN_BYTES = 32


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ResetRequestResult:
    message: str
    token: Optional[str] = None


@dataclass
class ResetConfirmResult:
    message: str
    user_id: str
    revoked_sessions: int


class PasswordResetFlow:
    def __init__(
        self,
        store: AuthStore,
        refresh_tokens: RefreshTokenStore,
        mailer: Optional[EmailClient] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.refresh_tokens = refresh_tokens
        self.settings = settings or get_settings()
        self.mailer = mailer or EmailClient(self.settings)
        self.clock = clock

    def request(self, email: str) -> ResetRequestResult:
        identity = self.store.get_identity_by_email(email)
        if identity is None:
            logger.info("Password reset requested for unknown email")
            return ResetRequestResult(message=RESET_TOKEN_SENT)

        now = self.clock()
        reset, superseded = self.store.issue_reset_token(
            PasswordResetToken(
                token=secrets.token_urlsafe(_TOKEN_BYTES),
                user_id=identity.id,
                expires_at=now + timedelta(seconds=self.settings.reset_token_ttl),
            ),
            now,
            actor=identity.id,
        )
        if superseded:
            logger.debug("Superseded %d unused reset tokens", superseded)

        result = self.mailer.send_password_reset(identity.email, identity.name, reset.token)
        if not result.success:
            logger.warning("Reset email not delivered: %s", result.error)

        if self.settings.is_production:
            return ResetRequestResult(message=RESET_TOKEN_SENT)
        return ResetRequestResult(message=RESET_TOKEN_SENT, token=reset.token)

    def confirm(self, token: str, new_password: str) -> ResetConfirmResult:
        """Redeem token and set new_password.

        Raises:
            ResetTokenInvalid: token absent, expired, or already used, or the
                               identity it belongs to no longer exists.
        """
        now = self.clock()
        reset = self.store.find_valid_reset_token(token, now)
        if reset is None:
            raise ResetTokenInvalid()

        identity = self.store.get_identity(reset.user_id)
        if identity is None:
            raise ResetTokenInvalid()

        updated = set_password(identity, new_password)
        if not self.store.redeem_reset_token(reset, updated.hashed_password, now):
            # Used or expired between lookup and redemption.
            raise ResetTokenInvalid()

        revoked = self.refresh_tokens.revoke_all(reset.user_id)
        return ResetConfirmResult(message=PASSWORD_RESET, user_id=reset.user_id, revoked_sessions=revoked)

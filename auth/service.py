"""
auth/service.py -- AuthService: the login, refresh, logout and reset flows.

Wires the six components together and is the only object the HTTP layer
talks to:

  login          guard.is_locked -> verify password -> guard.record_attempt
                 -> record_login -> issuer.issue
  refresh        refresh_tokens.rotate -> issuer.bundle
  logout         blacklist.add(access token) -> refresh_tokens.revoke_all
  logout_all     same as logout, reports how many sessions were revoked
  request_reset  reset_flow.request
  confirm_reset  reset_flow.confirm (revokes every session)
  authenticate   blacklist check -> decode -> active identity

Every flow receives an explicit RequestContext. Audit events are written
here, by the caller of each mutation, through audit() on the
"gatekeeper.audit" logger.

Store failures are not caught: a login whose attempt row or refresh token
cannot be written fails with StorageUnavailable.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Optional

from auth.blacklist import TokenBlacklist
from auth.guard import LoginAttemptGuard
from auth.models import Identity, TokenBundle
from auth.passwords import verify_identity_password
from auth.refresh import RefreshTokenStore
from auth.reset import PasswordResetFlow, ResetConfirmResult, ResetRequestResult
from auth.store import AuthStore
from auth.tokens import TokenIssuer, decode_access_token, fingerprint, parse_device_info
from cache.store import TTLCache
from core.config import Settings, get_settings
from core.context import RequestContext
from core.errors import AccountLocked, InvalidCredentials, InvalidToken
from core.mailer import EmailClient

logger = logging.getLogger("gatekeeper.auth.service")
audit_logger = logging.getLogger("gatekeeper.audit")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def audit(event: str, ctx: RequestContext, **fields: Any) -> None:
    """Write one audit line. Never pass passwords or raw token values."""
    extra = " ".join(f"{k}={v}" for k, v in sorted(fields.items()))
    audit_logger.info(
        "event=%s user=%s ip=%s %s", event, ctx.user_id or "-", ctx.ip_address or "-", extra
    )


class AuthService:
    """Authentication flows over one AuthStore and one TTL cache.

    Usage:
        service = AuthService(store, cache)
        bundle = service.login("a@x.com", "Secret1!", ctx)
        bundle = service.refresh(bundle.refresh_token, ctx)
        service.logout(bundle.access_token, ctx.as_user(bundle.user_id))
    """

    def __init__(
        self,
        store: AuthStore,
        cache: TTLCache,
        settings: Optional[Settings] = None,
        mailer: Optional[EmailClient] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.clock = clock
        self.guard = LoginAttemptGuard(store, clock=clock)
        self.refresh_tokens = RefreshTokenStore(store, self.settings, clock=clock)
        self.issuer = TokenIssuer(self.refresh_tokens, self.settings)
        self.blacklist = TokenBlacklist(cache, self.settings)
        self.reset_flow = PasswordResetFlow(store, self.refresh_tokens, mailer, self.settings, clock=clock)

    # ------------------------------------------------------------------
    # Login / refresh
    # ------------------------------------------------------------------

    def login(self, email: str, password: str, ctx: RequestContext) -> TokenBundle:
        """Verify credentials and issue a token bundle.

        Raises:
            AccountLocked:      too many recent failures for email.
            InvalidCredentials: unknown email or wrong password (same error).
        """
        status = self.guard.is_locked(email)
        if status.locked:
            audit("login.locked", ctx, remaining_ms=status.remaining_ms)
            raise AccountLocked(status.remaining_ms)

        identity = self.store.get_identity_by_email(email)
        if not verify_identity_password(identity, password):
            self.guard.record_attempt(email, False, ctx.ip_address, ctx.user_agent)
            audit("login.failed", ctx)
            raise InvalidCredentials()

        self.guard.record_attempt(email, True, ctx.ip_address, ctx.user_agent)
        self.store.record_login(identity.id, self.clock())
        bundle = self.issuer.issue(identity, ctx)
        audit("login.succeeded", ctx.as_user(identity.id))
        return bundle

    def refresh(self, refresh_token: str, ctx: RequestContext) -> TokenBundle:
        """Rotate refresh_token and return a new bundle.

        Raises:
            InvalidToken: token invalid, already rotated, or its identity is gone.
        """
        predecessor, successor = self.refresh_tokens.rotate(
            refresh_token,
            device_info=parse_device_info(ctx.user_agent) if ctx.user_agent else None,
            user_agent=ctx.user_agent,
            ip_address=ctx.ip_address,
        )
        identity = self.store.get_identity(successor.user_id)
        if identity is None or not identity.active:
            self.refresh_tokens.revoke(successor.token)
            raise InvalidToken()
        audit(
            "token.rotated",
            ctx.as_user(identity.id),
            session=successor.session_id,
            previous=fingerprint(predecessor.token),
        )
        return self.issuer.bundle(identity, successor)

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self, access_token: str, ctx: RequestContext) -> int:
        """Deny access_token and revoke every refresh token of ctx.user_id.

        Returns the number of refresh tokens revoked. The denylist write
        happens first and a cache failure propagates.
        """
        revoked = self._end_sessions(access_token, ctx)
        audit("logout", ctx, revoked=revoked)
        return revoked

    def logout_all(self, access_token: str, ctx: RequestContext) -> int:
        revoked = self._end_sessions(access_token, ctx)
        audit("logout.all", ctx, revoked=revoked)
        return revoked

    def _end_sessions(self, access_token: str, ctx: RequestContext) -> int:
        self.blacklist.add(access_token)
        return self.refresh_tokens.revoke_all(ctx.user_id)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def request_password_reset(self, email: str, ctx: RequestContext) -> ResetRequestResult:
        result = self.reset_flow.request(email)
        audit("password.reset_requested", ctx)
        return result

    def confirm_password_reset(self, token: str, new_password: str, ctx: RequestContext) -> ResetConfirmResult:
        result = self.reset_flow.confirm(token, new_password)
        audit("password.reset", ctx.as_user(result.user_id), revoked=result.revoked_sessions)
        return result

    # ------------------------------------------------------------------
    # Bearer authentication
    # ------------------------------------------------------------------

    def authenticate(self, access_token: str) -> Identity:
        """Resolve a bearer access token to an active identity.

        Raises:
            InvalidToken: token blacklisted, malformed, expired, or its
                          identity is missing or inactive.
        """
        if self.blacklist.is_blacklisted(access_token):
            raise InvalidToken("Token has been revoked.")
        payload = decode_access_token(access_token, secret_key=self.settings.secret_key)
        if payload is None:
            raise InvalidToken()
        identity = self.store.get_identity(payload["user_id"])
        if identity is None or not identity.active:
            raise InvalidToken()
        return identity

"""
core/errors.py -- Typed domain failures for the authentication core.

Every failure a caller must react to is a subclass of AuthError carrying a
stable machine-readable code, the HTTP status the boundary maps it to, and a
user-facing message. api/main.py registers a single exception handler for
AuthError; route handlers never translate these themselves.

Anything that is not an AuthError (programming errors, unexpected driver
exceptions) propagates unchanged and surfaces as a 500.
"""

from __future__ import annotations

import math


class AuthError(Exception):
    """Base class for all domain failures."""

    code: str = "auth_error"
    status_code: int = 400
    default_message: str = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    """Unknown identity or wrong password. Both cases share one message."""

    code = "invalid_credentials"
    status_code = 403
    default_message = "Invalid credentials."


class AccountLocked(AuthError):
    """Too many recent failures; login is rejected until the lockout ends.

    Only a coarse minute estimate is shown to the user, never the failure count.
    """

    code = "account_locked"
    status_code = 403

    def __init__(self, remaining_ms: int) -> None:
        self.remaining_ms = remaining_ms
        super().__init__(f"Account locked. Try again in {self.remaining_minutes} minutes.")

    @property
    def remaining_minutes(self) -> int:
        return max(1, math.ceil(self.remaining_ms / 60000))


class InvalidToken(AuthError):
    """Refresh token absent/expired/revoked, or access token rejected."""

    code = "invalid_token"
    status_code = 401
    default_message = "Invalid token."


class ResetTokenInvalid(AuthError):
    """Password reset token absent, expired, or already used."""

    code = "reset_token_invalid"
    status_code = 400
    default_message = "Reset token is invalid or expired."


class StorageUnavailable(AuthError):
    """The persistent store or the cache could not be reached.

    Raised with `raise ... from exc` so the driver error stays attached for
    the logs.
    """

    code = "storage_unavailable"
    status_code = 503
    default_message = "Service temporarily unavailable."

"""
tests/test_password_reset.py -- Unit tests for PasswordResetFlow (auth/reset.py).

Covers:
  - request(): unknown email returns the same message and writes nothing
  - request(): known email stores a token, sends the e-mail, returns the token
    outside production and withholds it in production
  - supersession: a second request invalidates the first token
  - confirm(): changes the password, revokes every refresh token
  - confirm(): single use, expiry, unknown token
  - a mail delivery failure does not fail the request
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from auth.passwords import verify_password
from auth.refresh import RefreshTokenStore
from auth.reset import PASSWORD_RESET, RESET_TOKEN_SENT, PasswordResetFlow
from core.config import get_settings
from core.errors import ResetTokenInvalid
from core.mailer import EmailResult

NEW_PASSWORD = "Brand#New77"


def _flow(store, mailer, clock, settings=None) -> PasswordResetFlow:
    settings = settings or get_settings()
    return PasswordResetFlow(store, RefreshTokenStore(store, settings, clock=clock), mailer, settings, clock=clock)


class TestRequest:
    def test_unknown_email_is_indistinguishable(self, store, identity, mailer, clock) -> None:
        flow = _flow(store, mailer, clock)
        unknown = flow.request("nobody@x.com")
        known = flow.request(identity.email)
        assert unknown.message == known.message == RESET_TOKEN_SENT
        assert unknown.token is None
        mailer.send_password_reset.assert_called_once()

    def test_known_email_sends_token(self, store, identity, mailer, clock) -> None:
        result = _flow(store, mailer, clock).request(identity.email)
        assert result.token
        mailer.send_password_reset.assert_called_once_with(identity.email, identity.name, result.token)
        row = store.find_valid_reset_token(result.token, clock.now)
        assert row is not None
        assert row.expires_at == clock.now + timedelta(hours=1)

    def test_token_withheld_in_production(self, store, identity, mailer, clock) -> None:
        prod = get_settings().model_copy(update={"app_env": "production"})
        result = _flow(store, mailer, clock, prod).request(identity.email)
        assert result.token is None
        assert result.message == RESET_TOKEN_SENT
        sent_token = mailer.send_password_reset.call_args.args[2]
        assert store.find_valid_reset_token(sent_token, clock.now) is not None

    def test_new_request_supersedes_previous(self, store, identity, mailer, clock) -> None:
        flow = _flow(store, mailer, clock)
        first = flow.request(identity.email).token
        second = flow.request(identity.email).token
        assert store.find_valid_reset_token(first, clock.now) is None
        assert store.find_valid_reset_token(second, clock.now) is not None
        with pytest.raises(ResetTokenInvalid):
            flow.confirm(first, NEW_PASSWORD)

    def test_mail_failure_does_not_fail_request(self, store, identity, mailer, clock) -> None:
        mailer.send_password_reset.return_value = EmailResult(success=False, error="boom")
        result = _flow(store, mailer, clock).request(identity.email)
        assert result.message == RESET_TOKEN_SENT


class TestConfirm:
    def test_confirm_changes_password_and_revokes_sessions(self, store, identity, mailer, clock) -> None:
        flow = _flow(store, mailer, clock)
        for _ in range(2):
            flow.refresh_tokens.issue(identity.id)
        token = flow.request(identity.email).token

        result = flow.confirm(token, NEW_PASSWORD)

        assert result.message == PASSWORD_RESET
        assert result.revoked_sessions == 2
        assert flow.refresh_tokens.active_sessions(identity.id) == []
        assert verify_password(NEW_PASSWORD, store.get_identity(identity.id).hashed_password)

    def test_single_use(self, store, identity, mailer, clock) -> None:
        flow = _flow(store, mailer, clock)
        token = flow.request(identity.email).token
        flow.confirm(token, NEW_PASSWORD)
        with pytest.raises(ResetTokenInvalid):
            flow.confirm(token, "Another#Pass9")
        assert verify_password(NEW_PASSWORD, store.get_identity(identity.id).hashed_password)

    def test_expired_token(self, store, identity, mailer, clock) -> None:
        flow = _flow(store, mailer, clock)
        token = flow.request(identity.email).token
        clock.advance(hours=1, seconds=1)
        with pytest.raises(ResetTokenInvalid):
            flow.confirm(token, NEW_PASSWORD)

    def test_unknown_token(self, store, mailer, clock) -> None:
        with pytest.raises(ResetTokenInvalid):
            _flow(store, mailer, clock).confirm("nope", NEW_PASSWORD)

    def test_redeem_race_loses(self, store, identity, mailer, clock) -> None:
        """A token found valid but redeemed elsewhere before the write is rejected."""
        flow = _flow(store, mailer, clock)
        token = flow.request(identity.email).token
        stale = store.find_valid_reset_token(token, clock.now)
        assert store.redeem_reset_token(stale, "hash-1", clock.now) is True
        assert store.redeem_reset_token(stale, "hash-2", clock.now) is False
        assert store.get_identity(identity.id).hashed_password == "hash-1"

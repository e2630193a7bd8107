"""
tests/test_mailer.py -- Unit tests for core/mailer.py.

Covers:
  - Unconfigured EMAIL_SERVICE_URL skips delivery without an HTTP call
  - Payload: template name, reset link built from FRONTEND_URL, x-api-key header
  - Transport and HTTP errors come back as EmailResult(success=False), never raised
"""

from __future__ import annotations

from unittest.mock import MagicMock

import requests

from core.config import Settings
from core.mailer import EmailClient


def _settings(**overrides) -> Settings:
    values = {
        "secret_key": "k" * 32,
        "email_service_url": "https://mail.internal/send",
        "email_service_key": "svc-key",
        "frontend_url": "https://app.example.com/",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _session(status: int = 200, body: dict | None = None) -> MagicMock:
    session = MagicMock()
    resp = MagicMock()
    resp.content = b"{}" if body is not None else b""
    resp.json.return_value = body
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status} Server Error")
    session.post.return_value = resp
    return session


class TestSendPasswordReset:
    def test_payload_and_headers(self) -> None:
        session = _session(body={"messageId": "m-42"})
        result = EmailClient(_settings(), session=session).send_password_reset("a@x.com", "Alice", "tok123")

        assert result.success
        assert result.message_id == "m-42"
        args, kwargs = session.post.call_args
        assert args == ("https://mail.internal/send",)
        assert kwargs["json"] == {
            "to": "a@x.com",
            "template": "password-reset",
            "data": {
                "name": "Alice",
                "token": "tok123",
                "resetUrl": "https://app.example.com/reset-password?token=tok123",
            },
        }
        assert kwargs["headers"]["x-api-key"] == "svc-key"
        assert kwargs["timeout"] == 10

    def test_no_api_key_header_when_unset(self) -> None:
        session = _session()
        EmailClient(_settings(email_service_key=""), session=session).send("a@x.com", "t", {})
        assert "x-api-key" not in session.post.call_args.kwargs["headers"]

    def test_unconfigured_skips(self) -> None:
        session = _session()
        result = EmailClient(_settings(email_service_url=""), session=session).send_password_reset("a@x.com", None, "t")
        assert not result.success
        assert result.error == "Email service not configured"
        session.post.assert_not_called()


class TestFailures:
    def test_http_error_is_reported(self) -> None:
        result = EmailClient(_settings(), session=_session(status=502)).send_password_reset("a@x.com", None, "t")
        assert not result.success
        assert "502" in result.error

    def test_connection_error_is_reported(self) -> None:
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("refused")
        result = EmailClient(_settings(), session=session).send("a@x.com", "password-reset", {})
        assert not result.success
        assert "refused" in result.error

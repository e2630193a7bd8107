"""
tests/test_tokens.py -- Unit tests for auth/tokens.py.

Covers:
  - parse_device_info: known browser/OS pairs, partial matches, absent header
  - create_access_token / decode_access_token: claims, expiry, bad signature
  - Two tokens for the same identity in the same second differ (jti)
  - TokenIssuer.issue persists a refresh token carrying the device descriptor
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.models import Identity
from auth.refresh import RefreshTokenStore
from auth.tokens import (
    TokenIssuer,
    create_access_token,
    decode_access_token,
    fingerprint,
    parse_device_info,
)
from core.config import get_settings
from core.context import RequestContext

CHROME_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0 Safari/537.36"


class TestParseDeviceInfo:
    @pytest.mark.parametrize(
        "user_agent,expected",
        [
            (CHROME_UA, "Chrome on Windows"),
            ("Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0", "Firefox on Linux"),
            (
                "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 Version/17.1 Safari/605.1.15",
                "Safari on Mac OS",
            ),
            (
                "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 Mobile/15E148 Safari/604.1",
                "Safari on iPhone",
            ),
        ],
    )
    def test_known_pairs(self, user_agent: str, expected: str) -> None:
        assert parse_device_info(user_agent) == expected

    def test_unrecognized_header(self) -> None:
        assert parse_device_info("curl/8.4.0") == "unknown browser on unknown OS"

    def test_browser_without_os(self) -> None:
        assert parse_device_info("Opera/9.80") == "Opera on unknown OS"

    def test_absent_header(self) -> None:
        assert parse_device_info(None) == "unknown device"
        assert parse_device_info("") == "unknown device"


class TestAccessTokenCodec:
    def _identity(self) -> Identity:
        return Identity(email="a@x.com", name="Alice", user_type="admin", id="user-1")

    def test_claims_round_trip(self) -> None:
        payload = decode_access_token(create_access_token(self._identity()))
        assert payload is not None
        assert payload["sub"] == "user-1"
        assert payload["user_id"] == "user-1"
        assert payload["name"] == "Alice"
        assert payload["user_type"] == "admin"
        assert payload["email"] == "a@x.com"

    def test_default_expiry_is_configured_ttl(self) -> None:
        issued = datetime(2030, 1, 1, tzinfo=timezone.utc)
        token = create_access_token(self._identity(), now=issued)
        claims = jwt.get_unverified_claims(token)
        assert claims["exp"] - claims["iat"] == get_settings().access_token_ttl

    def test_expired_token_rejected(self) -> None:
        issued = datetime.now(timezone.utc) - timedelta(hours=3)
        token = create_access_token(self._identity(), expire_seconds=60, now=issued)
        assert decode_access_token(token) is None

    def test_wrong_secret_rejected(self) -> None:
        token = create_access_token(self._identity(), secret_key="x" * 40)
        assert decode_access_token(token) is None

    def test_garbage_rejected(self) -> None:
        assert decode_access_token("not.a.jwt") is None

    def test_tokens_are_unique(self) -> None:
        now = datetime.now(timezone.utc)
        assert create_access_token(self._identity(), now=now) != create_access_token(self._identity(), now=now)

    def test_fingerprint_hides_token(self) -> None:
        token = create_access_token(self._identity())
        assert fingerprint(token) == token[:8] + "..."
        assert len(fingerprint(token)) < len(token)


class TestTokenIssuer:
    def test_issue_bundle(self, store, identity, clock) -> None:
        refresh_tokens = RefreshTokenStore(store, clock=clock)
        ctx = RequestContext(ip_address="10.0.0.7", user_agent=CHROME_UA)
        bundle = TokenIssuer(refresh_tokens).issue(identity, ctx)

        assert bundle.user_id == identity.id
        assert bundle.name == "Alice"
        assert bundle.user_type == "user"
        assert bundle.expires_in == get_settings().access_token_ttl
        assert decode_access_token(bundle.access_token)["user_id"] == identity.id

        row = store.get_refresh_token(bundle.refresh_token)
        assert row is not None
        assert row.user_id == identity.id
        assert row.device_info == "Chrome on Windows"
        assert row.ip_address == "10.0.0.7"
        assert not row.revoked

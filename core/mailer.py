"""
mailer.py -- Notification sender for account e-mails.

Delivery is delegated to an HTTP mail service (EMAIL_SERVICE_URL). The payload
is a template name plus data; rendering is the mail service's job.

Delivery is best-effort from the caller's perspective: send() never raises.
A failed or unconfigured delivery comes back as EmailResult(success=False) and
is logged, so a mail outage cannot be turned into an account-existence oracle
by the password reset endpoint.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import requests

from core.config import Settings, get_settings

logger = logging.getLogger("gatekeeper.mailer")

# Module-level session for connection pooling, same limits as any outbound call.
_session = requests.Session()
_session.max_redirects = 3


@dataclass
class EmailResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class EmailClient:
    """Thin client for the mail service.

    Usage:
        mailer = EmailClient()
        mailer.send_password_reset("a@x.com", "Alice", token)
    """

    def __init__(self, settings: Optional[Settings] = None, session: Optional[requests.Session] = None) -> None:
        cfg = settings or get_settings()
        self.service_url = cfg.email_service_url
        self.service_key = cfg.email_service_key
        self.frontend_url = cfg.frontend_url.rstrip("/")
        self._session = session or _session

    def send(self, to: str, template: str, data: dict[str, Any]) -> EmailResult:
        if not self.service_url:
            logger.warning("EMAIL_SERVICE_URL not configured, skipping %s email", template)
            return EmailResult(success=False, error="Email service not configured")

        headers = {"Content-Type": "application/json"}
        if self.service_key:
            headers["x-api-key"] = self.service_key
        try:
            resp = self._session.post(
                self.service_url,
                json={"to": to, "template": template, "data": data},
                headers=headers,
                timeout=10,
            )
            resp.raise_for_status()
            body = resp.json() if resp.content else {}
        except (requests.RequestException, ValueError) as e:
            logger.error("Failed to send %s email: %s", template, e)
            return EmailResult(success=False, error=str(e))

        logger.info("Sent %s email", template)
        message_id = body.get("messageId") if isinstance(body, dict) else None
        return EmailResult(success=True, message_id=message_id)

    def send_password_reset(self, email: str, name: Optional[str], token: str) -> EmailResult:
        """Send the reset link. The raw token only ever leaves through here."""
        return self.send(
            email,
            "password-reset",
            {
                "name": name,
                "token": token,
                "resetUrl": f"{self.frontend_url}/reset-password?token={token}",
            },
        )

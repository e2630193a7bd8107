"""
API request and response models for the gatekeeper REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Field names are snake_case in Python and camelCase on the wire
(alias_generator=to_camel). Requests accept either spelling.
"""

import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import Identity, TokenBundle
from auth.passwords import MAX_PASSWORD_BYTES

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128
_SPECIAL_CHARS = '!@#$%^&*(),.?":{}|<>'

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def check_password_strength(value: str) -> str:
    """Require upper, lower, digit and one special character.

    Character-count bounds are enforced by the Field. The UTF-8 byte length
    is checked here because bcrypt cannot hash more than MAX_PASSWORD_BYTES.
    """
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded.")
    missing = []
    if not re.search(r"[A-Z]", value):
        missing.append("an uppercase letter")
    if not re.search(r"[a-z]", value):
        missing.append("a lowercase letter")
    if not re.search(r"\d", value):
        missing.append("a digit")
    if not any(ch in _SPECIAL_CHARS for ch in value):
        missing.append("a special character")
    if missing:
        raise ValueError("Password must contain " + ", ".join(missing) + ".")
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _EmailBody(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=254, pattern=EMAIL_PATTERN)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: object) -> object:
        """Strip and lowercase before the pattern check so lookups are case-insensitive."""
        return value.strip().lower() if isinstance(value, str) else value


class LoginRequest(_EmailBody):
    """Request body for POST /api/v1/auth/login."""

    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh."""

    model_config = _CAMEL

    refresh_token: str = Field(min_length=1, max_length=512)


class PasswordResetRequest(_EmailBody):
    """Request body for POST /api/v1/auth/password/request-reset."""


class ConfirmPasswordResetRequest(BaseModel):
    """Request body for POST /api/v1/auth/password/confirm-reset."""

    model_config = _CAMEL

    token: str = Field(min_length=1, max_length=512)
    new_password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)

    @field_validator("new_password")
    @classmethod
    def strong_password(cls, value: str) -> str:
        return check_password_strength(value)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class LoginResponse(BaseModel):
    """Token bundle returned by login and refresh."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    access_token: str
    refresh_token: str
    expires_in: int
    user_id: str
    name: Optional[str] = None
    user_type: str

    @classmethod
    def from_bundle(cls, bundle: TokenBundle) -> "LoginResponse":
        return cls(
            access_token=bundle.access_token,
            refresh_token=bundle.refresh_token,
            expires_in=bundle.expires_in,
            user_id=bundle.user_id,
            name=bundle.name,
            user_type=bundle.user_type,
        )


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class LogoutAllResponse(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    message: str
    revoked_count: int


class ResetRequestResponse(BaseModel):
    """Generic reset acknowledgement. token is only set outside production."""

    model_config = ConfigDict(frozen=True)

    message: str
    token: Optional[str] = None


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    user_id: str
    email: str
    name: Optional[str] = None
    user_type: str
    last_login: Optional[str] = None

    @classmethod
    def from_identity(cls, identity: Identity) -> "MeResponse":
        return cls(
            user_id=identity.id,
            email=identity.email,
            name=identity.name,
            user_type=identity.user_type,
            last_login=identity.last_login.isoformat() if identity.last_login else None,
        )


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str

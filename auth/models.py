"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). The stores and
services do the work; these own the domain shape.

Timestamps are timezone-aware UTC datetimes at this layer. The store
converts them to and from fixed-width ISO strings at the SQL boundary.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class Identity:
    """The slice of the user record this core reads and writes.

    hashed_password is only ever replaced wholesale through
    auth.passwords.set_password(); no plaintext is retained anywhere.
    Profile CRUD lives outside this service.
    """

    email: str
    name: Optional[str] = None
    user_type: str = "user"  # "user" | "admin"
    hashed_password: Optional[str] = None  # None = no local password
    id: Optional[str] = None
    first_login: Optional[datetime] = None
    last_login: Optional[datetime] = None
    active: bool = True
    created_at: Optional[datetime] = None


@dataclass
class RefreshToken:
    """One link in a device session's rotation chain.

    session_id groups rotations that belong to one device session.
    device_info, user_agent and ip_address are diagnostic and never used for
    authorization. Rows are revoked, never hard-deleted, by this service.
    """

    token: str
    user_id: str
    expires_at: datetime
    session_id: str
    revoked: bool = False
    device_info: Optional[str] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class PasswordResetToken:
    """Single-use, time-boxed reset credential. At most one unused per user."""

    token: str
    user_id: str
    expires_at: datetime
    used: bool = False
    id: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class LoginAttempt:
    """Append-only record of one login attempt."""

    email: str
    successful: bool
    created_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    id: Optional[str] = None


@dataclass(frozen=True)
class LockStatus:
    locked: bool
    remaining_ms: int = 0


@dataclass
class TokenBundle:
    """Everything a successful login or refresh hands back to the client."""

    access_token: str
    refresh_token: str
    expires_in: int
    user_id: str
    name: Optional[str]
    user_type: str

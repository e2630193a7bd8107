"""
auth/passwords.py -- Credential verification and password replacement.

Passwords: bcrypt, used directly rather than through passlib. bcrypt salts
every hash and its checkpw() comparison is constant-time, so nothing here
reimplements either.

bcrypt only reads the first MAX_PASSWORD_BYTES bytes of a password and
current releases refuse longer input with ValueError. New passwords are
checked against that limit where they enter (api/models.py
check_password_strength, shared by the CLI). verify_password() treats an
over-long candidate as a non-match.

set_password() is the only way a new hash reaches an Identity. It hashes
before the write is constructed; the caller persists the result explicitly.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import logging
from dataclasses import replace

import bcrypt

from auth.models import Identity

logger = logging.getLogger("gatekeeper.auth.passwords")

_ROUNDS = 10
MAX_PASSWORD_BYTES = 72


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=_ROUNDS)).decode("utf-8")


def verify_password(plain: str, hashed: str | None) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A missing or malformed stored hash is a non-match, not an error.
    """
    if not hashed:
        return False
    candidate = plain.encode("utf-8")
    if len(candidate) > MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(candidate, hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


# Timing equalization dummy hash.
# Computed once at module load. Logins for unknown emails still pay for one
# bcrypt comparison so response time does not reveal whether the account exists.
_DUMMY_HASH: str = hash_password("gatekeeper_timing_dummy")


def verify_identity_password(identity: Identity | None, plain: str) -> bool:
    """Check plain against identity's hash with timing equalization.

    Always runs bcrypt whether or not the identity exists or has a local
    password.
    """
    if identity is None or identity.hashed_password is None:
        verify_password(plain, _DUMMY_HASH)
        return False
    return verify_password(plain, identity.hashed_password)


def set_password(identity: Identity, plain: str) -> Identity:
    """Return a copy of identity carrying a fresh hash of plain.

    The plaintext is not stored on the returned object.
    """
    return replace(identity, hashed_password=hash_password(plain))

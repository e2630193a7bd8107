"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. AuthStore is the repository; the _row_to_*
functions are the mappers. Services and routes never touch SQL directly.

Tables: identity, refresh_token, password_reset_token, login_attempt. Every
table carries the same audit columns (id, created_at, updated_at, active,
created_by, updated_by). created_by / updated_by come from the explicit actor
argument, never from ambient request state.

Timestamps are stored as fixed-width UTC ISO-8601 strings (microsecond
precision, +00:00 suffix). Fixed width makes string comparison in SQL equal
to chronological comparison, on SQLite and PostgreSQL alike.

Atomic state transitions:
  rotate_refresh_token() and redeem_reset_token() each run in one transaction
  and guard their flag flip with a compare-and-set UPDATE
  (WHERE ... AND revoked = 0 / used = 0). Only a caller whose UPDATE touched
  exactly one row may proceed; a concurrent caller presenting the same token
  gets None / False back.

Errors:
  sqlalchemy OperationalError (store unreachable, database locked) becomes
  StorageUnavailable. IntegrityError and everything else propagate unchanged.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool

from auth.models import Identity, LoginAttempt, PasswordResetToken, RefreshToken
from core.config import get_settings
from core.errors import StorageUnavailable

# Retention windows used by purge_expired(). Rows are only deleted once they
# are well past any point where they could still be presented.
REFRESH_TOKEN_RETENTION = timedelta(days=30)
RESET_TOKEN_RETENTION = timedelta(days=7)
LOGIN_ATTEMPT_RETENTION = timedelta(days=30)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()


def _audit_columns() -> list[Column]:
    # Fresh Column objects per table; SQLAlchemy columns cannot be shared.
    return [
        Column("id", String(36), primary_key=True),
        Column("created_at", String(32), nullable=False),
        Column("updated_at", String(32), nullable=False),
        Column("active", Integer, nullable=False, server_default="1"),
        Column("created_by", String(36)),
        Column("updated_by", String(36)),
    ]


_identities = Table(
    "identity",
    metadata,
    *_audit_columns(),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(255)),
    Column("user_type", String(30), nullable=False, server_default="user"),
    Column("hashed_password", Text),
    Column("first_login", String(32)),
    Column("last_login", String(32)),
)

_refresh_tokens = Table(
    "refresh_token",
    metadata,
    *_audit_columns(),
    Column("token", String(64), nullable=False, unique=True),
    Column("user_id", String(36), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("revoked", Integer, nullable=False, server_default="0"),
    Column("session_id", String(36)),
    Column("device_info", String(255)),
    Column("user_agent", Text),
    Column("ip_address", String(45)),
    Index("ix_refresh_token_lookup", "token", "revoked", "expires_at"),
    Index("ix_refresh_token_user_revoked", "user_id", "revoked"),
    Index("ix_refresh_token_session", "session_id"),
)

_reset_tokens = Table(
    "password_reset_token",
    metadata,
    *_audit_columns(),
    Column("token", String(64), nullable=False, unique=True),
    Column("user_id", String(36), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("used", Integer, nullable=False, server_default="0"),
    Index("ix_reset_token_lookup", "token", "used", "expires_at"),
    Index("ix_reset_token_user", "user_id"),
)

_login_attempts = Table(
    "login_attempt",
    metadata,
    *_audit_columns(),
    Column("email", String(255), nullable=False),
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("successful", Integer, nullable=False, server_default="0"),
    Index("ix_login_attempt_email_created", "email", "created_at"),
    Index("ix_login_attempt_ip", "ip_address"),
)


# ---------------------------------------------------------------------------
# SQLite pragmas
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and a busy timeout on every new connection.

    SQLite PRAGMAs are not inherited by new connections from the pool, so
    this runs per-connection. The busy timeout lets a writer wait briefly for
    a concurrent transaction instead of failing with "database is locked".
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA busy_timeout=5000")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _new_id() -> str:
    return str(uuid.uuid4())


def _iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for identities, refresh tokens, reset tokens and login attempts.

    Usage:
        store = AuthStore()                            # DATABASE_URL from settings
        store = AuthStore("sqlite:///:memory:")        # tests
        user_id = store.create_identity(Identity(email="a@x.com", hashed_password=...))
        store.close()

    Methods that depend on "now" take it as an argument so services can drive
    them from an injectable clock.
    """

    def __init__(self, db_url: Optional[str] = None) -> None:
        db_url = db_url or get_settings().database_url
        kwargs: dict = {}
        if db_url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if db_url in ("sqlite://", "sqlite:///:memory:"):
                # A plain in-memory DB exists per connection; pin one connection.
                kwargs["poolclass"] = StaticPool
        else:
            kwargs["pool_pre_ping"] = True
        self.engine: Engine = create_engine(db_url, **kwargs)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        with self._connect(begin=True) as conn:
            metadata.create_all(conn)

    @contextmanager
    def _connect(self, begin: bool = False) -> Iterator[Connection]:
        """Yield a connection (or a transaction when begin=True).

        Translates connectivity failures into StorageUnavailable. Anything
        raised by the caller's own code inside the block passes through.
        """
        try:
            with self.engine.begin() if begin else self.engine.connect() as conn:
                yield conn
        except OperationalError as exc:
            raise StorageUnavailable() from exc

    # ------------------------------------------------------------------
    # Identities
    # ------------------------------------------------------------------

    def create_identity(self, identity: Identity, actor: Optional[str] = None) -> str:
        """Insert an identity and return its id.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        now = _iso(_utcnow())
        identity_id = identity.id or _new_id()
        with self._connect(begin=True) as conn:
            conn.execute(
                _identities.insert().values(
                    id=identity_id,
                    created_at=now,
                    updated_at=now,
                    active=1 if identity.active else 0,
                    created_by=actor,
                    updated_by=actor,
                    email=identity.email,
                    name=identity.name,
                    user_type=identity.user_type,
                    hashed_password=identity.hashed_password,
                )
            )
        return identity_id

    def get_identity(self, user_id: str) -> Identity | None:
        with self._connect() as conn:
            row = conn.execute(_identities.select().where(_identities.c.id == user_id)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def get_identity_by_email(self, email: str) -> Identity | None:
        """Look up an active identity by exact email. Inactive accounts read as absent."""
        with self._connect() as conn:
            row = conn.execute(
                _identities.select().where((_identities.c.email == email) & (_identities.c.active == 1))
            ).fetchone()
        return _row_to_identity(row) if row is not None else None

    def set_password_hash(self, user_id: str, hashed_password: str, now: datetime, actor: Optional[str] = None) -> bool:
        """Replace the stored hash. Returns False if user_id was not found."""
        with self._connect(begin=True) as conn:
            result = conn.execute(
                _identities.update()
                .where(_identities.c.id == user_id)
                .values(hashed_password=hashed_password, updated_at=_iso(now), updated_by=actor)
            )
        return result.rowcount > 0

    def set_active(self, user_id: str, active: bool, actor: Optional[str] = None) -> bool:
        """Enable or disable an identity. Disabled identities cannot log in or refresh."""
        with self._connect(begin=True) as conn:
            result = conn.execute(
                _identities.update()
                .where(_identities.c.id == user_id)
                .values(active=1 if active else 0, updated_at=_iso(_utcnow()), updated_by=actor)
            )
        return result.rowcount > 0

    def record_login(self, user_id: str, now: datetime) -> None:
        """Stamp last_login, and first_login if this is the first one."""
        stamp = _iso(now)
        with self._connect(begin=True) as conn:
            conn.execute(
                _identities.update()
                .where(_identities.c.id == user_id)
                .values(
                    last_login=stamp,
                    first_login=func.coalesce(_identities.c.first_login, stamp),
                    updated_at=stamp,
                    updated_by=user_id,
                )
            )

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def insert_refresh_token(self, token: RefreshToken, now: datetime, actor: Optional[str] = None) -> RefreshToken:
        with self._connect(begin=True) as conn:
            return self._insert_refresh_token(conn, token, now, actor)

    def _insert_refresh_token(
        self, conn: Connection, token: RefreshToken, now: datetime, actor: Optional[str]
    ) -> RefreshToken:
        token.id = token.id or _new_id()
        token.created_at = now
        conn.execute(
            _refresh_tokens.insert().values(
                id=token.id,
                created_at=_iso(now),
                updated_at=_iso(now),
                active=1,
                created_by=actor,
                updated_by=actor,
                token=token.token,
                user_id=token.user_id,
                expires_at=_iso(token.expires_at),
                revoked=1 if token.revoked else 0,
                session_id=token.session_id,
                device_info=token.device_info,
                user_agent=token.user_agent,
                ip_address=token.ip_address,
            )
        )
        return token

    def get_refresh_token(self, token: str) -> RefreshToken | None:
        with self._connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token == token)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def _select_valid_refresh_token(self, conn: Connection, token: str, now: datetime):
        return conn.execute(
            _refresh_tokens.select().where(
                (_refresh_tokens.c.token == token)
                & (_refresh_tokens.c.revoked == 0)
                & (_refresh_tokens.c.expires_at > _iso(now))
            )
        ).fetchone()

    def rotate_refresh_token(
        self,
        presented: str,
        now: datetime,
        build_successor: Callable[[RefreshToken], RefreshToken],
        actor: Optional[str] = None,
    ) -> tuple[RefreshToken, RefreshToken] | None:
        """Revoke the presented token and persist its successor in one transaction.

        Returns (revoked_predecessor, successor), or None if the presented
        token is not currently valid or a concurrent rotation already revoked
        it. build_successor receives the predecessor and returns the unsaved
        successor row.
        """
        with self._connect(begin=True) as conn:
            row = self._select_valid_refresh_token(conn, presented, now)
            if row is None:
                return None
            # Compare-and-set: only the caller that flips 0 -> 1 may mint.
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.id == row.id) & (_refresh_tokens.c.revoked == 0))
                .values(revoked=1, updated_at=_iso(now), updated_by=actor or row.user_id)
            )
            if result.rowcount != 1:
                return None
            predecessor = _row_to_refresh_token(row)
            predecessor.revoked = True
            successor = self._insert_refresh_token(conn, build_successor(predecessor), now, actor or row.user_id)
        return predecessor, successor

    def revoke_refresh_token(self, token: str, now: datetime, actor: Optional[str] = None) -> bool:
        """Revoke exactly one token by value. Returns True if it was active."""
        with self._connect(begin=True) as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.token == token) & (_refresh_tokens.c.revoked == 0))
                .values(revoked=1, updated_at=_iso(now), updated_by=actor)
            )
        return result.rowcount > 0

    def revoke_all_refresh_tokens(self, user_id: str, now: datetime, actor: Optional[str] = None) -> int:
        """Revoke every non-revoked token for user_id. Returns the number revoked."""
        with self._connect(begin=True) as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.revoked == 0))
                .values(revoked=1, updated_at=_iso(now), updated_by=actor)
            )
        return result.rowcount

    def list_active_refresh_tokens(self, user_id: str, now: datetime) -> list[RefreshToken]:
        """Non-revoked, unexpired tokens for user_id, newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                _refresh_tokens.select()
                .where(
                    (_refresh_tokens.c.user_id == user_id)
                    & (_refresh_tokens.c.revoked == 0)
                    & (_refresh_tokens.c.expires_at > _iso(now))
                )
                .order_by(_refresh_tokens.c.created_at.desc())
            ).fetchall()
        return [_row_to_refresh_token(r) for r in rows]

    # ------------------------------------------------------------------
    # Password reset tokens
    # ------------------------------------------------------------------

    def issue_reset_token(
        self, reset: PasswordResetToken, now: datetime, actor: Optional[str] = None
    ) -> tuple[PasswordResetToken, int]:
        """Mark the user's unused tokens as used, then insert reset.

        Both writes share one transaction so there is never a moment with two
        redeemable tokens for the same user. Returns (reset, superseded_count).
        """
        reset.id = reset.id or _new_id()
        reset.created_at = now
        stamp = _iso(now)
        with self._connect(begin=True) as conn:
            superseded = conn.execute(
                _reset_tokens.update()
                .where((_reset_tokens.c.user_id == reset.user_id) & (_reset_tokens.c.used == 0))
                .values(used=1, updated_at=stamp, updated_by=actor)
            ).rowcount
            conn.execute(
                _reset_tokens.insert().values(
                    id=reset.id,
                    created_at=stamp,
                    updated_at=stamp,
                    active=1,
                    created_by=actor,
                    updated_by=actor,
                    token=reset.token,
                    user_id=reset.user_id,
                    expires_at=_iso(reset.expires_at),
                    used=1 if reset.used else 0,
                )
            )
        return reset, superseded

    def find_valid_reset_token(self, token: str, now: datetime) -> PasswordResetToken | None:
        with self._connect() as conn:
            row = conn.execute(
                _reset_tokens.select().where(
                    (_reset_tokens.c.token == token)
                    & (_reset_tokens.c.used == 0)
                    & (_reset_tokens.c.expires_at > _iso(now))
                )
            ).fetchone()
        return _row_to_reset_token(row) if row is not None else None

    def redeem_reset_token(self, reset: PasswordResetToken, hashed_password: str, now: datetime) -> bool:
        """Consume reset and write the new password hash in one transaction.

        Returns False, writing nothing, if the token was already used or has
        expired since it was looked up.
        """
        stamp = _iso(now)
        with self._connect(begin=True) as conn:
            result = conn.execute(
                _reset_tokens.update()
                .where(
                    (_reset_tokens.c.id == reset.id)
                    & (_reset_tokens.c.used == 0)
                    & (_reset_tokens.c.expires_at > stamp)
                )
                .values(used=1, updated_at=stamp, updated_by=reset.user_id)
            )
            if result.rowcount != 1:
                return False
            conn.execute(
                _identities.update()
                .where(_identities.c.id == reset.user_id)
                .values(hashed_password=hashed_password, updated_at=stamp, updated_by=reset.user_id)
            )
        return True

    # ------------------------------------------------------------------
    # Login attempts
    # ------------------------------------------------------------------

    def insert_login_attempt(self, attempt: LoginAttempt) -> LoginAttempt:
        attempt.id = attempt.id or _new_id()
        stamp = _iso(attempt.created_at)
        with self._connect(begin=True) as conn:
            conn.execute(
                _login_attempts.insert().values(
                    id=attempt.id,
                    created_at=stamp,
                    updated_at=stamp,
                    active=1,
                    email=attempt.email,
                    ip_address=attempt.ip_address,
                    user_agent=attempt.user_agent,
                    successful=1 if attempt.successful else 0,
                )
            )
        return attempt

    def count_failed_attempts_since(self, email: str, since: datetime) -> int:
        with self._connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_login_attempts)
                .where(
                    (_login_attempts.c.email == email)
                    & (_login_attempts.c.successful == 0)
                    & (_login_attempts.c.created_at >= _iso(since))
                )
            ).scalar()
        return result or 0

    def latest_failed_attempt(self, email: str) -> LoginAttempt | None:
        with self._connect() as conn:
            row = conn.execute(
                _login_attempts.select()
                .where((_login_attempts.c.email == email) & (_login_attempts.c.successful == 0))
                .order_by(_login_attempts.c.created_at.desc())
                .limit(1)
            ).fetchone()
        return _row_to_login_attempt(row) if row is not None else None

    def delete_failed_attempts(self, email: str) -> int:
        with self._connect(begin=True) as conn:
            result = conn.execute(
                _login_attempts.delete().where((_login_attempts.c.email == email) & (_login_attempts.c.successful == 0))
            )
        return result.rowcount

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def purge_expired(self, now: datetime) -> dict[str, int]:
        """Hard-delete rows past their retention window. Returns per-table counts.

        Only the retention job calls this; the auth components themselves
        revoke and supersede, they never delete tokens.
        """
        with self._connect(begin=True) as conn:
            refresh = conn.execute(
                _refresh_tokens.delete().where(_refresh_tokens.c.expires_at < _iso(now - REFRESH_TOKEN_RETENTION))
            ).rowcount
            reset = conn.execute(
                _reset_tokens.delete().where(_reset_tokens.c.expires_at < _iso(now - RESET_TOKEN_RETENTION))
            ).rowcount
            attempts = conn.execute(
                _login_attempts.delete().where(_login_attempts.c.created_at < _iso(now - LOGIN_ATTEMPT_RETENTION))
            ).rowcount
        return {"refresh_token": refresh, "password_reset_token": reset, "login_attempt": attempts}

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        email=row.email,
        name=row.name,
        user_type=row.user_type,
        hashed_password=row.hashed_password,
        first_login=_parse(row.first_login),
        last_login=_parse(row.last_login),
        active=bool(row.active),
        created_at=_parse(row.created_at),
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        token=row.token,
        user_id=row.user_id,
        expires_at=_parse(row.expires_at),
        revoked=bool(row.revoked),
        session_id=row.session_id,
        device_info=row.device_info,
        user_agent=row.user_agent,
        ip_address=row.ip_address,
        created_at=_parse(row.created_at),
    )


def _row_to_reset_token(row) -> PasswordResetToken:
    return PasswordResetToken(
        id=row.id,
        token=row.token,
        user_id=row.user_id,
        expires_at=_parse(row.expires_at),
        used=bool(row.used),
        created_at=_parse(row.created_at),
    )


def _row_to_login_attempt(row) -> LoginAttempt:
    return LoginAttempt(
        id=row.id,
        email=row.email,
        successful=bool(row.successful),
        created_at=_parse(row.created_at),
        ip_address=row.ip_address,
        user_agent=row.user_agent,
    )

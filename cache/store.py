"""
cache/store.py -- TTL key/value cache used for the access-token denylist.

Two interchangeable backends behind one small interface:

  SQLiteTTLCache  single node, local development and tests. Each entry has an
                  absolute expires_at; expired entries read as misses and are
                  deleted lazily, purge_expired() trims the rest.
  RedisTTLCache   shared across every instance of the service. Expiry is
                  Redis' own (SET ... EX ttl).

Values are JSON-encoded, so True round-trips as True and not as "1".
An entry that does not decode (another writer, a corrupted row) reads as a
miss and is logged.
Backend failures raise StorageUnavailable; deciding whether a failure is
fatal (denylist write) or ignorable (denylist read) is the caller's call.

Usage:
    cache = open_cache("")                        # SQLite file beside the package
    cache = open_cache("sqlite:///:memory:")      # tests
    cache = open_cache("redis://localhost:6379/0")
    cache.set("blacklist:abc", True, ttl_seconds=7200)
    cache.get("blacklist:abc")                    # True, or None once expired
"""

import json
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Optional, Protocol

import redis

from core.errors import StorageUnavailable

logger = logging.getLogger("gatekeeper.cache")

_DEFAULT_DB = Path(__file__).parent / "gatekeeper_cache.db"

_DDL = """
CREATE TABLE IF NOT EXISTS ttl_cache (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    expires_at  REAL NOT NULL
);
"""


def _decode(key: str, raw: str) -> Optional[Any]:
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Undecodable cache entry under %s, treating as a miss", key.split(":", 1)[0])
        return None

class TTLCache(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any, ttl_seconds: int) -> None: ...

    def delete(self, key: str) -> None: ...

    def purge_expired(self) -> int: ...

    def close(self) -> None: ...


class SQLiteTTLCache:
    def __init__(self, db_path: Path | str = _DEFAULT_DB) -> None:
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        # One connection is shared by the request threadpool.
        self._lock = threading.Lock()
        if str(db_path) != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_DDL)
        self._conn.commit()

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value for key if it exists and hasn't expired."""
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT value, expires_at FROM ttl_cache WHERE key = ?",
                    (key,),
                ).fetchone()
                if row is None:
                    return None
                value, expires_at = row
                if time.time() >= expires_at:
                    self._conn.execute("DELETE FROM ttl_cache WHERE key = ?", (key,))
                    self._conn.commit()
                    return None
        except sqlite3.Error as exc:
            raise StorageUnavailable() from exc
        return _decode(key, value)

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Store value for key, replacing any existing entry."""
        try:
            with self._lock:
                self._conn.execute(
                    "INSERT OR REPLACE INTO ttl_cache (key, value, expires_at) VALUES (?, ?, ?)",
                    (key, json.dumps(value), time.time() + ttl_seconds),
                )
                self._conn.commit()
        except sqlite3.Error as exc:
            raise StorageUnavailable() from exc

    def delete(self, key: str) -> None:
        try:
            with self._lock:
                self._conn.execute("DELETE FROM ttl_cache WHERE key = ?", (key,))
                self._conn.commit()
        except sqlite3.Error as exc:
            raise StorageUnavailable() from exc

    def purge_expired(self) -> int:
        """Delete all expired entries. Returns number of rows removed."""
        try:
            with self._lock:
                cursor = self._conn.execute("DELETE FROM ttl_cache WHERE expires_at <= ?", (time.time(),))
                self._conn.commit()
        except sqlite3.Error as exc:
            raise StorageUnavailable() from exc
        return cursor.rowcount

    def close(self) -> None:
        self._conn.close()


class RedisTTLCache:
    """Redis-backed cache. Keys expire server-side, so purge_expired() is a no-op."""

    def __init__(self, url: str, *, socket_timeout: float = 5.0, client: Optional[redis.Redis] = None) -> None:
        self.client = client or redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self.client.get(key)
        except redis.RedisError as exc:
            raise StorageUnavailable() from exc
        return _decode(key, raw) if raw is not None else None

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            self.client.set(key, json.dumps(value), ex=max(1, int(ttl_seconds)))
        except redis.RedisError as exc:
            raise StorageUnavailable() from exc

    def delete(self, key: str) -> None:
        try:
            self.client.delete(key)
        except redis.RedisError as exc:
            raise StorageUnavailable() from exc

    def purge_expired(self) -> int:
        return 0

    def close(self) -> None:
        self.client.close()


def open_cache(url: str = "") -> TTLCache:
    """Build the cache backend named by CACHE_URL."""
    if url.startswith(("redis://", "rediss://", "unix://")):
        logger.info("Using Redis cache")
        return RedisTTLCache(url)
    if url.startswith("sqlite:///"):
        return SQLiteTTLCache(url[len("sqlite:///") :])
    if url:
        raise ValueError(f"Unsupported CACHE_URL scheme: {url!r}")
    return SQLiteTTLCache()

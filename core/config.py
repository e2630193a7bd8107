"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for gatekeeper happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, access_token_ttl -> ACCESS_TOKEN_TTL).

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Dev mode (DEBUG=true) generates a signing secret with a
      warning; every other mode refuses to start without one.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. Access tokens are
       HS256-signed with it, so a short key weakens every session.

  [M7] Outside debug mode a missing SECRET_KEY is a hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or cache/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("gatekeeper.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'gatekeeper_auth.db'}"

_APP_ENVS = {"local", "development", "test", "production"}


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields except secret_key have defaults so Settings() can be
    instantiated in test environments with only DEBUG=true set.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    app_env: str = "local"
    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Token lifetimes (seconds)
    # ------------------------------------------------------------------

    access_token_ttl: int = 7200
    refresh_token_ttl: int = 604800
    reset_token_ttl: int = 3600
    # False reproduces the historical behaviour: every rotation mints a new
    # session_id. True carries the presented token's session_id forward.
    preserve_session_on_rotation: bool = False

    # ------------------------------------------------------------------
    # Backends
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    # "" -> SQLite file cache beside the package; "redis://..." -> Redis.
    cache_url: str = ""

    # ------------------------------------------------------------------
    # Notification sender (blank URL disables delivery)
    # ------------------------------------------------------------------

    email_service_url: str = ""
    email_service_key: str = ""
    frontend_url: str = "http://localhost:3000"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    login_rate_limit: str = "5/minute"
    reset_request_rate_limit: str = "3/minute"
    reset_confirm_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_settings(self) -> "Settings":
        """Enforce the SECRET_KEY policy [M6][M7] and a known APP_ENV.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Otherwise: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        self.app_env = self.app_env.lower()
        if self.app_env not in _APP_ENVS:
            raise ValueError(f"APP_ENV must be one of {sorted(_APP_ENVS)}, got {self.app_env!r}.")
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        for name in ("access_token_ttl", "refresh_token_ttl", "reset_token_ttl"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name.upper()} must be a positive number of seconds.")
        return self

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()

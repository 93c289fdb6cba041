"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for authgate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. database_url -> DATABASE_URL). List fields (GATED_PATHS,
      ALLOWED_HOSTS) are parsed from JSON, e.g. GATED_PATHS='["/", "/app*"]'.

  @model_validator(mode="after"): cross-field validation after all fields are
      resolved. Dev mode (DEBUG=true) generates a SECRET_KEY with a warning;
      production mode refuses to start without one.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. Session token hashing
  (HMAC-SHA256) and the signed session_data cookie both rely on key entropy.

Layer rule: core/ is the kernel. This module may not import from api/, web/
or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authgate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'authgate.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    app_name: str = "authgate"
    base_url: str = "http://localhost:8000"
    database_url: str = _DEFAULT_DB_URL
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    # ------------------------------------------------------------------
    # Session gate
    # ------------------------------------------------------------------

    # Static matcher list. Exact paths; a trailing "*" matches by prefix.
    gated_paths: list[str] = ["/"]
    sign_in_path: str = "/sign-in"

    # ------------------------------------------------------------------
    # Sessions and cookies
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    session_expire_seconds: int = 7 * 24 * 3600
    # A session older than this (since its last refresh) has its expiry
    # pushed forward on the next get-session call.
    session_update_age_seconds: int = 24 * 3600
    cookie_cache_enabled: bool = True
    cookie_cache_max_age_seconds: int = 5 * 60
    session_purge_interval_seconds: int = 6 * 3600

    # ------------------------------------------------------------------
    # Rate limiting (auth endpoints)
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    rate_limit_window: int = 60
    rate_limit_max: int = 10
    # "memory://" counters are per-process and reset on restart. Point this at
    # a shared store (e.g. redis://host:6379) when running several workers.
    rate_limit_storage_uri: str = "memory://"

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def session_cookie_name(self) -> str:
        return f"{self.app_name}.session_token"

    @property
    def session_data_cookie_name(self) -> str:
        return f"{self.app_name}.session_data"

    @property
    def rate_limit(self) -> str:
        """Limit string in the `limits` library notation, e.g. "10 per 60 second"."""
        return f"{self.rate_limit_max} per {self.rate_limit_window} second"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("gated_paths")
    @classmethod
    def validate_gated_paths(cls, paths: list[str]) -> list[str]:
        for path in paths:
            if not path.startswith("/"):
                raise ValueError(f"Gated path must start with '/': {path!r}")
        return paths

    @field_validator("sign_in_path")
    @classmethod
    def validate_sign_in_path(cls, path: str) -> str:
        if not path.startswith("/") or path.startswith("//"):
            raise ValueError("SIGN_IN_PATH must be a server-local path such as /sign-in.")
        return path

    @field_validator("base_url")
    @classmethod
    def strip_base_url(cls, url: str) -> str:
        return url.rstrip("/")

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Sessions will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()

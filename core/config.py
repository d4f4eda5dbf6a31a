"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Tourbook happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, bcrypt_rounds -> BCRYPT_ROUNDS).

  @model_validator(mode="after"): dev mode (DEBUG=true) generates a SECRET_KEY
      with a warning, production mode refuses to start without one.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. JWT signing relies on
  key entropy -- a short key makes offline brute-force of the HS256 signature
  practical.

  bcrypt_rounds is bounded to 4..16. Below 4 bcrypt refuses to run; above 16 a
  single login takes seconds and becomes a CPU denial-of-service lever.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("tourbook.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'tourbook_auth.db'}"


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
    database_url: str = _DEFAULT_DB_URL
    public_base_url: str = "http://localhost:8000"

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    session_cookie_name: str = "jwt"
    token_expire_seconds: int = Field(default=90 * 24 * 3600, gt=0)

    # ------------------------------------------------------------------
    # Passwords and reset tokens
    # ------------------------------------------------------------------

    bcrypt_rounds: int = Field(default=12, ge=4, le=16)
    reset_token_ttl_seconds: int = Field(default=10 * 60, gt=0)
    # password_changed_at is written this far in the past so a token issued
    # in the same request as the change is not rejected by it.
    password_change_tolerance_seconds: int = Field(default=1, ge=0)

    # ------------------------------------------------------------------
    # Timeouts (seconds) for store I/O and bcrypt work
    # ------------------------------------------------------------------

    store_timeout_seconds: float = Field(default=5.0, gt=0)
    hash_timeout_seconds: float = Field(default=5.0, gt=0)

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]
    # Honour X-Forwarded-For / X-Forwarded-Proto from a fronting proxy.
    trust_proxy: bool = False
    login_rate_limit: str = "10/minute"
    forgot_password_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Outbound email (optional -- empty smtp_host logs instead of sending)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    email_from: str = ""
    email_from_name: str = "Tourbook"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing. Every restart would otherwise silently
            log out every user.

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

    All modules should call get_settings() rather than constructing Settings()
    directly. In tests: call get_settings.cache_clear() between test cases if
    you need to inject different environment variables.
    """
    return Settings()

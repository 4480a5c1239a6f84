"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AccessGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, identity_provider -> IDENTITY_PROVIDER).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode generates a SECRET_KEY with a warning; production mode
      refuses to start without one. The GoTrue provider refuses to start
      without its URL and service key.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. Access tokens and
       reset tokens are both HS256-signed with it.

  In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or directory/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("accessgate.config")

_ROOT = Path(__file__).resolve().parent.parent


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
    secret_key: str = Field(default="", repr=False)

    # ------------------------------------------------------------------
    # Sessions and reset links
    # ------------------------------------------------------------------

    token_expire_seconds: int = 3600
    reset_token_expire_seconds: int = 3600
    # Reset links point at the frontend page that collects the new password.
    frontend_base_url: str = "http://localhost:5173"

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    directory_db_url: str = f"sqlite:///{_ROOT / 'directory' / 'accessgate_directory.db'}"
    identity_db_url: str = f"sqlite:///{_ROOT / 'auth' / 'accessgate_identity.db'}"

    # ------------------------------------------------------------------
    # Identity provider
    # ------------------------------------------------------------------

    identity_provider: Literal["local", "gotrue"] = "local"
    gotrue_url: str = ""
    gotrue_service_key: str = Field(default="", repr=False)
    gotrue_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Password policy
    # ------------------------------------------------------------------

    temporary_password_length: int = Field(default=16, ge=12, le=64)

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    reset_rate_limit: str = "5/minute"
    # Live strength feedback fires on keystrokes; the client debounces.
    password_check_rate_limit: str = "120/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Issued tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_identity_provider(self) -> "Settings":
        """The GoTrue provider needs both its base URL and a service-role key."""
        if self.identity_provider == "gotrue" and not (self.gotrue_url and self.gotrue_service_key):
            raise ValueError("IDENTITY_PROVIDER=gotrue requires GOTRUE_URL and GOTRUE_SERVICE_KEY.")
        return self

    @property
    def reset_return_url(self) -> str:
        """Where reset links land: the frontend reset-password page."""
        return f"{self.frontend_base_url.rstrip('/')}/reset-password"


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()

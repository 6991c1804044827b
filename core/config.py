"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the supplier portal happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. session_secret -> SESSION_SECRET, database_url -> DATABASE_URL).

  @model_validator(mode="after"): DEBUG-conditional SESSION_SECRET handling.
      Dev mode generates a key with a warning; production refuses to start.

Security notes:
  [M6] SESSION_SECRET shorter than 32 chars is rejected outright. It signs the
       session JWT and the OAuth state cookie.

  [M7] In production mode (DEBUG not set or false), a missing SESSION_SECRET
       is a hard startup failure.

Token lifetimes, lockout thresholds and the magic-link rate limits are module
constants in auth/, not settings. They are part of the security contract and
are not tunable per deployment.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
rfq/, or notify/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("supplierportal.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'supplier_portal.db'}"


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
    session_secret: str = ""
    database_url: str = _DEFAULT_DB_URL
    # Public origin used to build links embedded in emails.
    base_url: str = "http://localhost:5000"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost:5000", "http://localhost:3000"]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    session_expire_seconds: int = 7 * 24 * 60 * 60

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    # Any `limits` storage URI. memory:// is process-local; point this at a
    # shared store (e.g. redis://) when running more than one instance.
    rate_limit_storage_uri: str = "memory://"
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # OIDC (optional -- empty string means the provider is disabled)
    # ------------------------------------------------------------------

    oidc_client_id: str = ""
    oidc_client_secret: str = ""
    oidc_discovery_url: str = ""
    oidc_display_name: str = "SSO"

    # ------------------------------------------------------------------
    # Email
    # ------------------------------------------------------------------

    email_provider: str = "log"  # "log" | "http"
    email_api_url: str = ""
    email_api_key: str = ""
    email_from: str = "procurement@localhost"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_session_secret(self) -> "Settings":
        """Enforce the SESSION_SECRET policy [M6] [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if SESSION_SECRET is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.session_secret:
            if self.debug:
                self.session_secret = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SESSION_SECRET. " "Sessions will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SESSION_SECRET is required in production mode. "
                    "Set SESSION_SECRET in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.session_secret) < 32:
            raise ValueError("SESSION_SECRET must be at least 32 characters.")
        if self.email_provider not in ("log", "http"):
            raise ValueError(f"EMAIL_PROVIDER must be 'log' or 'http', got {self.email_provider!r}")
        if self.email_provider == "http" and not self.email_api_url:
            raise ValueError("EMAIL_API_URL is required when EMAIL_PROVIDER=http.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()

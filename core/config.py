"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Inbook happen here. No module should call
os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. backend_url -> BACKEND_URL).

  field_validator(mode="before"): Normalizes deploy-time URL substitutions.
      Build pipelines frequently inject an empty string or a literal pair of
      quotes ('""') when a variable is unset; both are treated as "not
      configured" and replaced with a fixed default. Construction never fails
      because of a missing backend URL.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. It signs the
       OAuth state blob, so a short key makes state forgery cheaper.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
auth/ or social/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("inbook.config")

DEV_BACKEND_URL = "http://localhost:8000"
PROD_BACKEND_URL = "https://inul-inbook-backend.vercel.app"
DEFAULT_FRONTEND_URL = "http://localhost:3000"

_DEFAULT_STORAGE_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'inbook_client.db'}"

# Values a build pipeline substitutes for an unset variable.
_BLANK_VALUES = {"", '""', "''"}


def _normalize_url(value: object) -> str:
    if value is None:
        return ""
    text = str(value).strip()
    if text in _BLANK_VALUES:
        return ""
    return text.rstrip("/")


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
    environment: Literal["development", "production"] = "development"
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Deployment topology
    # ------------------------------------------------------------------

    backend_url: str = ""
    frontend_url: str = ""
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    cookie_max_age: int = 60 * 60 * 24 * 30  # 30 days
    durable_storage_url: str = _DEFAULT_STORAGE_URL

    # ------------------------------------------------------------------
    # Timing (seconds)
    # ------------------------------------------------------------------

    login_settle_delay: float = 0.5
    refetch_delay: float = 0.5
    callback_timeout: float = 10.0
    relay_timeout: float = 15.0
    api_timeout: float = 10.0

    # ------------------------------------------------------------------
    # OAuth relay
    # ------------------------------------------------------------------

    verify_oauth_state: bool = True
    oauth_rate_limit: str = "20/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("backend_url", "frontend_url", mode="before")
    @classmethod
    def strip_url(cls, value: object) -> str:
        return _normalize_url(value)

    @model_validator(mode="after")
    def apply_url_defaults(self) -> "Settings":
        """Fill unset URLs with the fixed defaults for the current environment."""
        if not self.backend_url:
            self.backend_url = PROD_BACKEND_URL if self.environment == "production" else DEV_BACKEND_URL
            logger.info("BACKEND_URL not configured, using fallback %s", self.backend_url)
        if not self.frontend_url:
            self.frontend_url = DEFAULT_FRONTEND_URL
        return self

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            OAuth state issued before a restart will no longer verify.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. OAuth state will not survive restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def secure_cookies(self) -> bool:
        """True when the application page is served over https."""
        return self.frontend_url.startswith("https://")

    @property
    def cookie_same_site(self) -> str:
        """SameSite policy for the token cookie.

        Production deployments talk to the backend cross-domain and need
        "none", which browsers only accept together with Secure. Everything
        else (local development, plain http) stays on "lax".
        """
        if self.is_production and self.secure_cookies:
            return "none"
        return "lax"


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()

"""
core/config.py -- Settings for the card API, read from the environment.

Every environment lookup goes through get_settings(). Nothing else in the
project reads os.environ.

  get_settings() is wrapped in lru_cache, so the first caller builds Settings
      and every later caller shares it. Tests that change the environment call
      get_settings.cache_clear() before and after.

  Settings is a pydantic-settings BaseSettings: each field is filled from the
      upper-cased env var of the same name (image_dir -> IMAGE_DIR) or from a
      .env file in the working directory, and coerced to the field's type.

  validate_secret_key runs once all fields are loaded and decides what an
      empty SECRET_KEY means (see its docstring).

Security notes:
  SECRET_KEY keys the HMAC under which session secrets are stored. Changing it
  invalidates every live session. Keys under 32 characters are refused.

  BCRYPT_ROUNDS must be within bcrypt's legal cost range (4..31). Values below
  the default only make sense in tests.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("wotapi.config")

_PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Card API configuration.

    Every field has a usable default except SECRET_KEY outside debug mode, so
    a bare Settings(debug=True) works without any .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------

    debug: bool = False
    # "" means unset; validate_secret_key replaces it or refuses to start.
    secret_key: str = ""
    app_host: str = "localhost"
    app_port: int = 8080
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = f"sqlite:///{_PROJECT_ROOT / 'wotapi_auth.db'}"
    # One sub-directory per card set (see core.resolver.SET_DIRS).
    image_dir: Path = _PROJECT_ROOT / "res" / "card_images"

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    auth_header: str = "api-auth-key"
    token_lifetime_seconds: int = Field(default=8 * 60 * 60, gt=0)
    bcrypt_rounds: int = Field(default=10, ge=4, le=31)
    login_rate_limit: str = "10/minute"

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Resolve an unset SECRET_KEY and enforce its minimum length.

        With DEBUG=true a random key is generated and a warning logged. Stored
        secrets then no longer match after a restart, so clients have to
        authenticate again.

        Without DEBUG, an unset key is a startup error.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("SECRET_KEY not set; generated a temporary one. Sessions end on restart.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set it in the environment or .env, or set DEBUG=true for local development."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, building it on first use."""
    return Settings()

"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Gatehouse happen here. No module should
call os.getenv() or os.environ.get() directly.

Design patterns used:
  Explicit injection: Settings is constructed once by the process entry point
      (asgi.py via get_settings()) and handed to every component constructor
      (TokenService, PasswordHasher, CredentialStore, AuthService). Nothing in
      auth/ reads a module-level secret.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. A missing signing secret outside debug mode, a malformed
      token TTL, or an out-of-range bcrypt cost all raise at construction, so
      the process never reaches the point of serving traffic.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. HS256 signing relies
  on key entropy -- a short key weakens every issued token.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import re
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("gatehouse.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'gatehouse_auth.db'}"

# "<int><unit>" where unit is s/m/h/d, or a bare integer number of seconds.
_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


class ConfigurationError(ValueError):
    """Raised for configuration that must stop the process at startup."""


def parse_duration(value: str) -> int:
    """Convert a duration string such as "1d", "12h", "30m" or "900" to seconds.

    Raises ConfigurationError for unparseable or non-positive durations.
    """
    match = _DURATION_RE.match(str(value).lower())
    if match is None:
        raise ConfigurationError(f"Invalid duration {value!r}; expected e.g. '1d', '12h', '30m' or seconds.")
    seconds = int(match.group(1)) * _UNIT_SECONDS[match.group(2)]
    if seconds <= 0:
        raise ConfigurationError(f"Duration must be positive, got {value!r}.")
    return seconds


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (given DEBUG=true or an explicit
    secret_key). The model_validator enforces startup-safety rules.
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
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The validator below
    # either generates a dev key or raises, so callers never see "".
    secret_key: str = Field(default="", validation_alias=AliasChoices("secret_key", "jwt_secret"))
    token_ttl: str = "1d"

    # ------------------------------------------------------------------
    # Storage and hashing
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Derived
    # ------------------------------------------------------------------

    @property
    def token_ttl_seconds(self) -> int:
        return parse_duration(self.token_ttl)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_startup_policy(self) -> "Settings":
        """Enforce the signing secret, TTL and hashing cost policies.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Issued tokens will not survive a restart.")
            else:
                raise ConfigurationError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY (or JWT_SECRET) in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ConfigurationError("SECRET_KEY must be at least 32 characters.")
        parse_duration(self.token_ttl)
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ConfigurationError("BCRYPT_ROUNDS must be between 4 and 31.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings singleton.

    Only the process entry point (asgi.py) should call this. Components take
    a Settings argument instead. In tests, build Settings(...) directly.
    """
    return Settings()

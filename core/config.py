"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for authguard happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. fallback_hash_iterations -> FALLBACK_HASH_ITERATIONS).

  @model_validator(mode="after"): DEBUG-conditional SECRET_KEY policy. Dev mode
      generates a key with a warning, production mode refuses to start.

Security notes:
  Hashing cost parameters have hard floors. A deployment can raise them but
  never configure them below the values below -- the fallback path must stay
  in the same strength class as the preferred bcrypt path.

  SECRET_KEY shorter than 32 chars is rejected outright (JWT signing).

Layer rule: core/ is the kernel. This module may not import from api/, web/,
or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authguard.config")

MIN_BCRYPT_ROUNDS = 10
MIN_FALLBACK_ITERATIONS = 100_000
MIN_STYLE_TIMEOUT_MS = 100
MAX_STYLE_TIMEOUT_MS = 30_000

_DEFAULT_REGISTRY_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'data' / 'registry.db'}"


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

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    token_expire_seconds: int = 3600
    login_rate_limit: str = "10/minute"
    # Per-identifier lockout: LOGIN_MAX_FAILURES consecutive failures lock the
    # identifier for LOGIN_LOCKOUT_SECONDS.
    login_max_failures: int = 3
    login_lockout_seconds: int = 60

    # ------------------------------------------------------------------
    # User registry
    # ------------------------------------------------------------------

    registry_db_url: str = _DEFAULT_REGISTRY_URL

    # ------------------------------------------------------------------
    # Credential hashing
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    # PBKDF2-HMAC-SHA256 iterations for the fallback path. 600k matches the
    # current OWASP recommendation for SHA-256.
    fallback_hash_iterations: int = 600_000

    # ------------------------------------------------------------------
    # Styling service
    # ------------------------------------------------------------------

    # Empty string means no external stylesheet: the fallback is always used.
    stylesheet_url: str = ""
    style_probe_selector: str = ".bg-black"
    style_probe_property: str = "background-color"
    style_detect_timeout_ms: int = 2000

    # ------------------------------------------------------------------
    # AI configuration service (optional feature)
    # ------------------------------------------------------------------

    ai_api_key: str = ""
    ai_base_url: str = "https://api.deepseek.com"
    ai_model: str = "deepseek-chat"
    ai_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    # Empty string disables the /api/v1/ops endpoints entirely.
    operator_key: str = ""
    error_log_capacity: int = 1000

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_bcrypt_rounds(cls, value: int) -> int:
        if value < MIN_BCRYPT_ROUNDS or value > 31:
            raise ValueError(f"BCRYPT_ROUNDS must be between {MIN_BCRYPT_ROUNDS} and 31.")
        return value

    @field_validator("fallback_hash_iterations")
    @classmethod
    def validate_fallback_iterations(cls, value: int) -> int:
        if value < MIN_FALLBACK_ITERATIONS:
            raise ValueError(f"FALLBACK_HASH_ITERATIONS must be at least {MIN_FALLBACK_ITERATIONS}.")
        return value

    @field_validator("style_detect_timeout_ms")
    @classmethod
    def validate_style_timeout(cls, value: int) -> int:
        if not MIN_STYLE_TIMEOUT_MS <= value <= MAX_STYLE_TIMEOUT_MS:
            raise ValueError(
                f"STYLE_DETECT_TIMEOUT_MS must be between {MIN_STYLE_TIMEOUT_MS} and {MAX_STYLE_TIMEOUT_MS}."
            )
        return value

    @field_validator("login_max_failures", "login_lockout_seconds")
    @classmethod
    def validate_lockout(cls, value: int) -> int:
        if value < 1:
            raise ValueError("LOGIN_MAX_FAILURES and LOGIN_LOCKOUT_SECONDS must be positive.")
        return value

    @field_validator("error_log_capacity")
    @classmethod
    def validate_error_log_capacity(cls, value: int) -> int:
        if value < 1:
            raise ValueError("ERROR_LOG_CAPACITY must be positive.")
        return value

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
        Production mode: refuse to start if SECRET_KEY is missing.
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

"""
core/config.py -- Centralized trustgate configuration via pydantic-settings.

All environment variable reads for trustgate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead,
or accept a Settings instance from the caller (the auth components take their
tunables as constructor arguments so tests can build them without env vars).

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Implements the SECRET_KEY provisioning
      policy: dev mode generates an ephemeral key and flags it, production mode
      refuses to start without one.

Security notes:
  [K1] SECRET_KEY shorter than 32 chars is rejected outright. Access and
       refresh tokens are both HMAC-signed with this key.

  [K2] Ephemeral keys (DEBUG=true, no SECRET_KEY) are an explicit operational
       mode: secret_key_generated is set and a WARNING is logged. Every token
       issued under an ephemeral key becomes unverifiable after a restart.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or store/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("trustgate.config")


class Settings(BaseSettings):
    """Service settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (DEBUG=true is still required when
    SECRET_KEY is absent).
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
    # below either generates an ephemeral key or raises.
    secret_key: str = ""
    secret_key_generated: bool = Field(default=False, exclude=True)

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    jwt_algorithm: str = "HS256"
    jwt_issuer: str = "trustgate"
    access_audience: str = "trustgate-client"
    refresh_audience: str = "trustgate-refresh"
    access_token_ttl_seconds: int = 24 * 60 * 60
    refresh_token_ttl_seconds: int = 7 * 24 * 60 * 60

    # ------------------------------------------------------------------
    # Password policy
    # ------------------------------------------------------------------

    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    password_min_length: int = 8
    password_require_uppercase: bool = True
    password_require_lowercase: bool = True
    password_require_digit: bool = True
    password_require_special: bool = True
    password_special_chars: str = '!@#$%^&*(),.?":{}|<>'
    password_min_criteria: int = Field(default=4, ge=0, le=5)

    # ------------------------------------------------------------------
    # Login / sessions
    # ------------------------------------------------------------------

    max_login_attempts: int = 5
    login_lockout_seconds: int = 15 * 60
    min_login_duration_ms: int = 200
    min_renew_duration_ms: int = 100
    session_ttl_seconds: int = 24 * 60 * 60
    ip_block_seconds: int = 24 * 60 * 60

    # ------------------------------------------------------------------
    # Honeypot
    # ------------------------------------------------------------------

    honeypot_min_fill_ms: int = 2000
    honeypot_max_strikes: int = 3
    honeypot_strike_ttl_seconds: int = 24 * 60 * 60

    # ------------------------------------------------------------------
    # Anomaly detection
    # ------------------------------------------------------------------

    anomaly_threshold: float = 0.7
    anomaly_min_logins: int = 5
    anomaly_distance_km: float = 500.0
    anomaly_max_speed_kmh: float = 1000.0
    anomaly_hour_window: float = 6.0
    anomaly_history_size: int = 10

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    # Empty string selects the in-memory backend (development and tests).
    database_url: str = ""
    audit_log_limit: int = 1000

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]
    # Empty disables the /admin routes entirely.
    admin_api_key: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY provisioning policy [K1][K2].

        Dev mode (DEBUG=true): generate a random key, flag it as generated and
            log a warning. Tokens will not survive a restart.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing. Failing here keeps the error at boot time
            instead of on the first request that needs to sign a token.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(64)
                self.secret_key_generated = True
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY (ephemeral key mode). "
                    "Issued tokens will not verify after a restart."
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
    """Return the Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()

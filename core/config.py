"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for tenant-iam happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_access_secret -> JWT_ACCESS_SECRET).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode (DEBUG=true) generates missing JWT secrets with a
      warning; production mode refuses to start without them.

Security notes:
  JWT secrets shorter than 32 chars are rejected outright. HS256 signing
  relies on key entropy -- a short key weakens every issued token.

  In production mode a missing secret is a hard startup failure, as is an
  empty issuer (APP_NAME) or a non-positive token lifetime.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
tenancy/, audit/, or mailer/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("tenantiam.config")

_MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
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
    # Doubles as the JWT "iss" claim.
    app_name: str = "tenant-iam"
    database_url: str = "sqlite:///tenant_iam.db"

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # either generates a dev secret or raises, so callers never see "".
    jwt_access_secret: str = ""
    jwt_refresh_secret: str = ""
    jwt_access_expiry_minutes: int = 60

    # ------------------------------------------------------------------
    # Password hashing (Argon2id)
    # ------------------------------------------------------------------

    argon2_time_cost: int = 3
    argon2_memory_cost: int = 64 * 1024  # KiB
    argon2_parallelism: int = 2

    # ------------------------------------------------------------------
    # One-time codes
    # ------------------------------------------------------------------

    otp_length: int = 6
    otp_ttl_seconds: int = 300
    otp_sweep_seconds: int = 600

    # ------------------------------------------------------------------
    # SMTP (optional -- any empty field disables the mailer)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_encryption: str = "tls"  # "tls" (STARTTLS), "ssl", or "none"
    smtp_address: str = ""

    # ------------------------------------------------------------------
    # Audit / access log
    # ------------------------------------------------------------------

    access_log_enabled: bool = True
    audit_log_enabled: bool = True
    log_queue_size: int = 1000

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    login_rate_limit: str = "10/minute"
    otp_rate_limit: str = "5/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_token_settings(self) -> "Settings":
        """Enforce the token signing policy.

        Dev mode (DEBUG=true): auto-generate missing secrets with a warning.
            Tokens will not survive a restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.

        Both modes: reject short secrets, an empty issuer, and a non-positive
            access token lifetime.
        """
        for field_name in ("jwt_access_secret", "jwt_refresh_secret"):
            if getattr(self, field_name):
                continue
            if not self.debug:
                raise ValueError(
                    f"{field_name.upper()} is required in production mode. "
                    "Set it in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
            setattr(self, field_name, secrets.token_hex(32))
            logger.warning("WARNING: Using auto-generated %s. Tokens will not persist across restarts.", field_name.upper())

        if len(self.jwt_access_secret) < _MIN_SECRET_LENGTH or len(self.jwt_refresh_secret) < _MIN_SECRET_LENGTH:
            raise ValueError(f"JWT secrets must be at least {_MIN_SECRET_LENGTH} characters.")
        if not self.app_name.strip():
            raise ValueError("APP_NAME (token issuer) must not be empty.")
        if self.jwt_access_expiry_minutes <= 0:
            raise ValueError("JWT_ACCESS_EXPIRY_MINUTES must be positive.")
        if self.otp_length <= 0 or self.otp_ttl_seconds <= 0:
            raise ValueError("OTP_LENGTH and OTP_TTL_SECONDS must be positive.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()

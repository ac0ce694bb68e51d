"""
core/config.py -- IdentityGate settings, read from the environment once.

Every tunable lives on Settings: the signing secret, code width and
lifetime, the optional attempt limit, SMTP delivery, rate limits, and the
host/CORS allow-lists. Other modules call get_settings(); nothing else reads
os.environ.

How values resolve:
  Env var names are the upper-cased field names (otp_ttl_seconds ->
      OTP_TTL_SECONDS). A .env file in the working directory is read too.
      Keyword arguments to Settings(...) win over both, which is how tests
      build one-off configurations.

  get_settings() is wrapped in lru_cache, so the first call freezes the
      configuration for the life of the process. There is no hot reload.

  Two after-validators reject configurations the service cannot run safely
      with. Failing here stops startup instead of failing the first request.

Signing secret:
  DEBUG=true with no SECRET_KEY generates a throwaway key and warns; tokens
  die with the process. Without DEBUG a missing key is a startup error.
  Either way the key must be at least 32 characters.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, challenges/, or notify/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("identitygate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'identitygate.db'}"


class Settings(BaseSettings):
    """IdentityGate configuration.

    Every field has a default, so Settings() works without a .env file. The
    defaults are development-friendly except SECRET_KEY, which production
    must supply.
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

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    token_expire_seconds: int = 3600
    # Login is refused until the emailed code has been confirmed.
    require_verification: bool = True

    # ------------------------------------------------------------------
    # One-time codes
    # ------------------------------------------------------------------

    otp_digits: int = 5
    # False keeps codes in 10^(n-1)..10^n-1, so no code ever starts with 0.
    otp_leading_zeros: bool = False
    otp_ttl_seconds: int = 600
    # 0 = unlimited retries against one code.
    otp_max_attempts: int = 0
    otp_purge_interval_seconds: int = 300

    # ------------------------------------------------------------------
    # Outbound email (empty smtp_host = delivery disabled, codes are logged
    # in DEBUG only)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    # False = plain connect + STARTTLS (port 587); True = implicit TLS (465).
    smtp_use_ssl: bool = False
    mail_from: str = ""

    background_workers: int = 4

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    otp_rate_limit: str = "20/minute"
    register_rate_limit: str = "5/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Fill in or reject SECRET_KEY.

        Without a key, DEBUG generates one (tokens die with the process) and
        anything else is a startup error. A key under 32 characters is always
        rejected.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("SECRET_KEY not set; generated a throwaway key. Issued tokens end with this process.")
            else:
                raise ValueError(
                    "SECRET_KEY is required unless DEBUG=true. "
                    "Set it in the environment or in .env."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_windows(self) -> "Settings":
        """Reject code widths and lifetimes that make the scheme meaningless."""
        if not 4 <= self.otp_digits <= 10:
            raise ValueError("OTP_DIGITS must be between 4 and 10.")
        if self.otp_ttl_seconds <= 0:
            raise ValueError("OTP_TTL_SECONDS must be positive.")
        if self.token_expire_seconds <= 0:
            raise ValueError("TOKEN_EXPIRE_SECONDS must be positive.")
        if self.otp_max_attempts < 0:
            raise ValueError("OTP_MAX_ATTEMPTS must be 0 (unlimited) or positive.")
        if self.background_workers < 1:
            raise ValueError("BACKGROUND_WORKERS must be at least 1.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, built on first call.

    Tests that need different environment values must call
    get_settings.cache_clear() first.
    """
    return Settings()

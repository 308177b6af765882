"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for SecureCMS happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. The same
      instance is handed to CryptoBox, SessionIssuer and CredentialStore at
      startup; none of them re-read configuration per call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. master_encryption_key -> MASTER_ENCRYPTION_KEY).

  frozen=True: the settings object is immutable once constructed. Code that
      needs different values in tests builds a new Settings(...) explicitly.

Security notes:
  [K1] MASTER_ENCRYPTION_KEY has no default. A missing key is a hard startup
       failure -- sensitive fields must never be encrypted under an empty or
       generated key, since the ciphertext would be unrecoverable later.

  [K2] JWT_SECRET_KEY has no default either, and keys shorter than 32 chars
       are rejected. HS256 signing relies on key entropy.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
audit/, content/ or db/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.errors import ConfigurationError

logger = logging.getLogger("securecms.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'securecms.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Secrets default to the empty string, which is the sentinel for "not
    configured". The model_validator turns a sentinel into a startup error,
    so callers never see an empty secret.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Field encryption
    # ------------------------------------------------------------------

    master_encryption_key: str = ""
    # Off by default: the deterministic fixed-IV mode is the documented
    # behaviour. Turning this on makes existing ciphertexts unreadable.
    encryption_random_iv: bool = False

    # ------------------------------------------------------------------
    # Session tokens
    # ------------------------------------------------------------------

    jwt_secret_key: str = ""
    jwt_issuer: str = "securecms"
    jwt_audience: str = "securecms-clients"
    token_expire_minutes: int = 60
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    default_role: str = "Author"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Refuse to build settings without usable secrets [K1][K2].

        There is no dev-mode fallback: both secrets protect persisted or
        long-lived data (ciphertext at rest, outstanding tokens), so a
        generated key would silently break them on the next restart.
        """
        if not self.master_encryption_key:
            raise ValueError(
                "MASTER_ENCRYPTION_KEY is required. "
                "Set MASTER_ENCRYPTION_KEY in your environment or .env file."
            )
        if not self.jwt_secret_key:
            raise ValueError(
                "JWT_SECRET_KEY is required. " "Set JWT_SECRET_KEY in your environment or .env file."
            )
        if len(self.jwt_secret_key) < 32:
            raise ValueError("JWT_SECRET_KEY must be at least 32 characters.")
        if self.token_expire_minutes <= 0:
            raise ValueError("TOKEN_EXPIRE_MINUTES must be positive.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return self


def load_settings(**overrides) -> Settings:
    """Build a Settings instance, translating validation failures to ConfigurationError.

    overrides are passed straight to Settings() and take precedence over the
    environment. Tests use this to build variant configurations.
    """
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        logger.error("Configuration rejected: %s", exc.errors()[0].get("msg", "invalid settings"))
        raise ConfigurationError(str(exc)) from exc


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Raises ConfigurationError when a required secret is missing. The API
    lifespan calls this before anything else, so a misconfigured process
    never starts serving.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return load_settings()

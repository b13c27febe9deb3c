"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for idcore happen here. No module should call
os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): DEBUG-conditional SECRET_KEY handling. Dev
      mode generates a key with a warning, production refuses to start without
      one.

List-valued settings (schemes, hosts, origins) are plain comma-separated
strings in the environment. The *_list properties split and normalize them so
callers never parse CSV themselves.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. API key hashing
       (HMAC-SHA256) and provider secret encryption both derive from it.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure. A random key would invalidate every stored API key
       hash and every encrypted provider secret on restart.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
audit/, or registry/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("idcore.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'idcore.db'}"


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    trusted_hosts: str = "localhost,127.0.0.1,*.localhost"
    cors_origins: str = "http://localhost,http://localhost:3000,http://127.0.0.1"

    # ------------------------------------------------------------------
    # Redirect URI policy -- seeds the persisted settings row on first use.
    # After that the row is authoritative and is changed through the API.
    # ------------------------------------------------------------------

    client_validation_allowed_schemes: str = "https,http"
    client_validation_allow_http_loopback: bool = True
    client_validation_allowed_hosts: str = ""

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    audit_query_max_take: int = 500
    audit_export_max_rows: int = 10_000

    # ------------------------------------------------------------------
    # Derived
    # ------------------------------------------------------------------

    @property
    def trusted_hosts_list(self) -> list[str]:
        return _split_csv(self.trusted_hosts)

    @property
    def cors_origins_list(self) -> list[str]:
        return _split_csv(self.cors_origins)

    @property
    def allowed_schemes_list(self) -> list[str]:
        return [s.lower() for s in _split_csv(self.client_validation_allowed_schemes)] or ["https", "http"]

    @property
    def allowed_hosts_list(self) -> list[str]:
        return _split_csv(self.client_validation_allowed_hosts)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Issued API keys and encrypted provider secrets will not survive a
            restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. "
                    "API keys and provider secrets will not verify across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.audit_query_max_take < 1 or self.audit_export_max_rows < 1:
            raise ValueError("AUDIT_QUERY_MAX_TAKE and AUDIT_EXPORT_MAX_ROWS must be positive.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()

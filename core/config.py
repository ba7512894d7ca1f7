"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Oynas happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. bcrypt_cost -> BCRYPT_COST). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Used for the DEBUG-conditional bcrypt
      work factor: test and dev setups may lower it, production may not.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or catalog/.
"""

import logging
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("oynas.config")

# bcrypt accepts log2 rounds in this range; gensalt() raises outside it.
_BCRYPT_MIN_COST = 4
_BCRYPT_MAX_COST = 31
_BCRYPT_PRODUCTION_FLOOR = 10


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

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------

    database_url: str = "sqlite:///oynas.db"
    # Upper bound for a single persistence operation. SQLite applies it as the
    # lock wait timeout, PostgreSQL as statement_timeout.
    db_timeout_seconds: float = 3.0

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    # Work factor applied to every bcrypt hash operation.
    bcrypt_cost: int = 12
    authentication_token_ttl_seconds: int = 24 * 60 * 60
    activation_token_ttl_seconds: int = 3 * 24 * 60 * 60

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    rate_limit: str = "2/second"
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_trusted_origins: list[str] = []
    trusted_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_bcrypt_cost(self) -> "Settings":
        """Enforce the password hashing work factor policy.

        Any mode: the cost must lie within bcrypt's accepted range (4..31).

        Dev mode (DEBUG=true): low costs are allowed with a warning so test
            suites can hash passwords in milliseconds.

        Production mode: refuse to start below a cost of 10. A cheap hash
            makes offline brute force of a leaked users table practical.
        """
        if not _BCRYPT_MIN_COST <= self.bcrypt_cost <= _BCRYPT_MAX_COST:
            raise ValueError(f"BCRYPT_COST must be between {_BCRYPT_MIN_COST} and {_BCRYPT_MAX_COST}.")
        if self.bcrypt_cost < _BCRYPT_PRODUCTION_FLOOR:
            if not self.debug:
                raise ValueError(
                    f"BCRYPT_COST below {_BCRYPT_PRODUCTION_FLOOR} is only allowed in development mode. "
                    "Set DEBUG=true to run with a lower cost."
                )
            logger.warning("WARNING: bcrypt cost %d is below the production floor.", self.bcrypt_cost)
        if self.db_timeout_seconds <= 0:
            raise ValueError("DB_TIMEOUT_SECONDS must be positive.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()

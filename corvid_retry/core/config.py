"""Settings for corvid-retry.

Library-wide defaults for retries and circuit breakers.  All settings are
loaded from environment variables with the ``CORVID_RETRY_`` prefix, so a
deployment can tune resilience without code changes.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """corvid-retry configuration.

    All fields can be overridden by environment variables prefixed with
    ``CORVID_RETRY_``.  For example, ``CORVID_RETRY_RETRY_MAX_ATTEMPTS=5``
    raises the default attempt budget.
    """

    # ── Retry ───────────────────────────────────────────────────────
    RETRY_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    RETRY_BASE_DELAY: float = Field(default=1.0, ge=0.0)  # Seconds before the first retry
    RETRY_MAX_DELAY: float = Field(default=30.0, ge=0.0)  # Cap on any single delay
    RETRY_FACTOR: float = Field(default=2.0, ge=0.0)  # Backoff multiplier
    RETRY_JITTER: bool = True  # Full jitter

    # ── Circuit breaker ─────────────────────────────────────────────
    CIRCUIT_BREAKER_THRESHOLD: int = Field(default=5, ge=1)  # Consecutive failures before OPEN
    CIRCUIT_BREAKER_RESET_SECONDS: float = Field(default=60.0, ge=0.0)  # Seconds before HALF_OPEN
    CIRCUIT_BREAKER_HALF_OPEN_SUCCESSES: int = Field(default=1, ge=1)  # Probe successes to close

    # ── Logging ─────────────────────────────────────────────────────
    LOG_LEVEL: str = "WARNING"

    model_config = {
        "env_prefix": "CORVID_RETRY_",
    }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide ``Settings`` instance."""
    return Settings()


def configure_logging(level: str | int | None = None) -> logging.Logger:
    """Set the level of the ``corvid_retry`` logger.

    Defaults to ``Settings.LOG_LEVEL``.  Handlers are left to the
    application; the package only installs a ``NullHandler``.
    """
    if level is None:
        level = get_settings().LOG_LEVEL
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {level}")
        level = resolved
    package_logger = logging.getLogger("corvid_retry")
    package_logger.setLevel(level)
    return package_logger

# ==== APPLICATION SETTINGS CONFIGURATION ==== #

"""
Application settings configuration for trafficguard.

This module provides centralized configuration management using Pydantic Settings
with environment variable loading and validation. Individual resilience components
never read these values themselves; they are handed explicit configuration by
``trafficguard.runtime``.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# ==== MAIN SETTINGS CLASS ==== #


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Provides configuration for the shared Redis store, the rate limiter,
    circuit breakers, retries, the TTL cache, the alert log and observability.
    """

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=True,
        extra='ignore'
    )

    # --► CORE APPLICATION SETTINGS
    APP_ENV: str = "dev"
    SERVICE_NAME: str = "trafficguard"
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # --► REDIS CONFIGURATION (CLOUD OR LOCAL)
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_SOCKET_TIMEOUT_SECONDS: float = 5.0

    # --► RATE LIMITER
    RATE_LIMIT_KEY_PREFIX: str = "rate_limit:"

    # --► CIRCUIT BREAKER DEFAULTS
    CIRCUIT_FAILURE_THRESHOLD: int = Field(default=5, gt=0)
    CIRCUIT_RESET_TIMEOUT_MS: int = Field(default=60_000, gt=0)

    # --► RETRY DEFAULTS
    RETRY_MAX_ATTEMPTS: int = Field(default=3, gt=0)
    RETRY_DELAY_MS: int = Field(default=1_000, ge=0)

    # --► TTL CACHE
    CACHE_DEFAULT_TTL_SECONDS: float = Field(default=300, gt=0)
    CACHE_SWEEP_INTERVAL_SECONDS: float = Field(default=300, gt=0)

    # --► ALERTING
    ALERT_LOG_SIZE: int = Field(default=1000, gt=0)
    ALERT_DEFAULT_HANDLERS: bool = True

    # --► OBSERVABILITY CONFIGURATION
    OTEL_EXPORTER_OTLP_ENDPOINT: str | None = None
    OTEL_EXPORTER_OTLP_HEADERS: str | None = None
    OTEL_SERVICE_NAME: str | None = None


def get_settings() -> Settings:
    """
    Load settings from the environment.

    Returns:
        Settings: Freshly loaded application settings
    """
    return Settings()

"""
Application configuration with environment-specific secrets management.

Supported environment files (loaded in order of precedence):
1. .env.{ENVIRONMENT} (e.g., .env.production, .env.development)
2. .env (fallback)

Required secrets for production:
- APISPORTS_API_KEY (when API-Sports ingestion is enabled)
- REDIS_URL (when the Redis event bus is selected)
"""
import os
import logging
from pathlib import Path
from typing import Optional, Literal
from dotenv import load_dotenv
from pydantic_settings import BaseSettings
from pydantic import ConfigDict

# Project root directory (3 levels up from this file)
PROJECT_ROOT = Path(__file__).parent.parent.parent

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings with environment-specific configuration."""

    # Environment
    ENVIRONMENT: Literal["development", "production", "test"] = "development"

    model_config = ConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"  # Allow extra fields from .env
    )

    # Application
    APP_NAME: str = "Sports Ingestion Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8001

    # Database
    DATABASE_URL: str = "sqlite:///./sports_ingest.db"

    # Event bus
    EVENT_BUS_BACKEND: Literal["memory", "redis"] = "memory"
    REDIS_URL: Optional[str] = None
    EVENT_BUS_STREAM: str = "sports.domain_events"
    EVENT_BUS_RETRY_ON_FAILURE: bool = True
    EVENT_BUS_MAX_RETRIES: int = 3
    EVENT_BUS_RETRY_DELAY: float = 1.0  # seconds, multiplied by attempt number
    EVENT_BUS_ENABLE_STORE: bool = True

    # API-Sports (one key shared by every sport endpoint)
    APISPORTS_API_KEY: str = ""
    APISPORTS_REQUESTS_PER_DAY: int = 100
    APISPORTS_REQUESTS_PER_MINUTE: int = 30

    # TheSportsDB ("3" is the public free-tier key)
    THESPORTSDB_API_KEY: str = "3"
    THESPORTSDB_REQUESTS_PER_DAY: int = 1000
    THESPORTSDB_REQUESTS_PER_MINUTE: int = 30

    # HTTP client policy
    HTTP_TIMEOUT_SECONDS: float = 30.0
    HTTP_MAX_RETRIES: int = 3
    HTTP_RETRY_BASE_DELAY: float = 1.0
    HTTP_RETRY_MAX_DELAY: float = 10.0

    # Circuit breaker policy
    BREAKER_FAIL_MAX: int = 5
    BREAKER_SUCCESS_THRESHOLD: int = 3
    BREAKER_RESET_TIMEOUT: float = 30.0  # seconds

    # ETL
    ETL_ENABLE_APISPORTS: bool = True
    ETL_ENABLE_THESPORTSDB: bool = True
    ETL_BATCH_SIZE: int = 10
    ETL_DELAY_BETWEEN_BATCHES_MS: int = 2000
    ETL_DEDUPLICATE_BY_NAME: bool = True
    ETL_GENERATE_MARKETS: bool = True
    ETL_TIME_SHIFT_STRATEGY: Literal["off", "demo"] = "off"
    ETL_FUZZY_DEDUP: bool = False
    ETL_FUZZY_THRESHOLD: int = 90

    # Batch upsert
    UPSERT_BATCH_SIZE: int = 50

    # Scheduler
    SCHEDULER_ENABLED: bool = False
    SCHEDULER_TIMEZONE: str = "UTC"

    # Rate limiting (sync trigger endpoints)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE: Literal["memory", "redis"] = "memory"
    SYNC_TRIGGER_RATE_LIMIT: str = "10/minute"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT == "production"

    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.ENVIRONMENT == "development"

    def validate_required_secrets(self) -> list[str]:
        """
        Validate that required secrets are set for the current environment.

        Returns:
            List of missing secret names (empty if all present)
        """
        missing = []

        if self.is_production() and self.ETL_ENABLE_APISPORTS and not self.APISPORTS_API_KEY:
            missing.append("APISPORTS_API_KEY")

        # Redis URL is required when the distributed bus is selected
        if self.EVENT_BUS_BACKEND == "redis" and not self.REDIS_URL:
            missing.append("REDIS_URL")

        if self.RATE_LIMIT_ENABLED and self.RATE_LIMIT_STORAGE == "redis" and not self.REDIS_URL and "REDIS_URL" not in missing:
            missing.append("REDIS_URL")

        return missing


def _load_env_file() -> Path:
    """
    Load the appropriate environment file based on ENVIRONMENT variable.

    Loads in order of precedence:
    1. .env.{ENVIRONMENT} (e.g., .env.production, .env.development)
    2. .env (fallback)
    """
    environment = os.getenv("ENVIRONMENT", "development")

    env_file = PROJECT_ROOT / f".env.{environment}"
    if env_file.exists():
        logger.info(f"Loading environment from {env_file.name}")
        load_dotenv(env_file, override=False)
        return env_file

    default_env = PROJECT_ROOT / ".env"
    if default_env.exists():
        logger.info(f"Loading environment from .env (environment: {environment})")
        load_dotenv(default_env, override=False)
        return default_env

    logger.debug(f"No environment file found for '{environment}' (checked .env.{environment}, .env)")
    return default_env


_env_file = _load_env_file()


class _SettingsWithEnvFile(Settings):
    model_config = ConfigDict(
        env_file=str(_env_file),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )


settings = _SettingsWithEnvFile()

# Validate secrets on startup
missing_secrets = settings.validate_required_secrets()
if missing_secrets:
    logger.warning(f"Missing required secrets for {settings.ENVIRONMENT}: {', '.join(missing_secrets)}")
    if settings.is_production():
        raise ValueError(
            f"Cannot start in production with missing secrets: {', '.join(missing_secrets)}. "
            f"Please set these environment variables in .env.production"
        )

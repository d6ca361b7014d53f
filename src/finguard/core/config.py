"""
FinGuard Core Configuration
Security policy and infrastructure settings with environment overrides.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    FinGuard Configuration Settings
    """

    # Application
    APP_NAME: str = "FinGuard"
    VERSION: str = "0.1.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Database
    DATABASE_URL: Optional[str] = Field(default=None, validate_default=True)
    DATABASE_ECHO: bool = False

    # Redis
    REDIS_URL: str = "redis://localhost:6379"
    REDIS_PASSWORD: Optional[str] = None

    # Counter store
    COUNTER_STORE_BACKEND: str = "memory"
    COUNTER_STORE_TIMEOUT_SECONDS: float = 2.0

    # Brute-force protection
    MAX_FAILED_LOGIN_ATTEMPTS: int = 5
    ACCOUNT_LOCKOUT_MINUTES: int = 30
    BRUTE_FORCE_PROTECTION_ENABLED: bool = True
    FAILED_LOGIN_DELAY_SECONDS: float = 2.0

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_REQUESTS_PER_MINUTE: int = 5

    # Account policy
    REQUIRE_EMAIL_VERIFICATION: bool = False
    CLIENT_ROLE_DAILY_CEILING: Decimal = Decimal("10000.00")
    BCRYPT_ROUNDS: int = 12

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    LOG_DIR: Path = Path("logs")
    LOG_TO_FILE: bool = True

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str]) -> str:
        if isinstance(v, str):
            return v
        # Default to SQLite for development
        return "sqlite:///./finguard.db"

    @field_validator("COUNTER_STORE_BACKEND")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        backend = v.strip().lower()
        if backend not in ("memory", "redis"):
            raise ValueError(f"Unknown counter store backend: {v}")
        return backend

    @field_validator(
        "MAX_FAILED_LOGIN_ATTEMPTS",
        "ACCOUNT_LOCKOUT_MINUTES",
        "RATE_LIMIT_REQUESTS_PER_MINUTE",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("FAILED_LOGIN_DELAY_SECONDS", "COUNTER_STORE_TIMEOUT_SECONDS")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: Any) -> str:
        level = str(v).upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return level

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_prefix="FINGUARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance
    """
    return Settings()


# Global settings instance
settings = get_settings()

"""
Member Portal Workflow - Configuration
======================================

Settings come from the environment (or a local .env file) and are
validated by pydantic-settings.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SECRET_KEY = "CHANGE-ME-IN-PRODUCTION-USE-LONG-RANDOM-STRING"


class Settings(BaseSettings):
    """Portal settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    APP_NAME: str = "Member Portal Workflow"
    APP_VERSION: str = "0.1.0"
    ENVIRONMENT: Literal["development", "staging", "production", "test"] = "development"

    # ==========================================================================
    # API
    # ==========================================================================
    API_V1_PREFIX: str = "/api/v1"
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    # Workflow board pagination
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    # ==========================================================================
    # Database (SQLite by default, PostgreSQL via asyncpg)
    # ==========================================================================
    DATABASE_URL: str = "sqlite+aiosqlite:///./portal.db"
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_ECHO: bool = False

    # ==========================================================================
    # Authentication
    # ==========================================================================
    SECRET_KEY: str = DEFAULT_SECRET_KEY
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    PASSWORD_MIN_LENGTH: int = 8

    # ==========================================================================
    # Workflow notifications (status changes, milestones)
    # ==========================================================================
    NOTIFICATIONS_ENABLED: bool = False
    NOTIFICATIONS_WEBHOOK_URL: Optional[str] = None
    NOTIFICATIONS_API_KEY: Optional[str] = None
    NOTIFICATIONS_TIMEOUT_SECONDS: float = 10.0

    @model_validator(mode="after")
    def check_production_secret(self) -> "Settings":
        if self.ENVIRONMENT == "production" and self.SECRET_KEY == DEFAULT_SECRET_KEY:
            raise ValueError("SECRET_KEY must be set in production")
        return self

    # ==========================================================================
    # Computed Properties
    # ==========================================================================
    @computed_field  # type: ignore[misc]
    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @computed_field  # type: ignore[misc]
    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()

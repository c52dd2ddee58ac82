"""
ShelVey Orchestrator - Configuration
=====================================

Settings are read from the environment (or .env) by pydantic-settings.
Escalation timeouts, handler identities and outbound service URLs are all
configurable so deployments and tests can shorten or redirect them.
"""

from datetime import timedelta
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Orchestrator settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Service
    # ==========================================================================
    APP_NAME: str = "ShelVey Orchestrator"
    APP_VERSION: str = "0.1.0"
    ENVIRONMENT: Literal["development", "staging", "production", "test"] = "development"
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # ==========================================================================
    # Storage (SQLite by default, PostgreSQL via asyncpg)
    # ==========================================================================
    DATABASE_URL: str = "sqlite+aiosqlite:///./shelvey.db"
    DATABASE_POOL_SIZE: int = Field(5, ge=1)
    DATABASE_MAX_OVERFLOW: int = Field(10, ge=0)
    DATABASE_ECHO: bool = False

    # ==========================================================================
    # Escalation path
    # ==========================================================================
    # Level 1 → 2 after the manager has been silent this long, 2 → 3 likewise
    MANAGER_TIMEOUT_SECONDS: int = Field(5 * 60, gt=0)
    CEO_TIMEOUT_SECONDS: int = Field(10 * 60, gt=0)

    SENIOR_AGENT_ID: str = "ceo-agent"
    SENIOR_AGENT_NAME: str = "CEO Agent"
    HUMAN_HANDLER_ID: str = "human_user"

    # In-process sweep; leave off when an external cron calls check_timeouts
    TIMEOUT_SWEEP_ENABLED: bool = False
    TIMEOUT_SWEEP_INTERVAL_SECONDS: int = Field(60, gt=0)

    # ==========================================================================
    # Outbound effects
    # ==========================================================================
    # Unset URL = logging-only delivery for that effect kind
    WORK_EXECUTOR_URL: Optional[str] = None
    NOTIFICATION_SERVICE_URL: Optional[str] = None
    EMAIL_SERVICE_URL: Optional[str] = None
    SERVICE_API_KEY: Optional[str] = None
    HTTP_TIMEOUT_SECONDS: float = Field(10.0, gt=0)
    EFFECT_MAX_ATTEMPTS: int = Field(5, ge=1)
    # A SENDING claim older than this is taken to be abandoned and re-claimed
    EFFECT_CLAIM_TIMEOUT_SECONDS: int = Field(5 * 60, gt=0)

    @model_validator(mode="after")
    def check_sweep_interval(self) -> "Settings":
        if self.TIMEOUT_SWEEP_INTERVAL_SECONDS > self.MANAGER_TIMEOUT_SECONDS:
            raise ValueError(
                "TIMEOUT_SWEEP_INTERVAL_SECONDS must not exceed MANAGER_TIMEOUT_SECONDS"
            )
        return self

    # ==========================================================================
    # Derived
    # ==========================================================================
    @property
    def manager_timeout(self) -> timedelta:
        return timedelta(seconds=self.MANAGER_TIMEOUT_SECONDS)

    @property
    def ceo_timeout(self) -> timedelta:
        return timedelta(seconds=self.CEO_TIMEOUT_SECONDS)

    @property
    def effect_claim_timeout(self) -> timedelta:
        return timedelta(seconds=self.EFFECT_CLAIM_TIMEOUT_SECONDS)

    @computed_field  # type: ignore[misc]
    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

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
    return Settings()


settings = get_settings()

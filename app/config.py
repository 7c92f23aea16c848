"""
Application configuration using Pydantic Settings
"""
from decimal import Decimal
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.domain.planning_settings import PlanningSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables
    """
    # Database
    DATABASE_URL: str = "sqlite:///./savings.db"

    # Application
    DEBUG: bool = False

    # Monthly planning
    BUDGET_CURRENCY: str = "USD"
    MONTHLY_BUDGET: Decimal | None = None
    PAYMENT_DAY: int = 1  # 1..28, avoids short months
    SCHEDULE_HORIZON_MONTHS: int = 120

    # Execution tracking / automation
    UNDO_GRACE_PERIOD_HOURS: int = 24  # 0 disables undo
    AUTO_START_ENABLED: bool = False
    AUTO_COMPLETE_ENABLED: bool = False
    AUTOMATION_HOUR: int = 8
    AUTOMATION_MAX_ATTEMPTS: int = 3

    # Exchange rates
    COINGECKO_BASE_URL: str = "https://api.coingecko.com/api/v3"
    COINGECKO_API_KEY: str | None = None
    RATE_CACHE_TTL_SECONDS: int = 300
    RATE_REQUEST_TIMEOUT_SECONDS: int = 10

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @field_validator("PAYMENT_DAY")
    @classmethod
    def clamp_payment_day(cls, v: int) -> int:
        return max(1, min(28, v))

    @field_validator("UNDO_GRACE_PERIOD_HOURS")
    @classmethod
    def clamp_grace_period(cls, v: int) -> int:
        return max(0, min(168, v))

    @field_validator("BUDGET_CURRENCY")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.strip().upper()

    def get_sqlalchemy_url(self) -> str:
        """
        Convert DATABASE_URL to SQLAlchemy format (postgresql+psycopg://)
        """
        url = self.DATABASE_URL
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+psycopg://", 1)
        return url

    def planning_settings(self) -> PlanningSettings:
        """
        Frozen planning configuration passed explicitly to the planners,
        the execution service and the automation service.
        """
        return PlanningSettings(
            budget_currency=self.BUDGET_CURRENCY,
            monthly_budget=self.MONTHLY_BUDGET,
            payment_day=self.PAYMENT_DAY,
            schedule_horizon_months=self.SCHEDULE_HORIZON_MONTHS,
            undo_grace_period_hours=self.UNDO_GRACE_PERIOD_HOURS,
            auto_start_enabled=self.AUTO_START_ENABLED,
            auto_complete_enabled=self.AUTO_COMPLETE_ENABLED,
            automation_max_attempts=self.AUTOMATION_MAX_ATTEMPTS,
        )


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings instance (singleton)
    """
    return Settings()

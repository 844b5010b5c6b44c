# backend/app/core/config.py
from decimal import Decimal
import logging
import os
from pathlib import Path
from typing import Optional, Set

from dotenv import load_dotenv
from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    BRAND_NAME,
    CANCELLATION_WINDOW_HOURS,
    DEFAULT_CURRENCY,
    DEFAULT_FEE_PERCENTAGE,
    DEFAULT_MINIMUM_FEE,
    DEFAULT_TEACHER_PAYOUT_WAIT_HOURS,
    PAYOUT_COMPLETION_DELAY_MINUTES,
    REFUND_SETTLEMENT_DELAY_HOURS,
)


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


PROD_SITE_MODES: Set[str] = {"prod", "production", "live"}


def _classify_environment(raw_site_mode: str | None) -> str:
    normalized = (raw_site_mode or "").strip().lower()
    return "production" if normalized in PROD_SITE_MODES else "development"


class Settings(BaseSettings):
    app_name: str = Field(default=f"{BRAND_NAME} Settlement", description="Service display name")

    # Environment (derived from SITE_MODE)
    environment: str = _classify_environment(os.getenv("SITE_MODE", "local"))
    is_testing: bool = False  # Set to True when running tests

    database_url: str = Field(
        default="sqlite:///./settlement.db",
        alias="DATABASE_URL",
        description="SQLAlchemy URL for the settlement database",
    )
    redis_url: Optional[str] = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis URL used by the Celery broker and the ledger read cache",
    )

    # Money
    default_currency: str = Field(default=DEFAULT_CURRENCY, description="ISO currency for payments")
    default_fee_percentage: Decimal = Field(
        default=DEFAULT_FEE_PERCENTAGE,
        description="Platform fee percentage when no fee policy is active",
    )
    default_minimum_fee: Decimal = Field(
        default=DEFAULT_MINIMUM_FEE,
        description="Minimum platform fee when no fee policy is active",
    )
    default_teacher_payout_wait_hours: int = Field(
        default=DEFAULT_TEACHER_PAYOUT_WAIT_HOURS,
        description="Hours after class end before a teacher payout is released",
    )

    # Settlement timing
    cancellation_window_hours: int = Field(
        default=CANCELLATION_WINDOW_HOURS,
        description="Bookings cannot be cancelled this many hours before start",
    )
    refund_settlement_delay_hours: int = Field(
        default=REFUND_SETTLEMENT_DELAY_HOURS,
        description="Deferred settlement delay applied to every refund",
    )
    payout_completion_delay_minutes: int = Field(
        default=PAYOUT_COMPLETION_DELAY_MINUTES,
        description="Delay between payout release and completion check",
    )

    # Sweeps
    workflow_sweep_interval_minutes: int = Field(
        default=5, description="Beat interval for the workflow settlement sweep"
    )
    payout_sweep_interval_minutes: int = Field(
        default=15, description="Beat interval for the teacher payout batch"
    )
    sweep_batch_size: int = Field(default=500, description="Max rows handled per sweep")
    workflow_max_processing_errors: int = Field(
        default=5, description="Errors after which a workflow is failed and escalated"
    )

    # Ledger read cache
    ledger_cache_enabled: bool = Field(default=True, description="Cache ledger list reads in Redis")
    ledger_cache_ttl_seconds: int = Field(default=300, description="TTL for cached ledger reads")

    # Use ConfigDict instead of Config class (Pydantic V2 style)
    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator(
        "default_teacher_payout_wait_hours",
        "cancellation_window_hours",
        "refund_settlement_delay_hours",
        "payout_completion_delay_minutes",
        "workflow_sweep_interval_minutes",
        "payout_sweep_interval_minutes",
    )
    @classmethod
    def _non_negative_window(cls, value: int, info: ValidationInfo) -> int:
        if value < 0:
            raise ValueError(f"{info.field_name} must be >= 0")
        return value

    @field_validator("default_fee_percentage", "default_minimum_fee")
    @classmethod
    def _non_negative_money(cls, value: Decimal, info: ValidationInfo) -> Decimal:
        if value < 0:
            raise ValueError(f"{info.field_name} must be >= 0")
        return value

    def get_database_url(self) -> str:
        """Get the database URL for the current context."""
        return self.database_url

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


settings = Settings()
logger.info(
    "[CONFIG] Settlement configuration: environment=%s cancellation_window=%sh refund_delay=%sh",
    settings.environment,
    settings.cancellation_window_hours,
    settings.refund_settlement_delay_hours,
)

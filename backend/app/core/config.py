# backend/app/core/config.py
from decimal import Decimal
import logging
import os
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import DEFAULT_CURRENCY, UNLIMITED_CAPACITY_SENTINEL


logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


class Settings(BaseSettings):
    environment: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        description="Deployment environment name",
    )

    database_url: str = Field(
        default="sqlite:///./skischool.db",
        description="SQLAlchemy database URL",
    )
    database_echo: bool = Field(default=False, description="Echo SQL statements to the log")

    redis_url: Optional[str] = Field(
        default=None,
        description="Redis URL for the shared cache; empty means in-memory cache only",
    )

    # Availability engine
    availability_cache_ttl_seconds: int = Field(
        default=30,
        ge=1,
        description="TTL for cached (subgroup, date) availability entries",
    )
    course_interval_cache_ttl_seconds: int = Field(
        default=3600,
        ge=1,
        description="TTL for cached course interval lookups",
    )
    unlimited_capacity_sentinel: int = Field(
        default=UNLIMITED_CAPACITY_SENTINEL,
        ge=1,
        description="Slot count reported to callers for subgroups without a capacity limit",
    )

    # Pricing
    default_cancellation_insurance_percent: Decimal = Field(
        default=Decimal("0.10"),
        ge=0,
        le=1,
        description="Cancellation insurance rate used when a school has no explicit setting",
    )
    default_currency: str = Field(
        default=DEFAULT_CURRENCY,
        min_length=3,
        max_length=3,
        description="Currency used when a school or booking does not declare one",
    )
    financial_tolerance_override: Optional[Decimal] = Field(
        default=None,
        ge=0,
        description="Overrides the currency-derived epsilon used by financial reconciliation",
    )

    slow_operation_threshold_seconds: float = Field(
        default=1.0,
        description="Service operations slower than this are logged as warnings",
    )

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("default_currency", mode="before")
    @classmethod
    def _normalize_currency(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("redis_url", mode="before")
    @classmethod
    def _blank_redis_url_is_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value


settings = Settings()

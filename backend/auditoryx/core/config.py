# backend/auditoryx/core/config.py
import logging
import os
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import pytz

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    environment: Literal["development", "test", "staging", "production"] = Field(
        default="development",
        alias="ENVIRONMENT",
        description="Deployment environment name",
    )

    # Persistence
    database_url: str = Field(
        default="sqlite+pysqlite:///./auditoryx.db",
        alias="DATABASE_URL",
        description="SQLAlchemy URL for the ledger database",
    )
    database_pool_size: int = Field(default=5, description="Connection pool size")
    database_max_overflow: int = Field(default=5, description="Extra connections under load")
    database_pool_timeout: int = Field(
        default=2, description="Seconds to wait for a pooled connection before failing"
    )

    # Redis (Celery broker + booking mutex)
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        alias="REDIS_URL",
        description="Redis URL used for Celery and distributed locks",
    )
    lock_namespace: str = Field(
        default="auditoryx",
        description="Key prefix for Redis locks",
    )
    booking_lock_ttl_seconds: int = Field(
        default=90,
        description="TTL for the per-booking refund mutex",
    )

    # Payments
    stripe_secret_key: SecretStr = Field(
        default=SecretStr(""),
        alias="STRIPE_SECRET_KEY",
        description="Stripe secret key used for refunds",
    )
    stripe_timeout_seconds: int = Field(
        default=20,
        description="Network timeout applied to Stripe API calls",
    )

    # Ledger behaviour
    default_accounting_timezone: str = Field(
        default="UTC",
        description="IANA timezone used for XP accounting days when a user has none",
    )
    unpaid_booking_expiry_hours: int = Field(
        default=24,
        description="Hours after which unpaid pending/confirmed bookings are expired",
    )
    ledger_conflict_max_attempts: int = Field(
        default=3,
        description="Attempts for optimistic ledger updates before surfacing a conflict",
    )
    conflict_retry_after_seconds: int = Field(
        default=2,
        description="Retry-After hint returned when ledger contention persists",
    )

    # API
    strict_schemas: bool = Field(
        default=False,
        alias="STRICT_SCHEMAS",
        description="Serve error bodies as application/problem+json",
    )

    # Outbox
    outbox_batch_size: int = Field(
        default=200,
        description="Maximum pending outbox events scheduled per dispatch run",
    )

    # Use ConfigDict instead of Config class (Pydantic V2 style)
    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("default_accounting_timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            pytz.timezone(value)
        except pytz.UnknownTimeZoneError as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @field_validator("ledger_conflict_max_attempts")
    @classmethod
    def _validate_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("ledger_conflict_max_attempts must be at least 1")
        return value

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


settings = Settings()

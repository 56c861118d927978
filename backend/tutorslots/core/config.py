# backend/tutorslots/core/config.py
import datetime
import logging
import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..utils.time_helpers import string_to_time


logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


def _parse_wall_clock(value: object) -> object:
    if isinstance(value, str):
        return string_to_time(value)
    return value


class Settings(BaseSettings):
    environment: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        description="Deployment environment name",
    )
    is_testing: bool = Field(default=False, description="Set by the test suite")

    # Storage
    database_url: str = Field(
        default="sqlite:///./tutorslots.db",
        description="SQLAlchemy URL for the slot store (Postgres in production)",
    )
    database_echo: bool = False
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL used by Celery and the sweep mutex",
    )

    # Slot lifecycle
    default_assignment_ttl_hours: int = Field(default=24, ge=1, le=168)
    min_slot_minutes: int = Field(default=15, ge=5)
    max_slot_minutes: int = Field(default=480, le=24 * 60)

    # Conflict detection / resolution
    conflict_lookahead_days: int = Field(default=28, ge=1)
    resolver_step_minutes: int = Field(default=15, ge=5)
    resolver_min_adjustment_minutes: int = 15
    resolver_default_max_adjustment_minutes: int = 60
    resolver_max_adjustment_limit_minutes: int = 120
    resolver_max_candidates: int = Field(default=64, ge=1)
    schedule_day_start: datetime.time = datetime.time(6, 0)
    schedule_day_end: datetime.time = datetime.time(22, 0)

    # Recurring expansion
    max_recurring_weeks: int = Field(default=52, ge=1)
    max_recurring_patterns: int = Field(default=20, ge=1)

    # Waitlist
    waitlist_notify_ttl_hours: int = Field(default=24, ge=1)
    waitlist_max_extend_hours: int = Field(default=168, ge=1)

    # Background sweeps
    waitlist_sweep_interval_seconds: int = 60
    assignment_sweep_interval_seconds: int = 300
    sweep_lock_ttl_seconds: int = 55

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("schedule_day_start", "schedule_day_end", mode="before")
    @classmethod
    def _coerce_wall_clock(cls, value: object) -> object:
        return _parse_wall_clock(value)

    @field_validator("is_testing", "database_echo", mode="before")
    @classmethod
    def _coerce_bool(cls, value: object) -> bool | object:
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return value

    @model_validator(mode="after")
    def _check_bounds(self) -> "Settings":
        if self.schedule_day_end <= self.schedule_day_start:
            raise ValueError("SCHEDULE_DAY_END must be after SCHEDULE_DAY_START")
        if self.min_slot_minutes > self.max_slot_minutes:
            raise ValueError("MIN_SLOT_MINUTES cannot exceed MAX_SLOT_MINUTES")
        if self.resolver_default_max_adjustment_minutes > self.resolver_max_adjustment_limit_minutes:
            raise ValueError("Default resolver adjustment exceeds the configured limit")
        return self


settings = Settings()

"""Application configuration via Pydantic settings."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration object loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "Clinic Booking API"
    debug: bool = False
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    database_url: str = Field(..., alias="DATABASE_URL")
    redis_url: str | None = Field(None, alias="REDIS_URL")
    job_queue_key: str = Field("booking:jobs", alias="JOB_QUEUE_KEY")

    jwt_secret: str = Field(..., alias="JWT_SECRET")
    jwt_algorithm: str = "HS256"
    jwt_expires_in_minutes: int = Field(60 * 24, alias="JWT_EXPIRES_IN")

    default_timezone: str = Field("UTC", alias="DEFAULT_TIMEZONE")
    min_advance_booking_hours: int = Field(2, alias="MIN_ADVANCE_BOOKING_HOURS")
    pre_confirmation_ttl_hours: int = Field(24, alias="PRE_CONFIRMATION_TTL_HOURS")
    refund_window_hours: int = Field(24, alias="REFUND_WINDOW_HOURS")
    default_credits_per_appointment: int = Field(1, alias="DEFAULT_CREDITS_PER_APPOINTMENT")


@lru_cache(1)
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return Settings()


settings = get_settings()

"""Configuration management for the dispatch engine."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # API Configuration
    api_port: int = Field(default=8000, description="API server port")
    api_host: str = Field(default="0.0.0.0", description="API server host")

    # Environment
    environment: Literal["development", "staging", "production"] = Field(
        default="development"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "text"] = Field(default="json", description="Log format")

    # Scheduling
    driver_buffer_minutes: int = Field(
        default=30, ge=0, description="Turnaround buffer around a driver's proposed slot"
    )
    vehicle_buffer_minutes: int = Field(
        default=15, ge=0, description="Turnaround buffer around a vehicle's proposed slot"
    )
    default_duration_minutes: int = Field(
        default=60, ge=1, description="Duration assumed for deliveries without an estimate"
    )
    anchor_fallback: Literal["created_at", "skip"] = Field(
        default="created_at",
        description="How deliveries without a scheduled pickup are anchored in time",
    )

    # Working day
    workday_start_hour: int = Field(default=8, ge=0, le=23, description="Working day start (UTC)")
    workday_end_hour: int = Field(default=20, ge=1, le=24, description="Working day end (UTC)")
    min_free_slot_minutes: int = Field(
        default=30, ge=1, description="Shortest free slot worth reporting"
    )
    max_deliveries_per_day: int = Field(
        default=12, ge=1, description="Daily workload ceiling per driver"
    )

    # Live relay
    relay_queue_size: int = Field(
        default=100, ge=1, description="Pending events buffered per subscriber"
    )
    transport_backend: Literal["memory", "redis"] = Field(
        default="memory", description="Pub/sub transport used by the relay"
    )
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis URL")
    redis_channel_prefix: str = Field(default="fleet", description="Redis channel prefix")

    # Bootstrapping
    seed_sample_data: bool = Field(
        default=False, description="Load a sample fleet on startup"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v_upper


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

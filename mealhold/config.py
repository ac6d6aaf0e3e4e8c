"""Configuration management for the reservation service."""

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

    # Redis Configuration
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis URL")

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

    # Reservation Settings
    hold_duration_seconds: int = Field(
        default=900, description="How long a reservation holds a slot"
    )
    default_dining_minutes: int = Field(
        default=30, description="Dining window when the store sets none"
    )
    tick_interval_seconds: float = Field(
        default=1.0, description="Countdown recomputation interval"
    )
    engine_idle_seconds: float = Field(
        default=300.0, description="Unused engines without a reservation are stopped after this"
    )
    urgent_threshold_seconds: int = Field(
        default=300, description="Remaining hold time flagged as urgent"
    )

    # Inventory Ledger Settings
    ledger_max_retries: int = Field(
        default=50, description="Optimistic update attempts before giving up"
    )
    ledger_backoff_base: float = Field(
        default=0.005, description="Initial conflict backoff in seconds"
    )
    ledger_backoff_max: float = Field(
        default=0.2, description="Upper bound for conflict backoff in seconds"
    )

    # Expiry Sweep Settings
    expiry_sweep_enabled: bool = Field(
        default=False, description="Expire lapsed holds server-side"
    )
    expiry_sweep_interval_seconds: float = Field(
        default=30.0, description="Seconds between expiry sweeps"
    )
    expiry_sweep_grace_seconds: int = Field(
        default=60, description="Grace period past expiresAt before sweeping"
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

    @property
    def hold_duration_ms(self) -> int:
        """Hold duration in milliseconds."""
        return self.hold_duration_seconds * 1000


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

"""Configuration management for the clinic admin console."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Clinic REST API
    api_base_url: str = Field(
        default="http://localhost:5074/api",
        description="Base URL of the clinic backend API",
    )
    api_token: str = Field(
        default="",
        description="Bearer token for the admin API",
    )
    api_timeout: int = Field(
        default=30,
        description="Timeout in seconds for API requests",
    )
    api_max_retries: int = Field(
        default=3,
        description="Max attempts for idempotent reads that time out",
    )

    # Status transitions
    transition_cooldown_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Window during which an identical committed transition is suppressed",
    )
    follow_up_default_hour: int = Field(
        default=9,
        ge=0,
        le=23,
        description="Hour used for a follow-up visit when no time is given",
    )
    history_lookup_limit: int = Field(
        default=50,
        gt=0,
        description="Page size used when searching a pet's medical history",
    )

    # Telemetry
    telemetry_enabled: bool = Field(
        default=True,
        description="Write transition events to JSON Lines",
    )
    telemetry_log_dir: Path = Field(
        default=Path("./data/logs"),
        description="Directory for transition telemetry files",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")

    @property
    def has_api_token(self) -> bool:
        """Check if an API token is configured."""
        return bool(self.api_token)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

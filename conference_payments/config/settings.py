"""Application settings using Pydantic for environment-based configuration."""
from datetime import timedelta
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application Configuration
    app_name: str = Field(default="conference-payments", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")

    # Payment Lifecycle
    pending_timeout_hours: float = Field(
        default=24.0,
        gt=0,
        description="Hours a registration may stay pending before reverting to unpaid",
    )
    default_currency: str = Field(default="USD", description="Currency for new payment records")
    gateway_reference_prefix: str = Field(
        default="gw_", description="Prefix for generated gateway references"
    )

    # Ledger Storage
    ledger_backend: Literal["memory", "sql"] = Field(
        default="memory", description="Ledger store implementation"
    )
    database_url: str = Field(
        default="sqlite:///:memory:", description="SQLAlchemy URL for the sql backend"
    )
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Audit Trail
    audit_log_path: Optional[str] = Field(
        default=None, description="Append audit events to this JSON-lines file"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("default_currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        """Currency must be a 3-letter code."""
        code = v.strip().upper()
        if len(code) != 3 or not code.isalpha():
            raise ValueError("Currency must be 3-letter code")
        return code

    @property
    def pending_timeout(self) -> timedelta:
        """Pending-confirmation window as a timedelta."""
        return timedelta(hours=self.pending_timeout_hours)

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()

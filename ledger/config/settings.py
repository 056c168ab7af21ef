"""
Configuration Management for the Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The pure calculators take their thresholds as arguments. The flows and
queries read settings, and the account models read the defaults new
records are created with, so every tunable is visible in one module.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Ledger engine behaviour: alerts, due-date windows, conflict retries."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    default_currency: str = Field(
        default="INR",
        min_length=3,
        max_length=3,
        description="Currency assigned to accounts created without one"
    )

    # Credit insights
    default_alert_threshold: int = Field(
        default=30,
        ge=0,
        le=100,
        description="Utilization percent at which a card turns 'warning'"
    )
    upcoming_due_window_days: int = Field(
        default=7,
        ge=0,
        le=31,
        description="Cards due within this many days are flagged as upcoming"
    )

    # Optimistic concurrency
    max_conflict_retries: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Attempts per mutation before a conflict is surfaced"
    )
    conflict_backoff_multiplier: float = Field(
        default=0.05,
        ge=0.0,
        description="Exponential backoff multiplier between attempts (seconds)"
    )
    conflict_backoff_max_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Upper bound on a single backoff sleep"
    )

    @field_validator('default_currency')
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        """Currency codes are stored upper-case."""
        return v.upper()


class LoggingSettings(BaseSettings):
    """Structured logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    level: str = Field(
        default="INFO",
        description="Standard library log level name"
    )
    json_output: bool = Field(
        default=True,
        description="Render log lines as JSON (False = console renderer)"
    )

    @field_validator('level')
    @classmethod
    def validate_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"Unknown log level: {v}. Allowed: {sorted(allowed)}")
        return v.upper()


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def logging(self) -> LoggingSettings:
        return LoggingSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, with an "<name>_error"
    entry describing each failure. Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("ledger", "logging"):
        try:
            getattr(settings, name)
            results[name] = True
        except ValueError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results

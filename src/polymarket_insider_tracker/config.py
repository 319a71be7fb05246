"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Polymarket Insider Tracker engine, loading and validating environment
variables at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


class ProfilerSettings(BaseSettings):
    """Wallet behavior profiler configuration."""

    model_config = SettingsConfigDict(env_prefix="PROFILER_", extra="ignore")

    min_trades: int = Field(
        default=3,
        alias="PROFILER_MIN_TRADES",
        ge=1,
        le=10_000,
        description="Minimum trades before a behavior profile is built",
    )
    cache_ttl_seconds: int = Field(
        default=300,
        alias="PROFILER_CACHE_TTL_SECONDS",
        ge=1,
        le=7 * 24 * 3600,
        description="How long a cached profile stays valid",
    )
    max_cached_profiles: int = Field(
        default=1000,
        alias="PROFILER_MAX_CACHED_PROFILES",
        ge=1,
        le=1_000_000,
        description="Maximum profiles kept in memory (oldest evicted first)",
    )
    large_trade_usd: float = Field(
        default=1000.0,
        alias="PROFILER_LARGE_TRADE_USD",
        gt=0.0,
        description="Trade size (USD) counted as a large trade",
    )
    whale_trade_usd: float = Field(
        default=10_000.0,
        alias="PROFILER_WHALE_TRADE_USD",
        gt=0.0,
        description="Trade size (USD) counted as a whale trade",
    )
    high_suspicion_threshold: int = Field(
        default=70,
        alias="PROFILER_HIGH_SUSPICION_THRESHOLD",
        ge=0,
        le=100,
        description="Profile suspicion score that triggers the highSuspicion event",
    )

    @model_validator(mode="after")
    def validate_trade_sizes(self) -> ProfilerSettings:
        if self.whale_trade_usd < self.large_trade_usd:
            raise ValueError("PROFILER_WHALE_TRADE_USD must be >= PROFILER_LARGE_TRADE_USD")
        return self


class ConcentrationSettings(BaseSettings):
    """Category concentration analyzer configuration."""

    model_config = SettingsConfigDict(env_prefix="CONCENTRATION_", extra="ignore")

    cache_ttl_seconds: int = Field(
        default=30 * 60,
        alias="CONCENTRATION_CACHE_TTL_SECONDS",
        ge=1,
        le=7 * 24 * 3600,
        description="How long a cached concentration result stays valid",
    )
    max_cache_size: int = Field(
        default=5000,
        alias="CONCENTRATION_MAX_CACHE_SIZE",
        ge=1,
        le=1_000_000,
        description="Maximum cached concentration results",
    )
    min_trades: int = Field(
        default=5,
        alias="CONCENTRATION_MIN_TRADES",
        ge=1,
        le=10_000,
        description="Minimum trades in the window for a non-empty analysis",
    )
    time_window_days: float = Field(
        default=90.0,
        alias="CONCENTRATION_TIME_WINDOW_DAYS",
        gt=0.0,
        le=3650.0,
        description="Only trades this recent are analyzed (days)",
    )
    specialist_threshold: float = Field(
        default=50.0,
        alias="CONCENTRATION_SPECIALIST_THRESHOLD",
        ge=0.0,
        le=100.0,
        description="Primary-category trade share (percent) for a specialist",
    )


class ScorerSettings(BaseSettings):
    """Composite suspicion scorer configuration."""

    model_config = SettingsConfigDict(env_prefix="SCORER_", extra="ignore")

    min_signals: int = Field(
        default=3,
        alias="SCORER_MIN_SIGNALS",
        ge=0,
        le=10,
        description="Minimum available signals for a non-zero composite score",
    )
    cache_ttl_seconds: int = Field(
        default=300,
        alias="SCORER_CACHE_TTL_SECONDS",
        ge=1,
        le=7 * 24 * 3600,
        description="How long a cached composite score stays valid",
    )
    max_cache_size: int = Field(
        default=1000,
        alias="SCORER_MAX_CACHE_SIZE",
        ge=1,
        le=1_000_000,
        description="Maximum cached composite scores",
    )
    flag_threshold: float = Field(
        default=50.0,
        alias="SCORER_FLAG_THRESHOLD",
        ge=0.0,
        le=100.0,
        description="Composite score at which a wallet is flagged",
    )
    insider_threshold: float = Field(
        default=70.0,
        alias="SCORER_INSIDER_THRESHOLD",
        ge=0.0,
        le=100.0,
        description="Composite score required for the potential-insider verdict",
    )
    insider_signal_threshold: float = Field(
        default=70.0,
        alias="SCORER_INSIDER_SIGNAL_THRESHOLD",
        ge=0.0,
        le=100.0,
        description="Raw score a network/performance signal needs to back the insider verdict",
    )


class ThresholdSettings(BaseSettings):
    """Dynamic threshold adjuster configuration."""

    model_config = SettingsConfigDict(env_prefix="THRESHOLDS_", extra="ignore")

    auto_adjust_enabled: bool = Field(
        default=True,
        alias="THRESHOLDS_AUTO_ADJUST_ENABLED",
        description="Adjust thresholds automatically on market condition updates",
    )
    min_adjustment_interval_seconds: int = Field(
        default=300,
        alias="THRESHOLDS_MIN_ADJUSTMENT_INTERVAL_SECONDS",
        ge=0,
        le=7 * 24 * 3600,
        description="Cooldown between automatic adjustments of one threshold type",
    )
    max_total_adjustment_percent: float = Field(
        default=50.0,
        alias="THRESHOLDS_MAX_TOTAL_ADJUSTMENT_PERCENT",
        ge=0.0,
        le=100.0,
        description="Maximum drift of auto-adjusted thresholds from their defaults",
    )
    regime_sensitivity: float = Field(
        default=0.7,
        alias="THRESHOLDS_REGIME_SENSITIVITY",
        ge=0.0,
        le=1.0,
        description="Confidence reported on detected regime changes",
    )
    historical_window_minutes: int = Field(
        default=1440,
        alias="THRESHOLDS_HISTORICAL_WINDOW_MINUTES",
        ge=1,
        le=30 * 1440,
        description="Rolling window for market metric statistics (minutes)",
    )
    max_history_size: int = Field(
        default=1000,
        alias="THRESHOLDS_MAX_HISTORY_SIZE",
        ge=1,
        le=1_000_000,
        description="Bound on metric, adjustment and regime history",
    )
    settings_path: Path | None = Field(
        default=None,
        alias="THRESHOLDS_SETTINGS_PATH",
        description="JSON file for persisted thresholds (loaded on start)",
    )
    auto_save: bool = Field(
        default=False,
        alias="THRESHOLDS_AUTO_SAVE",
        description="Save thresholds after every adjustment",
    )
    log_all_changes: bool = Field(
        default=True,
        alias="THRESHOLDS_LOG_ALL_CHANGES",
        description="Log every threshold change at INFO",
    )

    @field_validator("settings_path")
    @classmethod
    def validate_settings_path(cls, v: Path | None) -> Path | None:
        """Validate the persistence path."""
        if v is not None and v.suffix != ".json":
            raise ValueError("THRESHOLDS_SETTINGS_PATH must point to a .json file")
        return v


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from polymarket_insider_tracker.config import get_settings

        settings = get_settings()
        print(settings.scorer.flag_threshold)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # Nested configuration groups
    #
    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    profiler: ProfilerSettings = Field(
        default_factory=lambda: ProfilerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    concentration: ConcentrationSettings = Field(
        default_factory=lambda: ConcentrationSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    scorer: ScorerSettings = Field(
        default_factory=lambda: ScorerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    thresholds: ThresholdSettings = Field(
        default_factory=lambda: ThresholdSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def summary(self) -> dict[str, str | dict[str, str]]:
        """Get a flat string view of the settings for startup logging."""
        return {
            "profiler": {
                "min_trades": str(self.profiler.min_trades),
                "cache_ttl_seconds": str(self.profiler.cache_ttl_seconds),
                "max_cached_profiles": str(self.profiler.max_cached_profiles),
            },
            "concentration": {
                "min_trades": str(self.concentration.min_trades),
                "time_window_days": str(self.concentration.time_window_days),
                "specialist_threshold": str(self.concentration.specialist_threshold),
            },
            "scorer": {
                "min_signals": str(self.scorer.min_signals),
                "flag_threshold": str(self.scorer.flag_threshold),
                "insider_threshold": str(self.scorer.insider_threshold),
            },
            "thresholds": {
                "auto_adjust_enabled": str(self.thresholds.auto_adjust_enabled),
                "max_total_adjustment_percent": str(
                    self.thresholds.max_total_adjustment_percent
                ),
                "settings_path": str(self.thresholds.settings_path or "(not set)"),
            },
            "log_level": self.log_level,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()

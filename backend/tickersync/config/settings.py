from __future__ import annotations

import datetime
from typing import Dict, List, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PollingSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    default_interval: float = 30.0
    min_interval: float = 5.0
    max_interval: float = 3600.0
    max_retries: int = 3
    exponential_backoff: bool = True
    backoff_multiplier: float = 2.0
    adaptive_polling: bool = True
    market_hours_interval: float = 15.0
    after_hours_interval: float = 60.0
    auto_pause_on_error: bool = True
    auto_resume_delay: float = 30.0
    pause_on_hidden: bool = False
    resume_on_visible: bool = False

    @model_validator(mode="after")
    def _check_bounds(self) -> "PollingSettings":
        if self.min_interval >= self.max_interval:
            raise ValueError("polling.min_interval must be less than polling.max_interval")
        if not self.min_interval <= self.default_interval <= self.max_interval:
            raise ValueError(
                "polling.default_interval must be between min_interval and max_interval"
            )
        if self.backoff_multiplier < 1:
            raise ValueError("polling.backoff_multiplier must be at least 1")
        return self


class ApiSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    timeout: float = 30.0
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay: float = 2.0
    max_requests_per_minute: int = Field(default=60, ge=1)


class CacheSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    quote_ttl: float = 30.0
    historical_ttl: float = 300.0
    meta_ttl: float = 3600.0
    max_entries: int = Field(default=100, ge=1)
    max_size_bytes: int = 5 * 1024 * 1024
    auto_cleanup: bool = True
    cleanup_interval: float = 300.0

    @model_validator(mode="after")
    def _check_size(self) -> "CacheSettings":
        if self.max_size_bytes <= 0:
            raise ValueError("cache.max_size_bytes must be greater than 0")
        return self


class ValidationSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    price_min: float = 0.0
    price_max: float = 999999.0
    volume_min: float = 0.0
    change_percent_max: float = 100.0


class AlertSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_alerts_per_symbol: int = 5
    min_threshold: float = 0.01
    max_threshold: float = 999999.0


class WatchlistSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    default_symbols: List[str] = Field(
        default_factory=lambda: ["AAPL", "GOOGL", "MSFT", "TSLA", "AMZN"]
    )
    max_symbols: int = 20
    symbol_pattern: str = r"^[A-Z]{1,5}$"


class MarketSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    timezone: str = "America/New_York"
    open: datetime.time = datetime.time(9, 30)
    close: datetime.time = datetime.time(16, 0)
    pre_market_start: datetime.time = datetime.time(4, 0)
    after_hours_end: datetime.time = datetime.time(20, 0)
    # ISO weekdays, Monday == 1
    trading_days: List[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5])
    holidays: List[datetime.date] = Field(
        default_factory=lambda: [
            datetime.date(2025, 1, 1),
            datetime.date(2025, 1, 20),
            datetime.date(2025, 2, 17),
            datetime.date(2025, 4, 18),
            datetime.date(2025, 5, 26),
            datetime.date(2025, 7, 4),
            datetime.date(2025, 9, 1),
            datetime.date(2025, 11, 27),
            datetime.date(2025, 12, 25),
        ]
    )
    index_symbols: Dict[str, str] = Field(
        default_factory=lambda: {
            "S&P 500": "^GSPC",
            "Dow Jones": "^DJI",
            "Nasdaq": "^IXIC",
        }
    )

    @model_validator(mode="after")
    def _check_hours(self) -> "MarketSettings":
        if not self.pre_market_start <= self.open < self.close <= self.after_hours_end:
            raise ValueError("market hours must satisfy pre_market_start <= open < close <= after_hours_end")
        return self


class ProviderSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    finnhub_api_key: str | None = None
    finnhub_base_url: str = "https://finnhub.io"
    mock_error_rate: float = Field(default=0.0, ge=0.0, le=1.0)


Environment = Literal["development", "staging", "production"]

ENVIRONMENT_OVERRIDES: dict[str, dict] = {
    "development": {
        "log_level": "DEBUG",
        "polling": {"default_interval": 10.0},
    },
    "staging": {
        "log_level": "WARNING",
    },
    "production": {},
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TICKERSYNC_",
        env_file=("../.env", ".env"),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        populate_by_name=True,
        frozen=True,
    )

    environment: Environment = "production"
    log_level: str = "INFO"
    redis_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("REDIS_URL", "TICKERSYNC_REDIS_URL"),
    )

    polling: PollingSettings = Field(default_factory=PollingSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    alerts: AlertSettings = Field(default_factory=AlertSettings)
    watchlist: WatchlistSettings = Field(default_factory=WatchlistSettings)
    market: MarketSettings = Field(default_factory=MarketSettings)
    providers: ProviderSettings = Field(default_factory=ProviderSettings)


def _merge(base: dict, overrides: dict) -> dict:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def apply_environment(settings: Settings) -> Settings:
    """Return a copy of ``settings`` with the environment overrides applied."""
    overrides = ENVIRONMENT_OVERRIDES.get(settings.environment) or {}
    if not overrides:
        return settings
    data = _merge(settings.model_dump(), overrides)
    return Settings.model_validate(data)


def load_settings(**values) -> Settings:
    return apply_environment(Settings(**values))

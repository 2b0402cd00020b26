from __future__ import annotations
import logging
from typing import Any, Callable

from pydantic import BaseModel, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_QUERY = "software engineer"
DEFAULT_REQUEST_DELAY_SECONDS = 3.0
DEFAULT_MAX_PAGES = 3
DEFAULT_MAX_RETRIES = 4

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


def _corrected(name: str, value: Any, cast: Callable[[Any], Any], default: Any, accept: Callable[[Any], bool]) -> Any:
    """Cast ``value`` or fall back to ``default`` with a warning; bad config is never fatal."""
    if value is None:
        return default
    try:
        parsed = cast(value)
    except (TypeError, ValueError):
        logger.warning("[config] %s=%r is not valid, using default %r", name, value, default)
        return default
    if not accept(parsed):
        logger.warning("[config] %s=%r is out of range, using default %r", name, value, default)
        return default
    return parsed


def _as_int(value: Any) -> int:
    return int(float(value))


def _clamped(name: str, value: Any, low: int, high: int, default: int) -> int:
    parsed = _corrected(name, value, _as_int, default, lambda _v: True)
    if parsed < low or parsed > high:
        logger.warning("[config] %s=%r clamped to [%d, %d]", name, value, low, high)
        return max(low, min(high, parsed))
    return parsed


class SourceSettings(BaseModel):
    enabled: bool = True
    search_query: str = DEFAULT_SEARCH_QUERY
    location: str = ""
    request_delay_seconds: float = DEFAULT_REQUEST_DELAY_SECONDS
    max_pages: int = DEFAULT_MAX_PAGES
    max_retries: int = DEFAULT_MAX_RETRIES

    @field_validator("search_query", mode="before")
    @classmethod
    def _query(cls, value: Any) -> str:
        return _corrected(
            "search_query", value, lambda v: str(v).strip(), DEFAULT_SEARCH_QUERY, lambda v: bool(v)
        )

    @field_validator("location", mode="before")
    @classmethod
    def _location(cls, value: Any) -> str:
        return str(value or "").strip()

    @field_validator("request_delay_seconds", mode="before")
    @classmethod
    def _delay(cls, value: Any) -> float:
        return _corrected("request_delay_seconds", value, float, DEFAULT_REQUEST_DELAY_SECONDS, lambda v: v >= 0)

    @field_validator("max_pages", mode="before")
    @classmethod
    def _pages(cls, value: Any) -> int:
        return _corrected("max_pages", value, _as_int, DEFAULT_MAX_PAGES, lambda v: v > 0)

    @field_validator("max_retries", mode="before")
    @classmethod
    def _retries(cls, value: Any) -> int:
        return _corrected("max_retries", value, _as_int, DEFAULT_MAX_RETRIES, lambda v: v > 0)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", env_nested_delimiter="__", extra="ignore"
    )

    app_name: str = "Job Feed Aggregator"
    env: str = "dev"
    api_prefix: str = "/api/v1"
    log_level: str = "INFO"

    database_url: str = "sqlite:///./jobfeed.db"

    auth_username: str = "admin"
    auth_password: str = "change-me"
    jwt_secret: str = "change-me-secret"
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 60 * 24

    # Pipeline
    freshness_window_days: int = 7
    aggregation_deadline_seconds: float = 45.0
    source_timeout_seconds: float = 40.0
    fanout_workers: int = 3
    prefilter_freshness: bool = True
    aggregate_cache_ttl_seconds: float = 3600.0
    refresh_interval_seconds: float = 0.0
    assumed_listing_age_days: int = 2

    deep_enrichment_enabled: bool = True
    max_enrichment_count: int = 50
    enrichment_workers: int = 5
    enrichment_timeout_seconds: float = 30.0

    link_verification_enabled: bool = True
    verification_workers: int = 10
    verification_timeout_seconds: float = 15.0
    verification_batch_timeout_seconds: float = 30.0
    verification_max_attempts: int = 3
    verification_backoff_seconds: float = 2.0

    # Fetcher
    fetch_base_delay_seconds: float = 5.0
    fetch_min_delay_seconds: float = 2.0
    fetch_max_delay_seconds: float = 8.0
    fetch_jitter_ratio: float = 0.3
    fetch_max_retries: int = 4
    fetch_retry_base_delay_seconds: float = 3.0
    fetch_timeout_seconds: float = 20.0
    response_cache_ttl_seconds: float = 900.0

    sources: dict[str, SourceSettings] = {}

    @field_validator("log_level", mode="before")
    @classmethod
    def _log_level(cls, value: Any) -> str:
        return _corrected("log_level", value, lambda v: str(v).upper(), "INFO", lambda v: v in _LOG_LEVELS)

    @field_validator("freshness_window_days", mode="before")
    @classmethod
    def _window(cls, value: Any) -> int:
        return _corrected("freshness_window_days", value, _as_int, 7, lambda v: v > 0)

    @field_validator("aggregation_deadline_seconds", mode="before")
    @classmethod
    def _deadline(cls, value: Any) -> float:
        return _corrected("aggregation_deadline_seconds", value, float, 45.0, lambda v: v > 0)

    @field_validator("fanout_workers", mode="before")
    @classmethod
    def _fanout(cls, value: Any) -> int:
        return _clamped("fanout_workers", value, 1, 10, 3)

    @field_validator("enrichment_workers", mode="before")
    @classmethod
    def _enrichment_workers(cls, value: Any) -> int:
        return _clamped("enrichment_workers", value, 1, 10, 5)

    @field_validator("verification_workers", mode="before")
    @classmethod
    def _verification_workers(cls, value: Any) -> int:
        return _clamped("verification_workers", value, 1, 10, 10)

    @field_validator("max_enrichment_count", mode="before")
    @classmethod
    def _max_enrichment(cls, value: Any) -> int:
        return _corrected("max_enrichment_count", value, _as_int, 50, lambda v: v >= 0)

    @field_validator("verification_max_attempts", mode="before")
    @classmethod
    def _verification_attempts(cls, value: Any) -> int:
        return _corrected("verification_max_attempts", value, _as_int, 3, lambda v: v >= 1)

    @field_validator("fetch_max_retries", mode="before")
    @classmethod
    def _fetch_retries(cls, value: Any) -> int:
        return _corrected("fetch_max_retries", value, _as_int, 4, lambda v: v >= 1)

    @field_validator("fetch_jitter_ratio", mode="before")
    @classmethod
    def _jitter(cls, value: Any) -> float:
        return _corrected("fetch_jitter_ratio", value, float, 0.3, lambda v: 0 <= v <= 1)

    @field_validator(
        "fetch_base_delay_seconds",
        "fetch_min_delay_seconds",
        "fetch_retry_base_delay_seconds",
        "verification_backoff_seconds",
        mode="before",
    )
    @classmethod
    def _non_negative(cls, value: Any, info) -> float:
        defaults = {
            "fetch_base_delay_seconds": 5.0,
            "fetch_min_delay_seconds": 2.0,
            "fetch_retry_base_delay_seconds": 3.0,
            "verification_backoff_seconds": 2.0,
        }
        return _corrected(info.field_name, value, float, defaults[info.field_name], lambda v: v >= 0)

    @field_validator(
        "fetch_timeout_seconds", "response_cache_ttl_seconds", "aggregate_cache_ttl_seconds", mode="before"
    )
    @classmethod
    def _positive(cls, value: Any, info) -> float:
        defaults = {
            "fetch_timeout_seconds": 20.0,
            "response_cache_ttl_seconds": 900.0,
            "aggregate_cache_ttl_seconds": 3600.0,
        }
        return _corrected(info.field_name, value, float, defaults[info.field_name], lambda v: v > 0)

    @field_validator("assumed_listing_age_days", mode="before")
    @classmethod
    def _assumed_age(cls, value: Any) -> int:
        return _corrected("assumed_listing_age_days", value, _as_int, 2, lambda v: v >= 0)

    @field_validator("refresh_interval_seconds", mode="before")
    @classmethod
    def _refresh(cls, value: Any) -> float:
        return _corrected("refresh_interval_seconds", value, float, 0.0, lambda v: v >= 0)

    @model_validator(mode="after")
    def _stage_budgets(self) -> "Settings":
        deadline = self.aggregation_deadline_seconds
        # Each stage budget must stay below the run deadline.
        budgets = {
            "source_timeout_seconds": 0.9,
            "enrichment_timeout_seconds": 2 / 3,
            "verification_timeout_seconds": 1 / 3,
            "verification_batch_timeout_seconds": 2 / 3,
        }
        for name, share in budgets.items():
            value = getattr(self, name)
            if value <= 0 or value >= deadline:
                corrected = round(deadline * share, 3)
                logger.warning("[config] %s=%r must be below the %ss deadline, using %r", name, value, deadline, corrected)
                setattr(self, name, corrected)
        if self.fetch_max_delay_seconds < self.fetch_min_delay_seconds:
            logger.warning("[config] fetch_max_delay_seconds below fetch_min_delay_seconds, raising it")
            self.fetch_max_delay_seconds = self.fetch_min_delay_seconds
        return self

    def source(self, name: str) -> SourceSettings:
        return self.sources.get(name.lower()) or SourceSettings()


settings = Settings()

"""Pydantic models used across the harvester configuration flow."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from ..engine.retry import RetryPolicy
from ..engine.search_params import (
    DEFAULT_TOKEN,
    PRESET_TOKENS,
    custom_time_filter,
    time_filter_to_window,
)
from ..errors import is_transient


class TriggerType(str, Enum):
    """Who started a sync run."""

    MANUAL = "manual"
    SCHEDULED = "scheduled"


class SyncFrequency(str, Enum):
    """Scheduled sync cadences and the cron expression each one fires on."""

    DAILY = "daily"
    EVERY_OTHER_DAY = "every_other_day"
    WEEKLY = "weekly"
    FORTNIGHTLY = "fortnightly"
    MONTHLY = "monthly"

    @property
    def cron(self) -> str:
        return _FREQUENCY_CRON[self]


_FREQUENCY_CRON = {
    SyncFrequency.DAILY: "0 0 * * *",
    SyncFrequency.EVERY_OTHER_DAY: "0 0 */2 * *",
    SyncFrequency.WEEKLY: "0 0 * * 1",
    SyncFrequency.FORTNIGHTLY: "0 0 1,15 * *",
    SyncFrequency.MONTHLY: "0 0 1 * *",
}


class DateRangeSpec(BaseModel):
    """Date range for a sync, as a preset, a custom day range or a raw token.

    Supported forms:
    1. preset: "past_24_hours" (also past_hour, past_week, past_month, past_year)
    2. custom days: start: 2025-01-14, end: 2025-01-15
    3. raw provider token: token: "cdr:1,cd_min:01/14/2025,cd_max:01/15/2025"
    """

    preset: str | None = None
    start: date | None = None
    end: date | None = None
    token: str | None = None

    @model_validator(mode="after")
    def _validate_range(self) -> "DateRangeSpec":
        has_custom = self.start is not None or self.end is not None
        forms = sum((self.preset is not None, has_custom, self.token is not None))
        if forms == 0:
            raise ValueError("Date range needs a preset, custom start/end or a token")
        if forms > 1:
            raise ValueError("Date range accepts only one of preset, start/end or token")
        if has_custom:
            if self.start is None or self.end is None:
                raise ValueError("Custom date range needs both start and end")
            if self.end < self.start:
                raise ValueError("Date range end cannot be earlier than start")
        if self.preset is not None and self.preset not in PRESET_TOKENS:
            raise ValueError(
                f"Unsupported preset: {self.preset}, expected one of {sorted(PRESET_TOKENS)}"
            )
        if self.token is not None:
            self.token = self.token.removeprefix("tbs=").strip() or DEFAULT_TOKEN
        return self

    @classmethod
    def last_days(cls, days: int = 1, today: date | None = None) -> "DateRangeSpec":
        end = today or datetime.now(timezone.utc).date()
        return cls(start=end - timedelta(days=days), end=end)

    @property
    def option(self) -> str:
        if self.preset:
            return self.preset
        return "custom"

    def to_time_filter(self) -> str:
        if self.preset:
            return PRESET_TOKENS[self.preset]
        if self.start is not None and self.end is not None:
            return custom_time_filter(self.start, self.end)
        return self.token or DEFAULT_TOKEN

    def resolve(self, now: datetime | None = None) -> tuple[datetime, datetime]:
        """Concrete UTC window matching the time filter sent to the provider."""

        return time_filter_to_window(self.to_time_filter(), now=now)


class RetryConfig(BaseModel):
    """Retry budget and backoff for one kind of blocking call."""

    max_attempts: int = Field(default=3, ge=1)
    initial_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=5.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1)
    jitter: bool = True
    timeout: float | None = Field(default=30.0, gt=0)

    @model_validator(mode="after")
    def _validate_bounds(self) -> "RetryConfig":
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        return self

    def to_policy(
        self,
        is_retryable: Callable[[BaseException], bool] = is_transient,
        **overrides: Any,
    ) -> RetryPolicy:
        values: dict[str, Any] = {
            "max_attempts": self.max_attempts,
            "initial_delay": self.initial_delay,
            "max_delay": self.max_delay,
            "multiplier": self.multiplier,
            "jitter": self.jitter,
            "timeout": self.timeout,
            "is_retryable": is_retryable,
        }
        values.update(overrides)
        return RetryPolicy(**values)


class ProviderConfig(BaseModel):
    """News search provider endpoint, credential and paging."""

    api_url: str = "https://google.serper.dev/news"
    api_key: str | None = None
    results_per_page: int = Field(default=100, ge=1, le=100)
    request_timeout: float = Field(default=15.0, gt=0)
    retry: RetryConfig = Field(default_factory=lambda: RetryConfig(timeout=None))


class CrawlConfig(BaseModel):
    """Per-publication pagination limits and fan-out degree."""

    concurrency: int = Field(default=10, ge=1)
    max_results_per_publication: int = Field(default=300, ge=1)
    default_max_pages: int = Field(default=5, ge=1)


class DispatchConfig(BaseModel):
    """Queue publishing concurrency and delay staggering."""

    concurrency: int = Field(default=50, ge=1)
    delay_increment_batch: int = Field(default=10, ge=1)
    delay_increment_seconds: int = Field(default=1, ge=0)
    initial_delay_seconds: int = Field(default=0, ge=0)


class FilterConfig(BaseModel):
    """Date window filtering applied before dispatch."""

    buffer_minutes: int = Field(default=0, ge=0)

    @property
    def buffer(self) -> timedelta:
        return timedelta(minutes=self.buffer_minutes)


class ProcessorConfig(BaseModel):
    """Retry/timeout discipline of each ItemProcessor step."""

    lookup: RetryConfig = Field(
        default_factory=lambda: RetryConfig(initial_delay=1.0, max_delay=4.0, timeout=30.0)
    )
    classify: RetryConfig = Field(
        default_factory=lambda: RetryConfig(initial_delay=5.0, max_delay=20.0, timeout=60.0)
    )
    store: RetryConfig = Field(
        default_factory=lambda: RetryConfig(initial_delay=1.0, max_delay=4.0, timeout=30.0)
    )


class ClassifierConfig(BaseModel):
    """Pluggable headline classifier backend."""

    backend: Literal["static", "remote"] = "static"
    default_category: str = "other"
    endpoint: str | None = None
    api_key: str | None = None
    request_timeout: float = Field(default=20.0, gt=0)


class StoreConfig(BaseModel):
    """SQLite persistence location and housekeeping."""

    database_path: Path = Field(default=Path("data/harvester.db"))
    busy_timeout: float = Field(default=30.0, gt=0)
    headline_retention_days: int | None = Field(default=90, ge=1)

    @field_validator("database_path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)


class QueueConfig(BaseModel):
    """Delayed at-least-once message queue and its consumer."""

    database_path: Path = Field(default=Path("data/queue.db"))
    visibility_timeout: float = Field(default=300.0, gt=0)
    max_deliveries: int = Field(default=5, ge=1)
    retry_delay_seconds: int = Field(default=30, ge=0)
    consumer_workers: int = Field(default=4, ge=1)
    batch_size: int = Field(default=10, ge=1)
    poll_interval: float = Field(default=1.0, gt=0)

    @field_validator("database_path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)


class ScheduleConfig(BaseModel):
    """Fallbacks for scheduled syncs when the settings row is absent."""

    sync_enabled: bool = False
    frequency: SyncFrequency = SyncFrequency.DAILY
    default_region: str = "UK"
    max_queries_per_publication: int = Field(default=5, ge=1)


class GlobalConfig(BaseModel):
    """Everything a pipeline instance needs, injected into each component."""

    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    crawl: CrawlConfig = Field(default_factory=CrawlConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    filter: FilterConfig = Field(default_factory=FilterConfig)
    processor: ProcessorConfig = Field(default_factory=ProcessorConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)

    def resolve_paths(self, base_dir: Path) -> "GlobalConfig":
        """Return a copy whose relative database paths are anchored at ``base_dir``."""

        store_path = self.store.database_path
        queue_path = self.queue.database_path
        if not store_path.is_absolute():
            store_path = (base_dir / store_path).resolve()
        if not queue_path.is_absolute():
            queue_path = (base_dir / queue_path).resolve()
        return self.model_copy(
            update={
                "store": self.store.model_copy(update={"database_path": store_path}),
                "queue": self.queue.model_copy(update={"database_path": queue_path}),
            }
        )


class SyncRequest(BaseModel):
    """Trigger input for one sync run."""

    trigger_type: TriggerType = TriggerType.MANUAL
    date_range: DateRangeSpec = Field(default_factory=lambda: DateRangeSpec(preset="past_24_hours"))
    max_queries_per_publication: int = Field(default=5, ge=1)
    region: str | None = None
    # Crawl these URLs instead of the whole catalog; unknown ones are registered.
    publication_urls: list[str] = Field(default_factory=list)


__all__ = [
    "ClassifierConfig",
    "CrawlConfig",
    "DateRangeSpec",
    "DispatchConfig",
    "FilterConfig",
    "GlobalConfig",
    "ProcessorConfig",
    "ProviderConfig",
    "QueueConfig",
    "RetryConfig",
    "ScheduleConfig",
    "StoreConfig",
    "SyncFrequency",
    "SyncRequest",
    "TriggerType",
]

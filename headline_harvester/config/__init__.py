"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
    ClassifierConfig,
    CrawlConfig,
    DateRangeSpec,
    DispatchConfig,
    FilterConfig,
    GlobalConfig,
    ProcessorConfig,
    ProviderConfig,
    QueueConfig,
    RetryConfig,
    ScheduleConfig,
    StoreConfig,
    SyncFrequency,
    SyncRequest,
    TriggerType,
)

__all__ = [
    "ClassifierConfig",
    "ConfigLocator",
    "ConfigRepository",
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

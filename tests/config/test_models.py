from __future__ import annotations

from datetime import date, datetime, timezone
from pathlib import Path

import pytest
from pydantic import ValidationError

from headline_harvester.config import (
    DateRangeSpec,
    GlobalConfig,
    RetryConfig,
    SyncFrequency,
    SyncRequest,
    TriggerType,
)

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


def test_defaults_match_pipeline_constants() -> None:
    config = GlobalConfig()
    assert config.provider.results_per_page == 100
    assert config.crawl.concurrency == 10
    assert config.crawl.max_results_per_publication == 300
    assert config.dispatch.concurrency == 50
    assert config.dispatch.delay_increment_batch == 10
    assert config.schedule.default_region == "UK"
    assert config.store.headline_retention_days == 90


@pytest.mark.parametrize(
    ("frequency", "cron"),
    [
        (SyncFrequency.DAILY, "0 0 * * *"),
        (SyncFrequency.EVERY_OTHER_DAY, "0 0 */2 * *"),
        (SyncFrequency.WEEKLY, "0 0 * * 1"),
        (SyncFrequency.FORTNIGHTLY, "0 0 1,15 * *"),
        (SyncFrequency.MONTHLY, "0 0 1 * *"),
    ],
)
def test_frequency_cron(frequency: SyncFrequency, cron: str) -> None:
    assert frequency.cron == cron


def test_date_range_preset() -> None:
    spec = DateRangeSpec(preset="past_week")
    assert spec.option == "past_week"
    assert spec.to_time_filter() == "qdr:w"


def test_date_range_custom() -> None:
    spec = DateRangeSpec(start=date(2025, 1, 14), end=date(2025, 1, 15))
    assert spec.option == "custom"
    assert spec.to_time_filter() == "cdr:1,cd_min:01/14/2025,cd_max:01/15/2025"
    start, end = spec.resolve(now=NOW)
    assert start == datetime(2025, 1, 14, tzinfo=timezone.utc)
    assert end.date() == date(2025, 1, 15)


def test_date_range_token_strips_prefix() -> None:
    spec = DateRangeSpec(token="tbs=qdr:h")
    assert spec.to_time_filter() == "qdr:h"


def test_last_days_covers_yesterday_to_today() -> None:
    spec = DateRangeSpec.last_days(1, today=date(2025, 1, 15))
    assert (spec.start, spec.end) == (date(2025, 1, 14), date(2025, 1, 15))


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"preset": "past_decade"},
        {"preset": "past_week", "token": "qdr:d"},
        {"start": "2025-01-14"},
        {"start": "2025-01-15", "end": "2025-01-14"},
    ],
)
def test_date_range_rejects_invalid(payload: dict) -> None:
    with pytest.raises(ValidationError):
        DateRangeSpec(**payload)


def test_retry_config_builds_policy() -> None:
    policy = RetryConfig(max_attempts=4, initial_delay=2, max_delay=8, jitter=False).to_policy()
    assert policy.max_attempts == 4
    assert policy.initial_delay == 2
    assert policy.max_delay == 8
    assert policy.timeout == 30


def test_retry_config_rejects_inverted_delays() -> None:
    with pytest.raises(ValidationError):
        RetryConfig(initial_delay=10, max_delay=1)


def test_resolve_paths_anchors_relative_databases(tmp_path: Path) -> None:
    config = GlobalConfig().resolve_paths(tmp_path)
    assert config.store.database_path == (tmp_path / "data" / "harvester.db").resolve()
    assert config.queue.database_path == (tmp_path / "data" / "queue.db").resolve()


def test_sync_request_defaults() -> None:
    request = SyncRequest()
    assert request.trigger_type is TriggerType.MANUAL
    assert request.date_range.preset == "past_24_hours"
    assert request.max_queries_per_publication == 5
    assert request.publication_urls == []

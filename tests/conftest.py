"""Shared fixtures for the harvester test-suite."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Iterable

import httpx
import pytest

from headline_harvester.config import (
    ConfigLocator,
    ConfigRepository,
    GlobalConfig,
    ProviderConfig,
    QueueConfig,
    RetryConfig,
    StoreConfig,
)
from headline_harvester.engine.retry import RetryPolicy
from headline_harvester.infra import HeadlineStore, SQLiteManager, SQLiteMessageQueue
from headline_harvester.infra.queue import QUEUE_SCHEMA


class FakeClock:
    """Manually advanced wall clock in epoch seconds."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def no_sleep_policy() -> Callable[..., RetryPolicy]:
    """Retry policy builder that records delays instead of sleeping."""

    def _builder(**overrides: Any) -> RetryPolicy:
        sleeps: list[float] = overrides.pop("sleeps", [])
        base = {"jitter": False, "sleep": sleeps.append}
        base.update(overrides)
        return RetryPolicy(**base)

    return _builder


@pytest.fixture
def provider_config() -> ProviderConfig:
    return ProviderConfig(
        api_url="https://search.test/news",
        api_key="test-key",
        results_per_page=2,
        retry=RetryConfig(initial_delay=0, max_delay=0, jitter=False, timeout=None),
    )


@pytest.fixture
def global_config(tmp_path: Path, provider_config: ProviderConfig) -> GlobalConfig:
    return GlobalConfig(
        provider=provider_config,
        store=StoreConfig(database_path=tmp_path / "harvester.db"),
        queue=QueueConfig(database_path=tmp_path / "queue.db", retry_delay_seconds=0),
    )


@pytest.fixture
def store(tmp_path: Path) -> Iterable[HeadlineStore]:
    manager = SQLiteManager()
    yield HeadlineStore(manager, tmp_path / "harvester.db")
    manager.close_all()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def message_queue(tmp_path: Path, clock: FakeClock) -> Iterable[SQLiteMessageQueue]:
    manager = SQLiteManager(QUEUE_SCHEMA)
    yield SQLiteMessageQueue(manager, tmp_path / "queue.db", max_deliveries=3, clock=clock)
    manager.close_all()


@pytest.fixture
def news_item() -> Callable[..., dict]:
    counter = iter(range(1, 10_000))

    def _builder(**overrides: Any) -> dict:
        index = next(counter)
        item = {
            "title": f"Headline {index}",
            "link": f"https://bbc.co.uk/news/{index}",
            "snippet": f"Snippet {index}",
            "date": "2 hours ago",
            "source": "BBC",
        }
        item.update(overrides)
        return item

    return _builder


def _serper_response(items: list[dict], credits: int = 1) -> httpx.Response:
    body = {"news": items, "credits": credits, "searchParameters": {"q": "echo"}}
    return httpx.Response(200, content=json.dumps(body))


@pytest.fixture
def serper_response() -> Callable[..., httpx.Response]:
    return _serper_response


@pytest.fixture
def temp_config_repository(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Iterable[ConfigRepository]:
    monkeypatch.setenv("HEADLINE_HARVESTER_HOME", str(tmp_path))
    monkeypatch.delenv("HEADLINE_HARVESTER_API_KEY", raising=False)
    yield ConfigRepository(ConfigLocator(project_root=tmp_path))

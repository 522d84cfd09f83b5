from __future__ import annotations

import json

import httpx
import pytest

from headline_harvester.engine.fetcher import PageFetcher, PageRequest
from headline_harvester.engine.search_params import GeoParams
from headline_harvester.errors import PermanentProviderError, TransientProviderError

UK = GeoParams(gl="gb", location="United Kingdom")


def _request(page: int = 1) -> PageRequest:
    return PageRequest(
        site_query="site:bbc.co.uk",
        time_filter="qdr:d",
        geo=UK,
        api_key="secret",
        page=page,
    )


def _fetcher(provider_config, handler, policy) -> PageFetcher:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return PageFetcher(provider_config, client=client, retry_policy=policy)


def test_fetch_page_sends_provider_payload(provider_config, no_sleep_policy, serper_response, news_item) -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return serper_response([news_item(), news_item()], credits=2)

    fetcher = _fetcher(provider_config, handler, no_sleep_policy())
    page = fetcher.fetch_page(_request(page=3))

    assert len(captured) == 1
    sent = captured[0]
    assert sent.method == "POST"
    assert str(sent.url) == "https://search.test/news"
    assert sent.headers["X-API-KEY"] == "secret"
    assert json.loads(sent.content) == {
        "q": "site:bbc.co.uk",
        "tbs": "qdr:d",
        "gl": "gb",
        "location": "United Kingdom",
        "num": 2,
        "page": 3,
    }
    assert [item.title for item in page.items] == ["Headline 1", "Headline 2"]
    assert page.credits_consumed == 2
    assert page.echoed_parameters == {"q": "echo"}


def test_not_found_is_not_retried(provider_config, no_sleep_policy) -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(404, text="missing")

    fetcher = _fetcher(provider_config, handler, no_sleep_policy(max_attempts=3))
    with pytest.raises(PermanentProviderError) as excinfo:
        fetcher.fetch_page(_request())
    assert calls == 1
    assert excinfo.value.status_code == 404
    assert excinfo.value.page == 1


def test_rate_limit_is_retried_up_to_budget(provider_config, no_sleep_policy) -> None:
    calls = 0
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(429, text="slow down")

    policy = no_sleep_policy(max_attempts=3, initial_delay=1.0, max_delay=5.0, sleeps=sleeps)
    fetcher = _fetcher(provider_config, handler, policy)
    with pytest.raises(TransientProviderError) as excinfo:
        fetcher.fetch_page(_request())
    assert calls == 3
    assert excinfo.value.attempt == 3
    assert sleeps == [1.0, 2.0]


def test_server_error_then_success(provider_config, no_sleep_policy, serper_response, news_item) -> None:
    responses = iter([httpx.Response(503), serper_response([news_item()])])

    fetcher = _fetcher(provider_config, lambda request: next(responses), no_sleep_policy())
    page = fetcher.fetch_page(_request())
    assert len(page.items) == 1


def test_transport_error_is_transient(provider_config, no_sleep_policy, serper_response) -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise httpx.ConnectTimeout("timed out", request=request)
        return serper_response([])

    fetcher = _fetcher(provider_config, handler, no_sleep_policy())
    page = fetcher.fetch_page(_request())
    assert calls == 2
    assert page.items == []


def test_undecodable_body_is_transient(provider_config, no_sleep_policy) -> None:
    fetcher = _fetcher(
        provider_config,
        lambda request: httpx.Response(200, text="<html>oops</html>"),
        no_sleep_policy(max_attempts=2),
    )
    with pytest.raises(TransientProviderError):
        fetcher.fetch_page(_request())


def test_malformed_item_is_skipped_without_retry(
    provider_config, no_sleep_policy, serper_response, news_item
) -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        broken = news_item()
        del broken["title"]
        return serper_response([news_item(), broken, "not-an-object"], credits=1)

    fetcher = _fetcher(provider_config, handler, no_sleep_policy(max_attempts=3))
    page = fetcher.fetch_page(_request())

    assert calls == 1
    assert len(page.items) == 1
    assert page.skipped == 2
    assert page.returned == 3
    assert page.credits_consumed == 1


@pytest.mark.parametrize(
    ("status", "permanent"),
    [(400, True), (401, True), (404, True), (429, False), (500, False), (502, False)],
)
def test_status_classification(status: int, permanent: bool) -> None:
    assert PageFetcher.is_permanent_status(status) is permanent

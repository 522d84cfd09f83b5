"""Single-page news search requests with bounded retry."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import PermanentProviderError, ProviderError, TransientProviderError
from .retry import RetryPolicy
from .search_params import GeoParams

if TYPE_CHECKING:
    from ..config import ProviderConfig


class NewsItem(BaseModel):
    """One provider search hit; only the fields the pipeline relies on."""

    model_config = ConfigDict(extra="ignore")

    title: str
    link: str
    snippet: str | None = None
    date: str | None = None
    source: str = ""


class _SearchResponse(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    news: list[Any] = Field(default_factory=list)
    credits: int = 0
    search_parameters: dict[str, Any] = Field(default_factory=dict, alias="searchParameters")


@dataclass(slots=True)
class PageRequest:
    """Input for the fetcher."""

    site_query: str
    time_filter: str
    geo: GeoParams
    api_key: str
    page: int = 1


@dataclass(slots=True)
class SearchPage:
    """Standardised page result."""

    items: list[NewsItem]
    credits_consumed: int
    echoed_parameters: dict[str, Any] = field(default_factory=dict)
    skipped: int = 0

    @property
    def returned(self) -> int:
        """Entries the provider sent, including ones dropped as malformed."""
        return len(self.items) + self.skipped


class PageFetcher:
    """Fetch one page of provider results, retrying transient failures only."""

    def __init__(
        self,
        config: "ProviderConfig",
        client: httpx.Client | None = None,
        retry_policy: RetryPolicy | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.config = config
        self.retry_policy = retry_policy or config.retry.to_policy()
        self.logger = logger or structlog.get_logger("headline_harvester.fetcher")
        self._owns_client = client is None
        self._client = client or httpx.Client(follow_redirects=True)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "PageFetcher":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    @property
    def page_size(self) -> int:
        return self.config.results_per_page

    def fetch_page(self, request: PageRequest) -> SearchPage:
        log = self.logger.bind(site_query=request.site_query, page=request.page)
        for attempt in self.retry_policy.attempts(
            log, site_query=request.site_query, page=request.page
        ):
            with attempt:
                return self._attempt(request, attempt.retry_state.attempt_number, log)
        raise AssertionError("unreachable: retry iterator exhausted without outcome")

    # ------------------------------------------------------------------
    def _attempt(
        self, request: PageRequest, attempt: int, log: structlog.BoundLogger
    ) -> SearchPage:
        payload = {
            "q": request.site_query,
            "tbs": request.time_filter,
            "gl": request.geo.gl,
            "location": request.geo.location,
            "num": self.config.results_per_page,
            "page": request.page,
        }
        headers = {"X-API-KEY": request.api_key, "Content-Type": "application/json"}
        log.debug("provider_request", attempt=attempt, payload=payload)
        try:
            response = self._client.post(
                self.config.api_url,
                json=payload,
                headers=headers,
                timeout=self.config.request_timeout,
            )
        except httpx.TransportError as exc:
            log.warning(
                "provider_request_failed",
                attempt=attempt,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise TransientProviderError(
                f"Provider request failed: {exc}",
                url=self.config.api_url,
                page=request.page,
                attempt=attempt,
            ) from exc

        log.info("provider_response", attempt=attempt, status=response.status_code)
        if response.is_success:
            return self._parse(response, request, attempt, log)

        error = self._classify_failure(response, request, attempt)
        log.warning(
            "provider_error_status",
            attempt=attempt,
            status=response.status_code,
            body=response.text[:500],
            retryable=isinstance(error, TransientProviderError),
        )
        raise error

    def _parse(
        self,
        response: httpx.Response,
        request: PageRequest,
        attempt: int,
        log: structlog.BoundLogger,
    ) -> SearchPage:
        try:
            parsed = _SearchResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise TransientProviderError(
                f"Undecodable provider response: {exc}",
                status_code=response.status_code,
                url=self.config.api_url,
                page=request.page,
                attempt=attempt,
            ) from exc
        items: list[NewsItem] = []
        skipped = 0
        for position, raw in enumerate(parsed.news):
            try:
                items.append(NewsItem.model_validate(raw))
            except ValidationError as exc:
                skipped += 1
                log.warning(
                    "provider_item_skipped",
                    attempt=attempt,
                    position=position,
                    error=str(exc),
                )
        log.debug(
            "provider_page_parsed",
            attempt=attempt,
            result_count=len(items),
            skipped=skipped,
            credits=parsed.credits,
        )
        return SearchPage(
            items=items,
            credits_consumed=parsed.credits,
            echoed_parameters=parsed.search_parameters,
            skipped=skipped,
        )

    def _classify_failure(
        self, response: httpx.Response, request: PageRequest, attempt: int
    ) -> ProviderError:
        status = response.status_code
        kwargs = {
            "status_code": status,
            "url": self.config.api_url,
            "page": request.page,
            "attempt": attempt,
        }
        if self.is_permanent_status(status):
            return PermanentProviderError(f"Provider error: {status}", **kwargs)
        return TransientProviderError(f"Provider error: {status}", **kwargs)

    @staticmethod
    def is_permanent_status(status_code: int) -> bool:
        return 400 <= status_code < 500 and status_code != 429


__all__ = ["NewsItem", "PageFetcher", "PageRequest", "SearchPage"]

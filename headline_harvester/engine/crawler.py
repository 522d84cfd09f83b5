"""Sequential pagination over one publication's search results."""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from ..errors import HarvesterError, MalformedInputError
from .fetcher import NewsItem, PageFetcher, PageRequest
from .search_params import GeoParams, site_query


@dataclass(slots=True)
class CrawlResult:
    """Aggregate for one publication; ``error`` is set only when a fetch failed."""

    url: str
    queries_made: int = 0
    credits_consumed: int = 0
    results: list[NewsItem] = field(default_factory=list)
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class PublicationCrawler:
    """Walk result pages for one publication until a stop condition holds.

    Pages are fetched strictly in order: whether page ``n + 1`` is requested
    depends on what page ``n`` returned. Stop conditions, checked after each
    successful page: the aggregate reached ``max_results`` (aggregate is
    truncated to it), the page was empty, or the page was shorter than the
    provider page size.
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        max_results: int = 300,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        if max_results < 1:
            raise ValueError("max_results must be >= 1")
        self.fetcher = fetcher
        self.max_results = max_results
        self.logger = logger or structlog.get_logger("headline_harvester.crawler")

    def crawl(
        self,
        url: str,
        time_filter: str,
        geo: GeoParams,
        api_key: str,
        max_pages: int,
    ) -> CrawlResult:
        log = self.logger.bind(publication_url=url)
        result = CrawlResult(url=url)
        try:
            query = site_query(url)
        except MalformedInputError as exc:
            log.error("invalid_publication_url", error=str(exc))
            result.error = exc
            return result

        page_size = self.fetcher.page_size
        log.info("crawl_started", max_pages=max_pages, site_query=query)
        for page in range(1, max_pages + 1):
            try:
                fetched = self.fetcher.fetch_page(
                    PageRequest(
                        site_query=query,
                        time_filter=time_filter,
                        geo=geo,
                        api_key=api_key,
                        page=page,
                    )
                )
            except HarvesterError as exc:
                log.error(
                    "page_fetch_failed",
                    page=page,
                    attempt=getattr(exc, "attempt", None),
                    status=getattr(exc, "status_code", None),
                    error=str(exc),
                    results_so_far=len(result.results),
                )
                result.error = exc
                return result

            result.queries_made += 1
            result.credits_consumed += fetched.credits_consumed
            count = fetched.returned
            result.results.extend(fetched.items)
            log.info(
                "page_fetched",
                page=page,
                results_found=len(fetched.items),
                skipped=fetched.skipped,
                credits=fetched.credits_consumed,
                total_results=len(result.results),
            )

            if len(result.results) >= self.max_results:
                del result.results[self.max_results :]
                log.warning(
                    "crawl_stopped_safety_cap",
                    page=page,
                    max_results=self.max_results,
                )
                break
            if count == 0:
                log.info("crawl_stopped_empty_page", page=page)
                break
            if count < page_size:
                log.info("crawl_stopped_last_page", page=page, page_size=page_size)
                break
        else:
            log.info("crawl_stopped_max_pages", max_pages=max_pages)

        log.info(
            "crawl_finished",
            queries_made=result.queries_made,
            total_results=len(result.results),
            credits=result.credits_consumed,
        )
        return result


__all__ = ["CrawlResult", "PublicationCrawler"]

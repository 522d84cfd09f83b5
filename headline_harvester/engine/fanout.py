"""Bounded-concurrency fan-out of publication crawls."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Iterable

import structlog

from .crawler import CrawlResult, PublicationCrawler
from .search_params import GeoParams


class FanOutScheduler:
    """Run one crawler per publication URL on a fixed-size worker pool.

    Results come back in completion order. A crawler that raises is turned
    into a failed ``CrawlResult`` for its URL; siblings keep running.
    """

    def __init__(
        self,
        crawler: PublicationCrawler,
        workers: int = 10,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self.crawler = crawler
        self.workers = workers
        self.logger = logger or structlog.get_logger("headline_harvester.fanout")

    def run(
        self,
        urls: Iterable[str],
        time_filter: str,
        geo: GeoParams,
        api_key: str,
        max_pages: int,
    ) -> list[CrawlResult]:
        targets = list(urls)
        if not targets:
            return []
        self.logger.info("fanout_started", publications=len(targets), workers=self.workers)
        results: list[CrawlResult] = []
        with ThreadPoolExecutor(
            max_workers=min(self.workers, len(targets)), thread_name_prefix="crawler"
        ) as executor:
            futures: dict[Future[CrawlResult], str] = {
                executor.submit(
                    self.crawler.crawl, url, time_filter, geo, api_key, max_pages
                ): url
                for url in targets
            }
            for future in as_completed(futures):
                url = futures[future]
                try:
                    results.append(future.result())
                except Exception as exc:  # noqa: BLE001
                    self.logger.error(
                        "crawler_crashed",
                        publication_url=url,
                        error=str(exc),
                        error_type=type(exc).__name__,
                    )
                    results.append(CrawlResult(url=url, error=exc))
        failed = sum(1 for result in results if not result.ok)
        self.logger.info(
            "fanout_finished",
            publications=len(results),
            failed=failed,
            queries=sum(result.queries_made for result in results),
            credits=sum(result.credits_consumed for result in results),
        )
        return results


__all__ = ["FanOutScheduler"]

"""Sync orchestrator wiring together crawling, filtering, dispatch and run bookkeeping."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable

import structlog
from dateutil.relativedelta import relativedelta

from .config import GlobalConfig, SyncRequest
from .engine import (
    CandidateHeadline,
    CrawlResult,
    DateFilter,
    FanOutScheduler,
    ItemProcessor,
    PageFetcher,
    PublicationCrawler,
    QueueDispatcher,
    QueueMessage,
)
from .engine.classifier import build_classifier
from .engine.search_params import geo_params, normalize_url, publication_key
from .errors import ConfigurationError, StoreConflictError, StoreError
from .infra import HeadlineStore, QueueConsumer, Settings, SQLiteManager, SQLiteMessageQueue
from .infra.queue import QUEUE_SCHEMA

_UNREAD = object()


@dataclass(slots=True)
class SyncSummary:
    """Counters reported for one sync run."""

    sync_run_id: str
    publications_fetched: int = 0
    total_headlines_fetched: int = 0
    headlines_within_range: int = 0
    messages_queued: int = 0
    message_send_errors: int = 0
    window_start: datetime | None = None
    window_end: datetime | None = None

    def as_patch(self) -> dict[str, int]:
        return {
            "summary_publications_fetched": self.publications_fetched,
            "summary_total_headlines_fetched": self.total_headlines_fetched,
            "summary_headlines_within_range": self.headlines_within_range,
            "summary_messages_queued": self.messages_queued,
        }


class SyncOrchestrator:
    """Run one end-to-end sync: crawl every publication, filter, enqueue.

    The run is recorded as ``started`` before any network call and closed
    exactly once, as ``completed`` or ``failed``. A failure after the run
    row exists is recorded with the counters known so far and re-raised.
    """

    def __init__(
        self,
        config: GlobalConfig,
        store: HeadlineStore,
        fanout: FanOutScheduler,
        dispatcher: QueueDispatcher,
        logger: structlog.BoundLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.fanout = fanout
        self.dispatcher = dispatcher
        self.logger = logger or structlog.get_logger("headline_harvester.orchestrator")
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def close(self) -> None:
        self.fanout.crawler.fetcher.close()

    # ------------------------------------------------------------------
    def run(
        self, request: SyncRequest, settings: Settings | None | object = _UNREAD
    ) -> SyncSummary:
        """Execute ``request``; ``settings`` may carry a row the caller already read."""
        now = self.clock()
        time_filter = request.date_range.to_time_filter()
        window = request.date_range.resolve(now=now)
        run = self.store.insert_sync_run(
            request.trigger_type.value,
            date_range_option=request.date_range.option,
            custom_time_filter=time_filter if request.date_range.option == "custom" else None,
            window_start=window[0].isoformat(),
            window_end=window[1].isoformat(),
            max_queries_per_publication=request.max_queries_per_publication,
        )
        log = self.logger.bind(sync_run_id=run.id, trigger_type=request.trigger_type.value)
        summary = SyncSummary(sync_run_id=run.id, window_start=window[0], window_end=window[1])
        log.info("sync_started", time_filter=time_filter, window_start=window[0].isoformat())

        try:
            self._execute(request, summary, time_filter, window, now, log, settings)
            self.store.update_sync_run(run.id, {"status": "completed", **summary.as_patch()})
        except Exception as exc:
            self._mark_failed(run.id, summary, exc, log)
            raise

        log.info(
            "sync_completed",
            publications_fetched=summary.publications_fetched,
            total_headlines_fetched=summary.total_headlines_fetched,
            headlines_within_range=summary.headlines_within_range,
            messages_queued=summary.messages_queued,
            message_send_errors=summary.message_send_errors,
        )
        self._sweep_old_headlines(now, log)
        return summary

    def _execute(
        self,
        request: SyncRequest,
        summary: SyncSummary,
        time_filter: str,
        window: tuple[datetime, datetime],
        now: datetime,
        log: structlog.BoundLogger,
        settings: Settings | None | object,
    ) -> None:
        if settings is _UNREAD:
            settings = self.store.get_settings()
        region = (
            request.region
            or (settings.default_region if settings else None)
            or self.config.schedule.default_region
        )
        api_key = (
            settings.provider_api_key if settings and settings.provider_api_key else None
        ) or self.config.provider.api_key

        publications = self.store.find_publications()
        url_map = {publication_key(pub.url): pub.id for pub in publications}
        targets = request.publication_urls or [pub.url for pub in publications]
        if not targets:
            log.info("sync_catalog_empty")
            return
        if not api_key:
            raise ConfigurationError("No news provider API key configured")

        results = self.fanout.run(
            targets,
            time_filter,
            geo_params(region),
            api_key,
            request.max_queries_per_publication,
        )
        summary.publications_fetched = sum(1 for result in results if result.ok)
        summary.total_headlines_fetched = sum(len(result.results) for result in results)
        for result in results:
            if not result.ok:
                log.warning(
                    "publication_fetch_failed",
                    publication_url=result.url,
                    partial_results=len(result.results),
                    error=str(result.error),
                )

        report = DateFilter(window, buffer=self.config.filter.buffer, now=now, logger=log).apply(
            results
        )
        summary.headlines_within_range = report.within_range

        messages = self._build_messages(report.candidates, results, url_map, log)
        dispatched = self.dispatcher.dispatch(messages)
        summary.messages_queued = dispatched.messages_sent
        summary.message_send_errors = dispatched.message_send_errors

    def _build_messages(
        self,
        candidates: Iterable[CandidateHeadline],
        results: Iterable[CrawlResult],
        url_map: dict[str, str],
        log: structlog.BoundLogger,
    ) -> list[QueueMessage]:
        # Publications are registered before any of their items is queued.
        for result in results:
            if result.results:
                self._resolve_publication_id(result.url, url_map, log)

        messages: list[QueueMessage] = []
        for candidate in candidates:
            publication_id = url_map.get(publication_key(candidate.publication_url))
            if publication_id is None:
                continue
            item = candidate.item
            messages.append(
                QueueMessage(
                    headline_url=item.link,
                    publication_id=publication_id,
                    headline_text=item.title,
                    snippet=item.snippet,
                    source=item.source,
                    raw_date=item.date,
                    normalized_date=candidate.normalized_date,
                )
            )
        return messages

    def _resolve_publication_id(
        self, url: str, url_map: dict[str, str], log: structlog.BoundLogger
    ) -> str:
        key = publication_key(url)
        if key in url_map:
            return url_map[key]
        full_url = normalize_url(url)
        try:
            publication = self.store.insert_publication(name=key, url=full_url)
            log.info("publication_created", publication_url=full_url, publication_id=publication.id)
        except StoreConflictError:
            publication = self.store.find_publication_by_url(full_url)
            if publication is None:
                raise
        url_map[key] = publication.id
        return publication.id

    def _mark_failed(
        self,
        run_id: str,
        summary: SyncSummary,
        exc: Exception,
        log: structlog.BoundLogger,
    ) -> None:
        log.error("sync_failed", error=str(exc), error_type=type(exc).__name__)
        try:
            self.store.update_sync_run(
                run_id,
                {"status": "failed", "error_message": str(exc), **summary.as_patch()},
            )
        except Exception as update_exc:  # noqa: BLE001
            log.error("sync_run_update_failed", error=str(update_exc))

    def _sweep_old_headlines(self, now: datetime, log: structlog.BoundLogger) -> None:
        days = self.config.store.headline_retention_days
        if not days:
            return
        try:
            deleted = self.store.delete_headlines_older_than(now - relativedelta(days=days))
        except StoreError as exc:
            log.warning("headline_cleanup_failed", error=str(exc))
            return
        log.info("headline_cleanup_finished", deleted=deleted, retention_days=days)


def build_store(config: GlobalConfig, manager: SQLiteManager | None = None) -> HeadlineStore:
    manager = manager or SQLiteManager(busy_timeout=config.store.busy_timeout)
    return HeadlineStore(manager, config.store.database_path)


def build_queue(config: GlobalConfig, manager: SQLiteManager | None = None) -> SQLiteMessageQueue:
    manager = manager or SQLiteManager(QUEUE_SCHEMA, busy_timeout=config.store.busy_timeout)
    return SQLiteMessageQueue(
        manager, config.queue.database_path, max_deliveries=config.queue.max_deliveries
    )


def build_orchestrator(
    config: GlobalConfig,
    store: HeadlineStore | None = None,
    queue: SQLiteMessageQueue | None = None,
    fetcher: PageFetcher | None = None,
    logger: structlog.BoundLogger | None = None,
) -> SyncOrchestrator:
    fetcher = fetcher or PageFetcher(config.provider)
    crawler = PublicationCrawler(fetcher, max_results=config.crawl.max_results_per_publication)
    fanout = FanOutScheduler(crawler, workers=config.crawl.concurrency)
    dispatcher = QueueDispatcher(queue or build_queue(config), config.dispatch)
    return SyncOrchestrator(config, store or build_store(config), fanout, dispatcher, logger=logger)


def build_consumer(
    config: GlobalConfig,
    store: HeadlineStore | None = None,
    queue: SQLiteMessageQueue | None = None,
    logger: structlog.BoundLogger | None = None,
) -> QueueConsumer:
    processor = ItemProcessor(
        store or build_store(config),
        build_classifier(config.classifier),
        lookup_policy=config.processor.lookup.to_policy(),
        classify_policy=config.processor.classify.to_policy(),
        store_policy=config.processor.store.to_policy(),
    )
    return QueueConsumer(queue or build_queue(config), processor, config.queue, logger=logger)


__all__ = [
    "SyncOrchestrator",
    "SyncSummary",
    "build_consumer",
    "build_orchestrator",
    "build_queue",
    "build_store",
]

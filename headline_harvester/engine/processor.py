"""Per-message durable workflow: check existence, classify, store."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import structlog

from ..errors import InvalidReferenceError, StoreConflictError
from .classifier import Classifier, coerce_category
from .messages import QueueMessage
from .retry import RetryPolicy

if TYPE_CHECKING:
    from ..infra.storage import HeadlineStore


class Outcome(str, Enum):
    SKIPPED_EXISTS = "skipped_exists"
    INSERTED_NEW = "inserted_new"
    SKIPPED_CONCURRENT_INSERT = "skipped_concurrent_insert"
    SKIPPED_INVALID_REFERENCE = "skipped_invalid_reference"


@dataclass(frozen=True, slots=True)
class ProcessingOutcome:
    outcome: Outcome
    headline_url: str
    headline_id: str | None = None
    category: str | None = None


class ItemProcessor:
    """Process one queued candidate headline.

    Each step runs under its own retry policy. Re-delivering the same message
    after an insert always ends in ``skipped_exists`` or
    ``skipped_concurrent_insert``, so the store never holds two rows for one
    URL. Errors that exhaust their retries propagate to the caller.
    """

    def __init__(
        self,
        store: "HeadlineStore",
        classifier: Classifier,
        lookup_policy: RetryPolicy | None = None,
        classify_policy: RetryPolicy | None = None,
        store_policy: RetryPolicy | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.store = store
        self.classifier = classifier
        self.lookup_policy = lookup_policy or RetryPolicy(initial_delay=1.0, max_delay=30.0)
        self.classify_policy = classify_policy or RetryPolicy(initial_delay=5.0, max_delay=60.0)
        self.store_policy = store_policy or RetryPolicy(initial_delay=1.0, max_delay=30.0)
        self.logger = logger or structlog.get_logger("headline_harvester.processor")

    def process(self, message: QueueMessage) -> ProcessingOutcome:
        log = self.logger.bind(headline_url=message.headline_url)

        if self._check_exists(message, log):
            log.info("headline_skipped_exists")
            return ProcessingOutcome(Outcome.SKIPPED_EXISTS, message.headline_url)

        category = self._analyze(message, log)
        outcome = self._store(message, category, log)
        log.info("headline_processed", outcome=outcome.outcome.value, category=category)
        return outcome

    def _check_exists(self, message: QueueMessage, log: structlog.BoundLogger) -> bool:
        existing = self.lookup_policy.call(
            self.store.find_headline_by_url,
            message.headline_url,
            logger=log,
            context={"step": "check_exists"},
        )
        return existing is not None

    def _analyze(self, message: QueueMessage, log: structlog.BoundLogger) -> str:
        raw = self.classify_policy.call(
            self.classifier.classify,
            message.headline_text,
            logger=log,
            context={"step": "analyze"},
        )
        category = coerce_category(raw)
        if category != raw:
            log.debug("category_coerced", raw_category=raw, category=category)
        return category

    def _store(
        self, message: QueueMessage, category: str, log: structlog.BoundLogger
    ) -> ProcessingOutcome:
        if not message.publication_id or not self.store_policy.call(
            self.store.publication_exists,
            message.publication_id,
            logger=log,
            context={"step": "store"},
        ):
            log.warning("headline_invalid_publication", publication_id=message.publication_id)
            return ProcessingOutcome(
                Outcome.SKIPPED_INVALID_REFERENCE, message.headline_url, category=category
            )

        try:
            record = self.store_policy.call(
                self.store.insert_headline,
                url=message.headline_url,
                headline=message.headline_text,
                snippet=message.snippet,
                source=message.source,
                raw_date=message.raw_date,
                normalized_date=message.normalized_date,
                category=category,
                publication_id=message.publication_id,
                logger=log,
                context={"step": "store"},
            )
        except StoreConflictError:
            log.info("headline_skipped_concurrent_insert")
            return ProcessingOutcome(
                Outcome.SKIPPED_CONCURRENT_INSERT, message.headline_url, category=category
            )
        except InvalidReferenceError:
            log.warning("headline_invalid_publication", publication_id=message.publication_id)
            return ProcessingOutcome(
                Outcome.SKIPPED_INVALID_REFERENCE, message.headline_url, category=category
            )
        return ProcessingOutcome(
            Outcome.INSERTED_NEW, message.headline_url, headline_id=record.id, category=category
        )


__all__ = ["ItemProcessor", "Outcome", "ProcessingOutcome"]

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from headline_harvester.engine.classifier import StaticClassifier
from headline_harvester.engine.messages import QueueMessage
from headline_harvester.engine.processor import ItemProcessor, Outcome
from headline_harvester.errors import (
    ClassificationError,
    ClassifierConfigurationError,
    StoreConflictError,
    StoreError,
)


@pytest.fixture
def publication(store):
    return store.insert_publication(name="BBC", url="https://bbc.co.uk")


@pytest.fixture
def processor_factory(store, no_sleep_policy):
    def _builder(classifier=None, target_store=None) -> ItemProcessor:
        return ItemProcessor(
            target_store or store,
            classifier or StaticClassifier("politics"),
            lookup_policy=no_sleep_policy(),
            classify_policy=no_sleep_policy(),
            store_policy=no_sleep_policy(),
        )

    return _builder


def _message(publication_id: str, url: str = "https://bbc.co.uk/news/1") -> QueueMessage:
    return QueueMessage(
        headline_url=url,
        publication_id=publication_id,
        headline_text="Parliament votes",
        snippet="MPs voted today",
        source="BBC",
        raw_date="2 hours ago",
        normalized_date="15/01/2025",
    )


def test_new_headline_is_inserted(store, publication, processor_factory) -> None:
    outcome = processor_factory().process(_message(publication.id))

    assert outcome.outcome is Outcome.INSERTED_NEW
    assert outcome.category == "politics"
    stored = store.find_headline_by_url("https://bbc.co.uk/news/1")
    assert stored is not None
    assert stored.id == outcome.headline_id
    assert stored.publication_id == publication.id
    assert stored.normalized_date == "15/01/2025"


def test_reprocessing_is_idempotent(store, publication, processor_factory) -> None:
    processor = processor_factory()
    first = processor.process(_message(publication.id))
    second = processor.process(_message(publication.id))

    assert first.outcome is Outcome.INSERTED_NEW
    assert second.outcome is Outcome.SKIPPED_EXISTS
    assert store.count_headlines() == 1


def test_concurrent_insert_is_skipped(publication, processor_factory) -> None:
    fake_store = MagicMock()
    fake_store.find_headline_by_url.return_value = None
    fake_store.publication_exists.return_value = True
    fake_store.insert_headline.side_effect = StoreConflictError("UNIQUE constraint failed: headlines.url")

    outcome = processor_factory(target_store=fake_store).process(_message(publication.id))

    assert outcome.outcome is Outcome.SKIPPED_CONCURRENT_INSERT
    assert fake_store.insert_headline.call_count == 1


def test_empty_publication_id_never_inserts(processor_factory) -> None:
    fake_store = MagicMock()
    fake_store.find_headline_by_url.return_value = None

    outcome = processor_factory(target_store=fake_store).process(_message(""))

    assert outcome.outcome is Outcome.SKIPPED_INVALID_REFERENCE
    fake_store.insert_headline.assert_not_called()
    fake_store.publication_exists.assert_not_called()


def test_unknown_publication_is_invalid_reference(store, processor_factory) -> None:
    outcome = processor_factory().process(_message("does-not-exist"))
    assert outcome.outcome is Outcome.SKIPPED_INVALID_REFERENCE
    assert store.count_headlines() == 0


def test_unknown_category_falls_back_to_other(store, publication, processor_factory) -> None:
    classifier = MagicMock()
    classifier.classify.return_value = "astrology"

    outcome = processor_factory(classifier=classifier).process(_message(publication.id))

    assert outcome.category == "other"
    assert store.find_headline_by_url("https://bbc.co.uk/news/1").category == "other"


def test_transient_classifier_error_is_retried(publication, processor_factory) -> None:
    classifier = MagicMock()
    classifier.classify.side_effect = [ClassificationError("busy"), "business"]

    outcome = processor_factory(classifier=classifier).process(_message(publication.id))

    assert outcome.category == "business"
    assert classifier.classify.call_count == 2


def test_classifier_configuration_error_is_fatal(publication, processor_factory) -> None:
    classifier = MagicMock()
    classifier.classify.side_effect = ClassifierConfigurationError("no endpoint")

    with pytest.raises(ClassifierConfigurationError):
        processor_factory(classifier=classifier).process(_message(publication.id))
    assert classifier.classify.call_count == 1


def test_lookup_exhaustion_propagates(processor_factory) -> None:
    fake_store = MagicMock()
    fake_store.find_headline_by_url.side_effect = StoreError("database is locked")

    with pytest.raises(StoreError):
        processor_factory(target_store=fake_store).process(_message("pub-1"))
    assert fake_store.find_headline_by_url.call_count == 3

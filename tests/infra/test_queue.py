from __future__ import annotations

from unittest.mock import MagicMock

from headline_harvester.config import QueueConfig
from headline_harvester.engine.messages import QueueMessage
from headline_harvester.engine.processor import Outcome, ProcessingOutcome
from headline_harvester.errors import StoreError
from headline_harvester.infra import QueueConsumer


def _message(index: int = 1) -> QueueMessage:
    return QueueMessage(
        headline_url=f"https://bbc.co.uk/{index}",
        publication_id="pub-1",
        headline_text=f"Headline {index}",
    )


def test_delayed_message_becomes_visible(message_queue, clock) -> None:
    message_queue.send(_message(), delay_seconds=5)
    assert message_queue.receive() == []

    clock.advance(5)
    received = message_queue.receive()
    assert [item.message for item in received] == [_message()]
    assert received[0].deliveries == 1


def test_lease_hides_message_until_visibility_timeout(message_queue, clock) -> None:
    message_queue.send(_message())
    first = message_queue.receive(visibility_timeout=30)
    assert len(first) == 1
    assert message_queue.receive(visibility_timeout=30) == []

    clock.advance(31)
    again = message_queue.receive(visibility_timeout=30)
    assert again[0].id == first[0].id
    assert again[0].deliveries == 2


def test_ack_removes_message(message_queue, clock) -> None:
    message_queue.send(_message())
    received = message_queue.receive()
    message_queue.ack(received[0].id)
    clock.advance(1_000)
    assert message_queue.receive() == []
    assert message_queue.counts() == {"pending": 0, "dead": 0}


def test_retry_then_dead_letter(message_queue, clock) -> None:
    message_queue.send(_message())
    for delivery in range(1, 4):
        received = message_queue.receive()
        assert received[0].deliveries == delivery
        dead = message_queue.retry(received[0].id, delay_seconds=0, error="boom")
        assert dead is (delivery == 3)
    assert message_queue.receive() == []
    assert message_queue.counts() == {"pending": 0, "dead": 1}


def test_consumer_acks_outcomes_and_retries_failures(message_queue) -> None:
    for index in range(3):
        message_queue.send(_message(index))

    def process(message: QueueMessage) -> ProcessingOutcome:
        if message.headline_url.endswith("/1"):
            raise StoreError("database is locked")
        return ProcessingOutcome(Outcome.INSERTED_NEW, message.headline_url)

    processor = MagicMock()
    processor.process.side_effect = process
    consumer = QueueConsumer(
        message_queue, processor, QueueConfig(retry_delay_seconds=0, consumer_workers=2)
    )

    stats = consumer.run_once()

    assert stats.received == 3
    assert stats.acked == 2
    assert stats.retried == 1
    assert stats.outcomes == {"inserted_new": 2}
    retried = message_queue.receive()
    assert [item.message.headline_url for item in retried] == ["https://bbc.co.uk/1"]


def test_run_forever_polls_until_batch_limit(message_queue) -> None:
    processor = MagicMock()
    sleeps: list[float] = []
    consumer = QueueConsumer(
        message_queue, processor, QueueConfig(poll_interval=0.5), sleep=sleeps.append
    )

    stats = consumer.run_forever(max_batches=2)

    assert stats.received == 0
    assert sleeps == [0.5, 0.5]
    processor.process.assert_not_called()


def test_corrupt_body_is_dead_lettered_without_blocking_batch(message_queue, clock) -> None:
    message_queue.send(_message(1))
    message_queue._conn.execute(
        "INSERT INTO messages(body, visible_at, created_at) VALUES (?, ?, ?)",
        ("{not json", clock(), clock()),
    )
    message_queue._conn.commit()
    message_queue.send(_message(2))

    received = message_queue.receive()

    assert [item.message.headline_url for item in received] == [
        "https://bbc.co.uk/1",
        "https://bbc.co.uk/2",
    ]
    assert message_queue.counts() == {"pending": 2, "dead": 1}
    clock.advance(1_000)
    assert len(message_queue.receive()) == 2

"""Delayed at-least-once message queue on SQLite and its consumer loop."""

from __future__ import annotations

import sqlite3
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from threading import Event, Lock
from typing import TYPE_CHECKING, Callable

import structlog
from pydantic import ValidationError

from ..engine.messages import QueueMessage
from ..errors import DispatchError
from .storage import SQLiteManager

if TYPE_CHECKING:
    from ..config import QueueConfig
    from ..engine.processor import ItemProcessor

QUEUE_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS messages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        body TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'dead')),
        visible_at REAL NOT NULL,
        deliveries INTEGER NOT NULL DEFAULT 0,
        created_at REAL NOT NULL,
        last_error TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_visible ON messages(status, visible_at)",
)


@dataclass(slots=True)
class ReceivedMessage:
    id: int
    message: QueueMessage
    deliveries: int


class SQLiteMessageQueue:
    """Messages become visible after their delay and are leased on receive.

    A leased message reappears once its visibility timeout lapses unless it is
    acknowledged. ``retry`` past ``max_deliveries`` parks the message in the
    ``dead`` state instead, as does a body that cannot be decoded on receive.
    """

    def __init__(
        self,
        manager: SQLiteManager,
        db_path: Path,
        max_deliveries: int = 5,
        clock: Callable[[], float] = time.time,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.manager = manager
        self.logger = logger or structlog.get_logger("headline_harvester.queue")
        self.db_path = db_path
        self.max_deliveries = max_deliveries
        self.clock = clock
        self._lock = Lock()
        self._conn = self.manager.connect(db_path)

    def send(self, message: QueueMessage, delay_seconds: int = 0) -> int:
        now = self.clock()
        with self._lock:
            try:
                cursor = self._conn.execute(
                    "INSERT INTO messages(body, visible_at, created_at) VALUES (?, ?, ?)",
                    (message.to_json(), now + max(delay_seconds, 0), now),
                )
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise DispatchError(f"Failed to enqueue {message.headline_url}: {exc}") from exc
        return int(cursor.lastrowid)

    def receive(self, max_messages: int = 10, visibility_timeout: float = 300.0) -> list[ReceivedMessage]:
        now = self.clock()
        received: list[ReceivedMessage] = []
        dead: list[tuple[str, int]] = []
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT id, body, deliveries FROM messages
                WHERE status = 'pending' AND visible_at <= ?
                ORDER BY visible_at, id LIMIT ?
                """,
                (now, max_messages),
            ).fetchall()
            if not rows:
                return []
            for row in rows:
                try:
                    message = QueueMessage.from_json(row["body"])
                except ValidationError as exc:
                    dead.append((f"Undecodable message body: {exc}", row["id"]))
                    continue
                received.append(
                    ReceivedMessage(id=row["id"], message=message, deliveries=row["deliveries"] + 1)
                )
            self._conn.executemany(
                "UPDATE messages SET visible_at = ?, deliveries = deliveries + 1 WHERE id = ?",
                [(now + visibility_timeout, item.id) for item in received],
            )
            self._conn.executemany(
                "UPDATE messages SET status = 'dead', deliveries = deliveries + 1, last_error = ? "
                "WHERE id = ?",
                dead,
            )
            self._conn.commit()
        for error, message_id in dead:
            self.logger.error("message_dead_lettered", message_id=message_id, error=error)
        return received

    def ack(self, message_id: int) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM messages WHERE id = ?", (message_id,))
            self._conn.commit()

    def retry(self, message_id: int, delay_seconds: float = 0, error: str | None = None) -> bool:
        """Make the message visible again; return ``True`` if it was dead-lettered."""

        with self._lock:
            row = self._conn.execute(
                "SELECT deliveries FROM messages WHERE id = ?", (message_id,)
            ).fetchone()
            if row is None:
                return False
            dead = row["deliveries"] >= self.max_deliveries
            if dead:
                self._conn.execute(
                    "UPDATE messages SET status = 'dead', last_error = ? WHERE id = ?",
                    (error, message_id),
                )
            else:
                self._conn.execute(
                    "UPDATE messages SET visible_at = ?, last_error = ? WHERE id = ?",
                    (self.clock() + delay_seconds, error, message_id),
                )
            self._conn.commit()
        return dead

    def counts(self) -> dict[str, int]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT status, count(*) AS n FROM messages GROUP BY status"
            ).fetchall()
        result = {"pending": 0, "dead": 0}
        result.update({row["status"]: row["n"] for row in rows})
        return result


@dataclass(slots=True)
class ConsumerStats:
    received: int = 0
    acked: int = 0
    retried: int = 0
    dead_lettered: int = 0
    outcomes: dict[str, int] = field(default_factory=dict)

    def merge(self, other: "ConsumerStats") -> None:
        self.received += other.received
        self.acked += other.acked
        self.retried += other.retried
        self.dead_lettered += other.dead_lettered
        for key, value in other.outcomes.items():
            self.outcomes[key] = self.outcomes.get(key, 0) + value


class QueueConsumer:
    """Feed leased messages to an :class:`ItemProcessor` on a worker pool."""

    def __init__(
        self,
        queue: SQLiteMessageQueue,
        processor: "ItemProcessor",
        config: "QueueConfig",
        logger: structlog.BoundLogger | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.queue = queue
        self.processor = processor
        self.config = config
        self.sleep = sleep
        self.logger = logger or structlog.get_logger("headline_harvester.consumer")

    def run_once(self) -> ConsumerStats:
        stats = ConsumerStats()
        batch = self.queue.receive(self.config.batch_size, self.config.visibility_timeout)
        if not batch:
            return stats
        stats.received = len(batch)
        with ThreadPoolExecutor(
            max_workers=min(self.config.consumer_workers, len(batch)),
            thread_name_prefix="consumer",
        ) as executor:
            futures = {
                executor.submit(self.processor.process, received.message): received
                for received in batch
            }
            for future in as_completed(futures):
                received = futures[future]
                try:
                    outcome = future.result()
                except Exception as exc:  # noqa: BLE001
                    dead = self.queue.retry(
                        received.id, self.config.retry_delay_seconds, error=str(exc)
                    )
                    if dead:
                        stats.dead_lettered += 1
                    else:
                        stats.retried += 1
                    self.logger.error(
                        "message_processing_failed",
                        message_id=received.id,
                        headline_url=received.message.headline_url,
                        deliveries=received.deliveries,
                        dead_lettered=dead,
                        error=str(exc),
                        error_type=type(exc).__name__,
                    )
                    continue
                self.queue.ack(received.id)
                stats.acked += 1
                key = outcome.outcome.value
                stats.outcomes[key] = stats.outcomes.get(key, 0) + 1
        self.logger.info(
            "consumer_batch_finished",
            received=stats.received,
            acked=stats.acked,
            retried=stats.retried,
            dead_lettered=stats.dead_lettered,
        )
        return stats

    def run_forever(
        self, stop_event: Event | None = None, max_batches: int | None = None
    ) -> ConsumerStats:
        total = ConsumerStats()
        stop = stop_event or Event()
        batches = 0
        self.logger.info("consumer_started", workers=self.config.consumer_workers)
        while not stop.is_set():
            if max_batches is not None and batches >= max_batches:
                break
            stats = self.run_once()
            batches += 1
            total.merge(stats)
            if not stats.received:
                self.sleep(self.config.poll_interval)
        self.logger.info("consumer_stopped", acked=total.acked, retried=total.retried)
        return total


__all__ = [
    "ConsumerStats",
    "QUEUE_SCHEMA",
    "QueueConsumer",
    "ReceivedMessage",
    "SQLiteMessageQueue",
]

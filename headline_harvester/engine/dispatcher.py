"""Staggered, bounded-concurrency publishing of candidate headlines."""

from __future__ import annotations

import heapq
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from threading import Lock
from typing import TYPE_CHECKING, Protocol, Sequence

import structlog

from .messages import QueueMessage

if TYPE_CHECKING:
    from ..config import DispatchConfig


class MessageQueue(Protocol):
    """Anything that accepts a message with a delivery delay."""

    def send(self, message: QueueMessage, delay_seconds: int = 0) -> object:
        """Enqueue ``message``; raise on failure."""


@dataclass(slots=True)
class DispatchResult:
    messages_sent: int = 0
    message_send_errors: int = 0


class QueueDispatcher:
    """Publish messages with a delay that grows with the number already sent.

    Every ``delay_increment_batch`` successful sends raise the delay applied to
    later sends by ``delay_increment_seconds``. Each send claims a distinct
    slot; a failed send returns its slot and the next send claims the lowest
    free one. A slot freed after the last message was claimed stays unused, so
    under concurrency the tail may run up to one slot per failure late.
    """

    def __init__(
        self,
        queue: MessageQueue,
        config: "DispatchConfig",
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.queue = queue
        self.config = config
        self.logger = logger or structlog.get_logger("headline_harvester.dispatcher")

    def delay_for(self, slot: int) -> int:
        steps = slot // self.config.delay_increment_batch
        return self.config.initial_delay_seconds + steps * self.config.delay_increment_seconds

    def dispatch(self, messages: Sequence[QueueMessage]) -> DispatchResult:
        result = DispatchResult()
        if not messages:
            self.logger.info("dispatch_skipped_empty")
            return result

        lock = Lock()
        free_slots: list[int] = []
        next_slot = 0

        def _send(message: QueueMessage) -> None:
            nonlocal next_slot
            with lock:
                if free_slots:
                    slot = heapq.heappop(free_slots)
                else:
                    slot = next_slot
                    next_slot += 1
            delay = self.delay_for(slot)
            try:
                self.queue.send(message, delay_seconds=delay)
            except Exception as exc:  # noqa: BLE001
                with lock:
                    heapq.heappush(free_slots, slot)
                    result.message_send_errors += 1
                self.logger.error(
                    "message_send_failed",
                    headline_url=message.headline_url,
                    delay_seconds=delay,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                return
            with lock:
                result.messages_sent += 1
            self.logger.debug(
                "message_sent", headline_url=message.headline_url, delay_seconds=delay
            )

        self.logger.info(
            "dispatch_started", messages=len(messages), concurrency=self.config.concurrency
        )
        with ThreadPoolExecutor(
            max_workers=min(self.config.concurrency, len(messages)),
            thread_name_prefix="dispatch",
        ) as executor:
            futures = [executor.submit(_send, message) for message in messages]
            wait(futures)
        self.logger.info(
            "dispatch_finished",
            messages_sent=result.messages_sent,
            message_send_errors=result.message_send_errors,
        )
        return result


__all__ = ["DispatchResult", "MessageQueue", "QueueDispatcher"]

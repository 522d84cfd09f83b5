"""Infra layer utilities (headline store, message queue)."""

from .queue import ConsumerStats, QueueConsumer, SQLiteMessageQueue
from .storage import HeadlineStore, Publication, Settings, SQLiteManager, SyncRun

__all__ = [
    "ConsumerStats",
    "HeadlineStore",
    "Publication",
    "QueueConsumer",
    "SQLiteManager",
    "SQLiteMessageQueue",
    "Settings",
    "SyncRun",
]

"""Scheduling helpers."""

from .apsched_adapter import APSchedulerAdapter
from .jobs import ScheduledSync

__all__ = ["APSchedulerAdapter", "ScheduledSync"]

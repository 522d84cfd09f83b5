"""APScheduler wrapper exposing higher level helpers."""

from __future__ import annotations

from typing import Callable

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from ..config import SyncFrequency


class APSchedulerAdapter:
    """Manage one cron job per sync frequency."""

    def __init__(
        self,
        scheduler: BackgroundScheduler | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.scheduler = scheduler or BackgroundScheduler(timezone="UTC")
        self.logger = logger or structlog.get_logger("headline_harvester.scheduler")
        self.started = False

    def start(self) -> None:
        if not self.started:
            self.scheduler.start()
            self.started = True
            self.logger.info("apscheduler_started")

    def shutdown(self) -> None:
        if self.started:
            self.scheduler.shutdown(wait=False)
            self.started = False
            self.logger.info("apscheduler_stopped")

    @staticmethod
    def job_id(frequency: SyncFrequency) -> str:
        return f"sync::{frequency.value}"

    @staticmethod
    def build_trigger(frequency: SyncFrequency) -> CronTrigger:
        return CronTrigger.from_crontab(frequency.cron, timezone="UTC")

    def schedule_sync(
        self, frequency: SyncFrequency, callback: Callable[[SyncFrequency], object]
    ) -> str:
        job_id = self.job_id(frequency)
        self.scheduler.add_job(
            callback,
            trigger=self.build_trigger(frequency),
            id=job_id,
            args=[frequency],
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.logger.info("job_scheduled", frequency=frequency.value, cron=frequency.cron)
        return job_id

    def schedule_all(self, callback: Callable[[SyncFrequency], object]) -> list[str]:
        """Register every cadence; the callback decides at fire time whether to run."""

        return [self.schedule_sync(frequency, callback) for frequency in SyncFrequency]

    def remove_sync(self, frequency: SyncFrequency) -> None:
        try:
            self.scheduler.remove_job(self.job_id(frequency))
        except Exception:  # noqa: BLE001
            self.logger.warning("job_remove_failed", frequency=frequency.value)

    def list_jobs(self) -> list[dict]:
        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append(
                {
                    "id": job.id,
                    "next_run_time": getattr(job, "next_run_time", None),
                    "trigger": str(job.trigger),
                }
            )
        return jobs


__all__ = ["APSchedulerAdapter"]

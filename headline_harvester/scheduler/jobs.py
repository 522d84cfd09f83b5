"""Scheduled sync job gated by the persisted settings."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

import structlog

from ..config import DateRangeSpec, GlobalConfig, SyncFrequency, SyncRequest, TriggerType

if TYPE_CHECKING:
    from ..infra.storage import HeadlineStore
    from ..orchestrator import SyncOrchestrator, SyncSummary


class ScheduledSync:
    """Callback fired by every frequency's cron trigger.

    Settings are read once per firing. The sync runs only when scheduled
    syncing is enabled and the fired frequency is the configured one; it then
    covers yesterday through today.
    """

    def __init__(
        self,
        orchestrator: "SyncOrchestrator",
        store: "HeadlineStore",
        config: GlobalConfig,
        clock: Callable[[], datetime] | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.store = store
        self.config = config
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = logger or structlog.get_logger("headline_harvester.scheduler")

    def __call__(self, frequency: SyncFrequency) -> "SyncSummary | None":
        settings = self.store.get_settings()
        defaults = self.config.schedule
        enabled = defaults.sync_enabled
        configured = defaults.frequency.value
        region = defaults.default_region
        if settings is not None:
            if settings.sync_enabled is not None:
                enabled = settings.sync_enabled
            configured = settings.sync_frequency or configured
            region = settings.default_region or region

        if not enabled:
            self.logger.info("scheduled_sync_skipped", reason="disabled", frequency=frequency.value)
            return None
        if configured != frequency.value:
            self.logger.info(
                "scheduled_sync_skipped",
                reason="frequency_mismatch",
                frequency=frequency.value,
                configured=configured,
            )
            return None

        request = SyncRequest(
            trigger_type=TriggerType.SCHEDULED,
            date_range=DateRangeSpec.last_days(1, today=self.clock().date()),
            max_queries_per_publication=defaults.max_queries_per_publication,
            region=region,
        )
        self.logger.info("scheduled_sync_triggered", frequency=frequency.value, region=region)
        return self.orchestrator.run(request, settings=settings)


__all__ = ["ScheduledSync"]

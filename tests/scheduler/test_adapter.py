from __future__ import annotations

from datetime import date, datetime, timezone
from unittest.mock import MagicMock

from apscheduler.triggers.cron import CronTrigger

from headline_harvester.config import GlobalConfig, ScheduleConfig, SyncFrequency, TriggerType
from headline_harvester.infra import Settings
from headline_harvester.scheduler import APSchedulerAdapter, ScheduledSync

NOW = datetime(2025, 1, 15, 0, 0, tzinfo=timezone.utc)


class StubScheduler:
    def __init__(self) -> None:
        self.calls: list[dict] = []

    def add_job(self, callback, trigger, id, args, replace_existing, max_instances, coalesce):  # noqa: ANN001, A002
        self.calls.append({"id": id, "args": args, "trigger": trigger, "callback": callback})

    def get_jobs(self):
        return []

    def start(self):
        self.calls.append({"event": "started"})

    def shutdown(self, wait=False):  # noqa: ARG002
        self.calls.append({"event": "shutdown"})

    def remove_job(self, job_id):  # noqa: ANN001
        self.calls.append({"event": "remove", "id": job_id})


def test_build_trigger_uses_frequency_cron() -> None:
    trigger = APSchedulerAdapter.build_trigger(SyncFrequency.FORTNIGHTLY)
    assert isinstance(trigger, CronTrigger)
    fields = {field.name: str(field) for field in trigger.fields}
    assert fields["day"] == "1,15"
    assert fields["hour"] == "0"


def test_schedule_all_registers_every_frequency() -> None:
    stub = StubScheduler()
    adapter = APSchedulerAdapter(scheduler=stub)  # type: ignore[arg-type]
    callback = MagicMock()

    job_ids = adapter.schedule_all(callback)

    assert job_ids == [f"sync::{frequency.value}" for frequency in SyncFrequency]
    assert [call["args"] for call in stub.calls] == [[frequency] for frequency in SyncFrequency]
    adapter.start()
    adapter.start()
    adapter.remove_sync(SyncFrequency.DAILY)
    adapter.shutdown()
    events = [call.get("event") for call in stub.calls[len(job_ids):]]
    assert events == ["started", "remove", "shutdown"]


def _job(settings: Settings | None, schedule: ScheduleConfig | None = None):
    store = MagicMock()
    store.get_settings.return_value = settings
    orchestrator = MagicMock()
    config = GlobalConfig(schedule=schedule or ScheduleConfig())
    return ScheduledSync(orchestrator, store, config, clock=lambda: NOW), orchestrator, store


def test_disabled_schedule_skips() -> None:
    job, orchestrator, _ = _job(Settings(sync_enabled=False, sync_frequency="daily"))
    assert job(SyncFrequency.DAILY) is None
    orchestrator.run.assert_not_called()


def test_frequency_mismatch_skips() -> None:
    job, orchestrator, _ = _job(Settings(sync_enabled=True, sync_frequency="weekly"))
    assert job(SyncFrequency.DAILY) is None
    orchestrator.run.assert_not_called()


def test_matching_frequency_runs_yesterday_to_today() -> None:
    job, orchestrator, store = _job(
        Settings(sync_enabled=True, sync_frequency="weekly", default_region="US"),
        ScheduleConfig(max_queries_per_publication=7),
    )

    job(SyncFrequency.WEEKLY)

    store.get_settings.assert_called_once()
    assert orchestrator.run.call_args.kwargs["settings"] is store.get_settings.return_value
    request = orchestrator.run.call_args.args[0]
    assert request.trigger_type is TriggerType.SCHEDULED
    assert (request.date_range.start, request.date_range.end) == (date(2025, 1, 14), date(2025, 1, 15))
    assert request.max_queries_per_publication == 7
    assert request.region == "US"


def test_config_defaults_apply_without_settings_row() -> None:
    job, orchestrator, _ = _job(None, ScheduleConfig(sync_enabled=True))
    job(SyncFrequency.DAILY)
    assert orchestrator.run.call_args.args[0].region == "UK"

"""Typer CLI entrypoint for the headline harvester."""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional, Sequence

import typer
from pydantic import ValidationError
from rich import box
from rich.console import Console
from rich.table import Table
from typer import BadParameter

from .config import ConfigRepository, DateRangeSpec, GlobalConfig, SyncFrequency, SyncRequest, TriggerType
from .engine.search_params import PRESET_TOKENS, normalize_url, publication_key
from .errors import HarvesterError, StoreConflictError
from .infra import HeadlineStore, Settings, SQLiteMessageQueue, SyncRun
from .logging_conf import configure_logging, tail_log
from .orchestrator import SyncOrchestrator, SyncSummary, build_consumer, build_orchestrator, build_queue, build_store
from .scheduler import APSchedulerAdapter, ScheduledSync

app = typer.Typer(help="Headline harvester command line", no_args_is_help=True, rich_markup_mode=None)
sync_app = typer.Typer(name="sync", help="Run or schedule headline syncs", no_args_is_help=True)
worker_app = typer.Typer(name="worker", help="Process queued headlines", no_args_is_help=True)
runs_app = typer.Typer(name="runs", help="Inspect sync run history", no_args_is_help=True)
publications_app = typer.Typer(name="publications", help="Manage the publication catalog", no_args_is_help=True)
settings_app = typer.Typer(name="settings", help="View or change persisted settings", no_args_is_help=True)
logs_app = typer.Typer(name="logs", help="Inspect harvester log files", no_args_is_help=True)

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    config: GlobalConfig
    store: HeadlineStore
    queue: SQLiteMessageQueue
    orchestrator: SyncOrchestrator
    scheduler: APSchedulerAdapter


def build_state(verbose: bool) -> AppState:
    repository = ConfigRepository()
    config = repository.load_global_config()
    configure_logging(verbose=verbose, log_dir=repository.locator.logs_dir)
    store = build_store(config)
    queue = build_queue(config)
    orchestrator = build_orchestrator(config, store=store, queue=queue)
    return AppState(
        repository=repository,
        config=config,
        store=store,
        queue=queue,
        orchestrator=orchestrator,
        scheduler=APSchedulerAdapter(),
    )


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _parse_date_option(value: str, option_name: str) -> date:
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise BadParameter(f"{option_name} must be an ISO date such as 2025-01-14.") from exc


def _resolve_date_range(
    preset: Optional[str], start: Optional[str], end: Optional[str], token: Optional[str]
) -> DateRangeSpec:
    if start or end:
        if not (start and end):
            raise BadParameter("--start and --end must be given together.")
        payload = {
            "start": _parse_date_option(start, "--start"),
            "end": _parse_date_option(end, "--end"),
        }
    elif token:
        payload = {"token": token}
    else:
        payload = {"preset": preset or "past_24_hours"}
    try:
        return DateRangeSpec(**payload)
    except ValidationError as exc:
        raise BadParameter(exc.errors()[0]["msg"]) from exc


def _render_summary(summary: SyncSummary) -> Table:
    table = Table(title=f"Sync result · {summary.sync_run_id}", box=box.SIMPLE_HEAD)
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", style="green", justify="right")
    table.add_row("Publications fetched", str(summary.publications_fetched))
    table.add_row("Headlines fetched", str(summary.total_headlines_fetched))
    table.add_row("Within range", str(summary.headlines_within_range))
    table.add_row("Messages queued", str(summary.messages_queued))
    table.add_row("Send errors", str(summary.message_send_errors))
    if summary.window_start and summary.window_end:
        table.add_row(
            "Window",
            f"{summary.window_start:%Y-%m-%d %H:%M} → {summary.window_end:%Y-%m-%d %H:%M}",
        )
    return table


def _render_runs_table(runs: Sequence[SyncRun]) -> Table:
    table = Table(title=f"Recent sync runs · {len(runs)}", box=box.SIMPLE_HEAD)
    table.add_column("Started", style="green", no_wrap=True)
    table.add_column("Trigger", style="magenta")
    table.add_column("Status", style="cyan")
    table.add_column("Range")
    table.add_column("Fetched", justify="right")
    table.add_column("In range", justify="right")
    table.add_column("Queued", justify="right")
    table.add_column("Error", style="red", overflow="fold")
    for run in runs:
        table.add_row(
            run.started_at,
            run.trigger_type,
            run.status,
            run.custom_time_filter or run.date_range_option or "-",
            _count(run.summary_total_headlines_fetched),
            _count(run.summary_headlines_within_range),
            _count(run.summary_messages_queued),
            run.error_message or "",
        )
    return table


def _render_jobs_table(jobs: Iterable[dict]) -> Table:
    table = Table(title="Scheduled jobs", box=box.SIMPLE_HEAD)
    table.add_column("Job ID", style="cyan", no_wrap=True)
    table.add_column("Next run", style="green")
    table.add_column("Trigger", style="magenta", overflow="fold")
    for job in jobs:
        table.add_row(
            str(job.get("id", "-")),
            str(job.get("next_run_time") or "-"),
            str(job.get("trigger", "-")),
        )
    return table


def _count(value: Optional[int]) -> str:
    return "-" if value is None else str(value)


app.add_typer(sync_app, name="sync")
app.add_typer(worker_app, name="worker")
app.add_typer(runs_app, name="runs")
app.add_typer(publications_app, name="publications")
app.add_typer(settings_app, name="settings")
app.add_typer(logs_app, name="logs")


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging.", is_flag=True),
) -> None:
    ctx.obj = build_state(verbose)


@sync_app.command("run", help="Run a manual sync now.")
def sync_run(
    ctx: typer.Context,
    preset: Optional[str] = typer.Option(
        None, "--preset", help=f"Date range preset: {', '.join(PRESET_TOKENS)}."
    ),
    start: Optional[str] = typer.Option(None, "--start", help="Custom range start (YYYY-MM-DD)."),
    end: Optional[str] = typer.Option(None, "--end", help="Custom range end (YYYY-MM-DD)."),
    token: Optional[str] = typer.Option(None, "--token", help="Raw provider time filter token."),
    max_queries: Optional[int] = typer.Option(
        None, "--max-queries", min=1, help="Maximum pages fetched per publication."
    ),
    region: Optional[str] = typer.Option(None, "--region", help="Region code, e.g. UK or US."),
    urls: Optional[List[str]] = typer.Option(
        None, "--url", help="Crawl only these publication URLs (repeatable)."
    ),
) -> None:
    state = _get_state(ctx)
    request = SyncRequest(
        trigger_type=TriggerType.MANUAL,
        date_range=_resolve_date_range(preset, start, end, token),
        max_queries_per_publication=max_queries or state.config.schedule.max_queries_per_publication,
        region=region,
        publication_urls=list(urls or []),
    )
    try:
        summary = state.orchestrator.run(request)
    except HarvesterError as exc:
        console.print(f"Sync failed: {exc}", style="red")
        raise typer.Exit(code=1) from exc
    console.print(_render_summary(summary))


@sync_app.command("schedule", help="Run scheduled syncs in the foreground.")
def sync_schedule(
    ctx: typer.Context,
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Register the jobs, list them and exit.", is_flag=True
    ),
) -> None:
    state = _get_state(ctx)
    job = ScheduledSync(state.orchestrator, state.store, state.config)
    state.scheduler.schedule_all(job)
    if dry_run:
        console.print(_render_jobs_table(state.scheduler.list_jobs()))
        return
    state.scheduler.start()
    console.print(_render_jobs_table(state.scheduler.list_jobs()))
    console.print("Scheduler running, press Ctrl+C to stop.", style="dim")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("Stopping scheduler.", style="yellow")
    finally:
        state.scheduler.shutdown()


@worker_app.command("run", help="Consume queued headlines.")
def worker_run(
    ctx: typer.Context,
    once: bool = typer.Option(False, "--once", help="Process a single batch and exit.", is_flag=True),
    max_batches: Optional[int] = typer.Option(
        None, "--max-batches", min=1, help="Stop after this many polls."
    ),
) -> None:
    state = _get_state(ctx)
    try:
        consumer = build_consumer(state.config, store=state.store, queue=state.queue)
    except HarvesterError as exc:
        console.print(f"Worker misconfigured: {exc}", style="red")
        raise typer.Exit(code=1) from exc
    if once:
        stats = consumer.run_once()
    else:
        try:
            stats = consumer.run_forever(max_batches=max_batches)
        except KeyboardInterrupt:
            console.print("Worker stopped.", style="yellow")
            return
    table = Table(title="Worker result", box=box.SIMPLE_HEAD)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    table.add_row("Received", str(stats.received))
    table.add_row("Acknowledged", str(stats.acked))
    table.add_row("Retried", str(stats.retried))
    table.add_row("Dead-lettered", str(stats.dead_lettered))
    for outcome, count in sorted(stats.outcomes.items()):
        table.add_row(outcome, str(count))
    console.print(table)


@runs_app.command("list", help="Show the most recent sync runs.")
def runs_list(
    ctx: typer.Context,
    limit: int = typer.Option(20, "--limit", min=1, help="Number of runs to show."),
) -> None:
    state = _get_state(ctx)
    runs = state.store.list_sync_runs(limit=limit)
    if not runs:
        console.print("No sync runs recorded yet.", style="dim")
        return
    console.print(_render_runs_table(runs))


@publications_app.command("list", help="List catalogued publications.")
def publications_list(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    publications = state.store.find_publications()
    if not publications:
        console.print(
            "No publications yet, add one with `headline-harvester publications add`.",
            style="yellow",
        )
        return
    table = Table(title=f"Publications · {len(publications)}", box=box.SIMPLE_HEAD)
    table.add_column("Name", style="cyan")
    table.add_column("URL", style="green", overflow="fold")
    table.add_column("Category", style="magenta")
    for publication in publications:
        table.add_row(publication.name, publication.url, publication.category or "-")
    console.print(table)


@publications_app.command("add", help="Add a publication to the catalog.")
def publications_add(
    ctx: typer.Context,
    url: str = typer.Argument(..., help="Publication URL, e.g. bbc.co.uk."),
    name: Optional[str] = typer.Option(None, "--name", help="Display name (defaults to the host)."),
    category: Optional[str] = typer.Option(None, "--category", help="Publication category."),
) -> None:
    state = _get_state(ctx)
    try:
        publication = state.store.insert_publication(
            name=name or publication_key(url), url=normalize_url(url), category=category
        )
    except StoreConflictError:
        console.print(f"Publication already exists: {url}", style="yellow")
        raise typer.Exit(code=1)
    console.print(f"Added {publication.name} ({publication.id}).", style="green")


@settings_app.command("show", help="Show persisted settings.")
def settings_show(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    settings = state.store.get_settings() or Settings()
    table = Table(title="Settings", box=box.SIMPLE_HEAD)
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("default_region", settings.default_region or "-")
    table.add_row("sync_enabled", "-" if settings.sync_enabled is None else str(settings.sync_enabled))
    table.add_row("sync_frequency", settings.sync_frequency or "-")
    table.add_row("provider_api_key", "set" if settings.provider_api_key else "-")
    console.print(table)


@settings_app.command("set", help="Update persisted settings.")
def settings_set(
    ctx: typer.Context,
    region: Optional[str] = typer.Option(None, "--region", help="Default region code."),
    enabled: Optional[bool] = typer.Option(
        None, "--enabled/--disabled", help="Toggle scheduled syncing."
    ),
    frequency: Optional[SyncFrequency] = typer.Option(
        None, "--frequency", case_sensitive=False, help="Scheduled sync cadence."
    ),
    api_key: Optional[str] = typer.Option(None, "--api-key", help="Provider API key override."),
) -> None:
    state = _get_state(ctx)
    current = state.store.get_settings() or Settings()
    updated = Settings(
        default_region=region.upper() if region else current.default_region,
        sync_enabled=current.sync_enabled if enabled is None else enabled,
        sync_frequency=frequency.value if frequency else current.sync_frequency,
        provider_api_key=api_key or current.provider_api_key,
    )
    state.store.save_settings(updated)
    console.print("Settings saved.", style="green")


@logs_app.command("tail", help="Show the most recent log lines.")
def logs_tail(
    ctx: typer.Context,
    errors: bool = typer.Option(False, "--errors", help="Read error.log instead of harvester.log.", is_flag=True),
    lines: int = typer.Option(100, "--lines", min=1, help="Number of lines to show."),
) -> None:
    state = _get_state(ctx)
    path = state.repository.locator.logs_dir / ("error.log" if errors else "harvester.log")
    recent = tail_log(path, lines)
    if not recent:
        console.print(f"No log lines in {path.name} yet.", style="dim")
        return
    console.print(f"{path.name} · last {len(recent)} lines", style="cyan")
    console.print("".join(recent), end="", markup=False, highlight=False)


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()

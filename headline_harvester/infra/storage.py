"""SQLite persistence for publications, headlines, sync runs and settings."""

from __future__ import annotations

import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Sequence

from ..errors import InvalidReferenceError, StoreConflictError, StoreError

HEADLINE_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS publications (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        url TEXT NOT NULL UNIQUE,
        category TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS headlines (
        id TEXT PRIMARY KEY,
        url TEXT NOT NULL UNIQUE,
        headline TEXT NOT NULL,
        snippet TEXT,
        source TEXT NOT NULL,
        raw_date TEXT,
        normalized_date TEXT,
        category TEXT,
        publication_id TEXT NOT NULL REFERENCES publications(id) ON DELETE CASCADE,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_headlines_publication ON headlines(publication_id)",
    "CREATE INDEX IF NOT EXISTS idx_headlines_created_at ON headlines(created_at)",
    """
    CREATE TABLE IF NOT EXISTS sync_runs (
        id TEXT PRIMARY KEY,
        trigger_type TEXT NOT NULL CHECK (trigger_type IN ('manual', 'scheduled')),
        status TEXT NOT NULL DEFAULT 'started'
            CHECK (status IN ('started', 'completed', 'failed')),
        started_at TEXT NOT NULL,
        finished_at TEXT,
        date_range_option TEXT,
        custom_time_filter TEXT,
        window_start TEXT,
        window_end TEXT,
        max_queries_per_publication INTEGER,
        summary_publications_fetched INTEGER,
        summary_total_headlines_fetched INTEGER,
        summary_headlines_within_range INTEGER,
        summary_messages_queued INTEGER,
        error_message TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS settings (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        default_region TEXT,
        sync_enabled INTEGER,
        sync_frequency TEXT,
        provider_api_key TEXT
    )
    """,
)

TERMINAL_STATUSES = frozenset({"completed", "failed"})
_SYNC_RUN_PATCHABLE = frozenset(
    {
        "status",
        "finished_at",
        "summary_publications_fetched",
        "summary_total_headlines_fetched",
        "summary_headlines_within_range",
        "summary_messages_queued",
        "error_message",
    }
)


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _new_id() -> str:
    return uuid.uuid4().hex


class SQLiteManager:
    """Manage SQLite connections with basic schema guarantees."""

    def __init__(
        self, schema: Sequence[str] = HEADLINE_SCHEMA, busy_timeout: float = 30.0
    ) -> None:
        self.schema = tuple(schema)
        self.busy_timeout = busy_timeout
        self._connections: Dict[Path, sqlite3.Connection] = {}
        self._lock = Lock()

    def connect(self, path: Path) -> sqlite3.Connection:
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            if path not in self._connections:
                conn = sqlite3.connect(path, timeout=self.busy_timeout, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA foreign_keys = ON")
                self._connections[path] = conn
                self._ensure_schema(conn)
            return self._connections[path]

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        for statement in self.schema:
            conn.execute(statement)
        conn.commit()

    def reset(self, path: Path) -> None:
        with self._lock:
            if path in self._connections:
                self._connections[path].close()
                del self._connections[path]
        if path.exists():
            path.unlink()

    def close_all(self) -> None:
        with self._lock:
            for conn in self._connections.values():
                conn.close()
            self._connections.clear()


@dataclass(slots=True)
class Publication:
    id: str
    name: str
    url: str
    category: str | None = None


@dataclass(slots=True)
class Headline:
    id: str
    url: str
    headline: str
    snippet: str | None
    source: str
    raw_date: str | None
    normalized_date: str | None
    category: str | None
    publication_id: str
    created_at: str


@dataclass(slots=True)
class SyncRun:
    id: str
    trigger_type: str
    status: str
    started_at: str
    finished_at: str | None = None
    date_range_option: str | None = None
    custom_time_filter: str | None = None
    window_start: str | None = None
    window_end: str | None = None
    max_queries_per_publication: int | None = None
    summary_publications_fetched: int | None = None
    summary_total_headlines_fetched: int | None = None
    summary_headlines_within_range: int | None = None
    summary_messages_queued: int | None = None
    error_message: str | None = None


@dataclass(slots=True)
class Settings:
    default_region: str | None = None
    sync_enabled: bool | None = None
    sync_frequency: str | None = None
    provider_api_key: str | None = None


class HeadlineStore:
    """Thread-safe repository over one SQLite database.

    ``insert_headline`` raises :class:`StoreConflictError` when the URL is
    already stored and :class:`InvalidReferenceError` when the publication
    does not exist; every other SQLite failure surfaces as :class:`StoreError`.
    """

    def __init__(self, manager: SQLiteManager, db_path: Path) -> None:
        self.manager = manager
        self.db_path = db_path
        self._lock = Lock()
        self._conn = self.manager.connect(db_path)

    # ------------------------------------------------------------------
    # Publications
    # ------------------------------------------------------------------
    def find_publications(self) -> list[Publication]:
        rows = self._query("SELECT id, name, url, category FROM publications ORDER BY name")
        return [Publication(**dict(row)) for row in rows]

    def find_publication_by_url(self, url: str) -> Publication | None:
        rows = self._query(
            "SELECT id, name, url, category FROM publications WHERE url = ?", (url,)
        )
        return Publication(**dict(rows[0])) if rows else None

    def publication_exists(self, publication_id: str) -> bool:
        return bool(self._query("SELECT 1 FROM publications WHERE id = ?", (publication_id,)))

    def insert_publication(
        self, name: str, url: str, category: str | None = None
    ) -> Publication:
        publication = Publication(id=_new_id(), name=name, url=url, category=category)
        self._write(
            "INSERT INTO publications(id, name, url, category, created_at) VALUES (?, ?, ?, ?, ?)",
            (publication.id, name, url, category, utcnow_iso()),
        )
        return publication

    # ------------------------------------------------------------------
    # Headlines
    # ------------------------------------------------------------------
    def find_headline_by_url(self, url: str) -> Headline | None:
        rows = self._query("SELECT * FROM headlines WHERE url = ?", (url,))
        return Headline(**dict(rows[0])) if rows else None

    def insert_headline(
        self,
        *,
        url: str,
        headline: str,
        snippet: str | None,
        source: str,
        raw_date: str | None,
        normalized_date: str | None,
        category: str | None,
        publication_id: str,
    ) -> Headline:
        record = Headline(
            id=_new_id(),
            url=url,
            headline=headline,
            snippet=snippet,
            source=source,
            raw_date=raw_date,
            normalized_date=normalized_date,
            category=category,
            publication_id=publication_id,
            created_at=utcnow_iso(),
        )
        self._write(
            """
            INSERT INTO headlines(id, url, headline, snippet, source, raw_date,
                                  normalized_date, category, publication_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.url,
                record.headline,
                record.snippet,
                record.source,
                record.raw_date,
                record.normalized_date,
                record.category,
                record.publication_id,
                record.created_at,
            ),
        )
        return record

    def count_headlines(self) -> int:
        return int(self._query("SELECT count(*) AS n FROM headlines")[0]["n"])

    def delete_headlines_older_than(self, cutoff: datetime) -> int:
        return self._write(
            "DELETE FROM headlines WHERE created_at < ?",
            (cutoff.astimezone(timezone.utc).isoformat(timespec="seconds"),),
        )

    # ------------------------------------------------------------------
    # Sync runs
    # ------------------------------------------------------------------
    def insert_sync_run(
        self,
        trigger_type: str,
        *,
        date_range_option: str | None = None,
        custom_time_filter: str | None = None,
        window_start: str | None = None,
        window_end: str | None = None,
        max_queries_per_publication: int | None = None,
    ) -> SyncRun:
        run = SyncRun(
            id=_new_id(),
            trigger_type=trigger_type,
            status="started",
            started_at=utcnow_iso(),
            date_range_option=date_range_option,
            custom_time_filter=custom_time_filter,
            window_start=window_start,
            window_end=window_end,
            max_queries_per_publication=max_queries_per_publication,
        )
        self._write(
            """
            INSERT INTO sync_runs(id, trigger_type, status, started_at, date_range_option,
                                  custom_time_filter, window_start, window_end,
                                  max_queries_per_publication)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                run.id,
                run.trigger_type,
                run.status,
                run.started_at,
                run.date_range_option,
                run.custom_time_filter,
                run.window_start,
                run.window_end,
                run.max_queries_per_publication,
            ),
        )
        return run

    def update_sync_run(self, run_id: str, patch: dict[str, Any]) -> None:
        """Close a started run; a run leaves ``started`` exactly once."""

        unknown = set(patch) - _SYNC_RUN_PATCHABLE
        if unknown:
            raise ValueError(f"Unsupported sync run fields: {sorted(unknown)}")
        if patch.get("status") not in TERMINAL_STATUSES:
            raise ValueError("update_sync_run requires a terminal status")
        values = dict(patch)
        values.setdefault("finished_at", utcnow_iso())
        columns = ", ".join(f"{name} = ?" for name in values)
        updated = self._write(
            f"UPDATE sync_runs SET {columns} WHERE id = ? AND status = 'started'",
            (*values.values(), run_id),
        )
        if updated != 1:
            raise StoreError(f"Sync run {run_id} is missing or already finished")

    def get_sync_run(self, run_id: str) -> SyncRun | None:
        rows = self._query("SELECT * FROM sync_runs WHERE id = ?", (run_id,))
        return SyncRun(**dict(rows[0])) if rows else None

    def list_sync_runs(self, limit: int = 20) -> list[SyncRun]:
        rows = self._query(
            "SELECT * FROM sync_runs ORDER BY started_at DESC, rowid DESC LIMIT ?", (limit,)
        )
        return [SyncRun(**dict(row)) for row in rows]

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    def get_settings(self) -> Settings | None:
        rows = self._query(
            "SELECT default_region, sync_enabled, sync_frequency, provider_api_key "
            "FROM settings WHERE id = 1"
        )
        if not rows:
            return None
        row = dict(rows[0])
        if row["sync_enabled"] is not None:
            row["sync_enabled"] = bool(row["sync_enabled"])
        return Settings(**row)

    def save_settings(self, settings: Settings) -> None:
        enabled = None if settings.sync_enabled is None else int(settings.sync_enabled)
        self._write(
            """
            INSERT INTO settings(id, default_region, sync_enabled, sync_frequency, provider_api_key)
            VALUES (1, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                default_region = excluded.default_region,
                sync_enabled = excluded.sync_enabled,
                sync_frequency = excluded.sync_frequency,
                provider_api_key = excluded.provider_api_key
            """,
            (settings.default_region, enabled, settings.sync_frequency, settings.provider_api_key),
        )

    # ------------------------------------------------------------------
    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise StoreError(f"Query failed: {exc}") from exc

    def _write(self, sql: str, params: tuple = ()) -> int:
        with self._lock:
            try:
                cursor = self._conn.execute(sql, params)
                self._conn.commit()
                return cursor.rowcount
            except sqlite3.IntegrityError as exc:
                self._conn.rollback()
                message = str(exc)
                if "UNIQUE constraint failed" in message:
                    raise StoreConflictError(message) from exc
                if "FOREIGN KEY constraint failed" in message:
                    raise InvalidReferenceError(message) from exc
                raise StoreError(message) from exc
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise StoreError(f"Write failed: {exc}") from exc


__all__ = [
    "HEADLINE_SCHEMA",
    "Headline",
    "HeadlineStore",
    "Publication",
    "SQLiteManager",
    "Settings",
    "SyncRun",
    "TERMINAL_STATUSES",
    "utcnow_iso",
]

"""Provider date parsing, in-run deduplication and date window filtering."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable

import structlog
from dateutil import parser as dateutil_parser
from dateutil.relativedelta import relativedelta

from .crawler import CrawlResult
from .fetcher import NewsItem

_RELATIVE_PATTERN = re.compile(
    r"(\d+|an?)\s+(second|minute|hour|day|week|month|year)s?\s+ago", re.IGNORECASE
)
_ABSOLUTE_FORMATS = (
    "%d %b %Y",
    "%d %B %Y",
    "%b %d, %Y",
    "%B %d, %Y",
)
NORMALIZED_DATE_FORMAT = "%d/%m/%Y"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_provider_date(text: str | None, now: datetime | None = None) -> datetime | None:
    """Parse a provider date string into an aware UTC datetime.

    Tries relative phrases ("3 hours ago", "a day ago"), then the absolute
    formats the provider emits ("25 Aug 2024", "Aug 25, 2024"), then a generic
    dateutil parse. Returns ``None`` when nothing matches.
    """

    if not text or not text.strip():
        return None
    value = text.strip()
    reference = _as_utc(now) if now else datetime.now(timezone.utc)

    match = _RELATIVE_PATTERN.search(value)
    if match:
        raw_amount, unit = match.group(1).lower(), match.group(2).lower()
        amount = 1 if raw_amount in ("a", "an") else int(raw_amount)
        return reference - relativedelta(**{f"{unit}s": amount})

    for fmt in _ABSOLUTE_FORMATS:
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue

    # Bare words ("Monday") parse to arbitrary dates; insist on at least one digit.
    if not any(ch.isdigit() for ch in value):
        return None
    try:
        return _as_utc(dateutil_parser.parse(value))
    except (ValueError, OverflowError):
        return None


@dataclass(slots=True)
class CandidateHeadline:
    """A fetched item that passed filtering but is not yet known to be new."""

    publication_url: str
    item: NewsItem
    published_at: datetime

    @property
    def normalized_date(self) -> str:
        return self.published_at.strftime(NORMALIZED_DATE_FORMAT)


@dataclass(slots=True)
class FilterReport:
    candidates: list[CandidateHeadline] = field(default_factory=list)
    total_items: int = 0
    duplicates: int = 0
    unparseable: int = 0
    out_of_window: int = 0

    @property
    def within_range(self) -> int:
        return len(self.candidates)


class DateFilter:
    """Keep items with a parseable date inside the (buffered) window.

    Items whose date cannot be parsed are dropped: their freshness cannot be
    certified. Repeated links within one run are dropped after the first.
    """

    def __init__(
        self,
        window: tuple[datetime, datetime] | None = None,
        buffer: timedelta = timedelta(0),
        now: datetime | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        if window is not None:
            start, end = _as_utc(window[0]), _as_utc(window[1])
            if end < start:
                raise ValueError("window end must not be earlier than start")
            window = (start, end)
        if buffer < timedelta(0):
            raise ValueError("buffer must be non-negative")
        self.window = window
        self.buffer = buffer
        self.now = now
        self.logger = logger or structlog.get_logger("headline_harvester.date_filter")

    def accepts(self, published_at: datetime) -> bool:
        if self.window is None:
            return True
        start, end = self.window
        return start - self.buffer <= published_at <= end + self.buffer

    def apply(self, results: Iterable[CrawlResult]) -> FilterReport:
        report = FilterReport()
        seen: set[str] = set()
        now = self.now or datetime.now(timezone.utc)
        for result in results:
            for item in result.results:
                report.total_items += 1
                if item.link in seen:
                    report.duplicates += 1
                    continue
                seen.add(item.link)
                published_at = parse_provider_date(item.date, now=now)
                if published_at is None:
                    report.unparseable += 1
                    self.logger.debug(
                        "item_dropped_unparseable_date",
                        url=item.link,
                        raw_date=item.date,
                    )
                    continue
                if not self.accepts(published_at):
                    report.out_of_window += 1
                    self.logger.debug(
                        "item_dropped_out_of_window",
                        url=item.link,
                        published_at=published_at.isoformat(),
                    )
                    continue
                report.candidates.append(
                    CandidateHeadline(
                        publication_url=result.url,
                        item=item,
                        published_at=published_at,
                    )
                )
        self.logger.info(
            "date_filter_applied",
            total=report.total_items,
            kept=report.within_range,
            duplicates=report.duplicates,
            unparseable=report.unparseable,
            out_of_window=report.out_of_window,
        )
        return report


__all__ = [
    "CandidateHeadline",
    "DateFilter",
    "FilterReport",
    "NORMALIZED_DATE_FORMAT",
    "parse_provider_date",
]

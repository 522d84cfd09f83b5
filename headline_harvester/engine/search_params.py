"""Provider query helpers: site queries, time filter tokens, geo parameters."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from urllib.parse import urlparse

from dateutil.relativedelta import relativedelta

from ..errors import MalformedInputError

_HOSTNAME_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]*[a-z0-9])?(?:\.[a-z0-9](?:[a-z0-9-]*[a-z0-9])?)*$")
_SCHEME_PATTERN = re.compile(r"^https?://", re.IGNORECASE)

PRESET_TOKENS: dict[str, str] = {
    "past_hour": "qdr:h",
    "past_24_hours": "qdr:d",
    "past_week": "qdr:w",
    "past_month": "qdr:m",
    "past_year": "qdr:y",
}
DEFAULT_TOKEN = "qdr:w"

_TOKEN_SPANS = {
    "qdr:h": relativedelta(hours=1),
    "qdr:d": relativedelta(days=1),
    "qdr:w": relativedelta(weeks=1),
    "qdr:m": relativedelta(months=1),
    "qdr:y": relativedelta(years=1),
}


@dataclass(frozen=True, slots=True)
class GeoParams:
    gl: str
    location: str


_REGIONS = {
    "UK": GeoParams(gl="gb", location="United Kingdom"),
    "US": GeoParams(gl="us", location="United States"),
}


def geo_params(region: str | None) -> GeoParams:
    """Map a region code to provider geo parameters; unknown regions fall back to US."""

    return _REGIONS.get((region or "").upper(), _REGIONS["US"])


def normalize_url(url: str, include_protocol: bool = True) -> str:
    stripped = _SCHEME_PATTERN.sub("", url.strip())
    return f"https://{stripped}" if include_protocol else stripped


def publication_key(url: str) -> str:
    """Lookup key for a publication URL: no scheme, no trailing slash, lower-case host."""

    return normalize_url(url, include_protocol=False).rstrip("/").lower()


def hostname_of(url: str) -> str:
    if not url or not url.strip():
        raise MalformedInputError("Invalid URL format: empty")
    try:
        parsed = urlparse(normalize_url(url))
        hostname = parsed.hostname
    except ValueError as exc:
        raise MalformedInputError(f"Invalid URL format: {url}") from exc
    if not hostname or not _HOSTNAME_PATTERN.match(hostname):
        raise MalformedInputError(f"Invalid URL format: {url}")
    return hostname


def site_query(url: str) -> str:
    return f"site:{hostname_of(url)}"


def custom_time_filter(start: date, end: date) -> str:
    return f"cdr:1,cd_min:{start:%m/%d/%Y},cd_max:{end:%m/%d/%Y}"


def _parse_mm_dd_yyyy(text: str) -> datetime | None:
    try:
        parsed = datetime.strptime(text.strip(), "%m/%d/%Y")
    except ValueError:
        return None
    return parsed.replace(tzinfo=timezone.utc)


def time_filter_to_window(token: str, now: datetime | None = None) -> tuple[datetime, datetime]:
    """Turn a time filter token back into a concrete ``(start, end)`` window.

    Unknown or unparseable tokens resolve to the past week.
    """

    end = now or datetime.now(timezone.utc)
    if token in _TOKEN_SPANS:
        return end - _TOKEN_SPANS[token], end
    min_match = re.search(r"cd_min:([^,]+)", token)
    max_match = re.search(r"cd_max:([^,]+)", token)
    start = _parse_mm_dd_yyyy(min_match.group(1)) if min_match else None
    if start is None:
        return end - _TOKEN_SPANS[DEFAULT_TOKEN], end
    custom_end = _parse_mm_dd_yyyy(max_match.group(1)) if max_match else None
    if custom_end is not None:
        # cd_max names a whole day; include all of it.
        end = custom_end + timedelta(days=1) - timedelta(microseconds=1)
    return start, end


__all__ = [
    "DEFAULT_TOKEN",
    "GeoParams",
    "PRESET_TOKENS",
    "custom_time_filter",
    "geo_params",
    "hostname_of",
    "normalize_url",
    "publication_key",
    "site_query",
    "time_filter_to_window",
]

from __future__ import annotations
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

from dateutil import parser as date_parser

from jobfeed.core.config import settings
from jobfeed.crawlers.base import DATE_ABSOLUTE, DATE_ESTIMATED, DATE_RELATIVE, Listing

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _count(unit: timedelta) -> Callable[[re.Match], timedelta]:
    return lambda match: unit * int(match.group(1))


_NUM = r"\b(\d{1,3})\+?\s*"

# Ordered: the first pattern that matches decides the date.
RELATIVE_DATE_PATTERNS: list[tuple[re.Pattern, Callable[[re.Match], timedelta]]] = [
    (re.compile(r"\bjust\s+(?:now|posted)\b|\bfew\s+(?:seconds|moments)\s+ago\b", re.I), lambda _m: timedelta(0)),
    (re.compile(r"\btoday\b", re.I), lambda _m: timedelta(0)),
    (re.compile(r"\byesterday\b", re.I), lambda _m: timedelta(days=1)),
    (re.compile(_NUM + r"(?:minutes?|mins?|m)\s+ago", re.I), _count(timedelta(minutes=1))),
    (re.compile(_NUM + r"(?:hours?|hrs?|h)\s+ago", re.I), _count(timedelta(hours=1))),
    (re.compile(_NUM + r"(?:days?|d)\s+ago", re.I), _count(timedelta(days=1))),
    (re.compile(_NUM + r"(?:weeks?|wks?|w)\s+ago", re.I), _count(timedelta(weeks=1))),
    (re.compile(_NUM + r"(?:months?|mo)\s+ago", re.I), _count(timedelta(days=30))),
    # Compact badges such as "5h" or "2w" with nothing else around them.
    (re.compile(r"^\s*(\d{1,3})\s*(?:m|min|mins)\s*$", re.I), _count(timedelta(minutes=1))),
    (re.compile(r"^\s*(\d{1,3})\s*(?:h|hr|hrs)\s*$", re.I), _count(timedelta(hours=1))),
    (re.compile(r"^\s*(\d{1,3})\s*d\s*$", re.I), _count(timedelta(days=1))),
    (re.compile(r"^\s*(\d{1,3})\s*(?:w|wk|wks)\s*$", re.I), _count(timedelta(weeks=1))),
    (re.compile(r"^\s*(\d{1,3})\s*mo\s*$", re.I), _count(timedelta(days=30))),
]

_YEAR_RE = re.compile(r"\b(19|20)\d{2}\b")
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")

# Parsed twice against different defaults: a day or month that changes was never in the text.
_DEFAULTS = (datetime(2000, 1, 1), datetime(2000, 2, 2))


def parse_relative_date(text: str, now: datetime | None = None) -> datetime | None:
    if not text:
        return None
    now = now or utcnow()
    for pattern, to_delta in RELATIVE_DATE_PATTERNS:
        match = pattern.search(text)
        if match:
            return now - to_delta(match)
    return None


def parse_absolute_date(text: str, now: datetime | None = None) -> datetime | None:
    """A calendar date from ``text``; text without both a day and a month is rejected."""
    raw = (text or "").strip()
    if not raw or not _YEAR_RE.search(raw):
        return None
    now = now or utcnow()
    parsed = None
    if _ISO_DATE_RE.match(raw):
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            parsed = None
    if parsed is None:
        try:
            first, second = (date_parser.parse(raw, fuzzy=True, default=default) for default in _DEFAULTS)
        except (ValueError, OverflowError):
            return None
        if (first.month, first.day) != (second.month, second.day):
            return None
        parsed = first
    parsed = _aware(parsed)
    # A date well in the future is an application deadline, not a posting date.
    if parsed > now + timedelta(days=1):
        return None
    return parsed


def parse_posted_date(text: str, now: datetime | None = None) -> tuple[datetime, str] | None:
    """Turn posted-date text into ``(timestamp, date_source)``; relative phrases win over absolute dates."""
    relative = parse_relative_date(text, now)
    if relative is not None:
        return relative, DATE_RELATIVE
    absolute = parse_absolute_date(text, now)
    if absolute is not None:
        return absolute, DATE_ABSOLUTE
    return None


def enrich_missing_dates(
    listings: Iterable[Listing], now: datetime | None = None, assumed_age: timedelta | None = None
) -> list[Listing]:
    """Give every undated listing a date: parsed from its posted text, else a conservative estimate."""
    now = now or utcnow()
    if assumed_age is None:
        assumed_age = timedelta(days=settings.assumed_listing_age_days)

    listings = list(listings)
    estimated = 0
    for listing in listings:
        if listing.posted_date is not None:
            continue
        parsed = parse_posted_date(listing.posted_text, now) if listing.posted_text else None
        if parsed is not None:
            listing.posted_date, listing.date_source = parsed
        else:
            listing.posted_date = now - assumed_age
            listing.date_source = DATE_ESTIMATED
            estimated += 1
    if estimated:
        logger.debug("[freshness] estimated posted dates for %d listing(s)", estimated)
    return listings


def _window(window: timedelta | float | int) -> timedelta:
    return window if isinstance(window, timedelta) else timedelta(days=window)


def is_fresh(listing: Listing, cutoff: datetime) -> bool:
    best = listing.best_date()
    if best is None:
        # Undated listings are kept rather than starving the aggregate.
        return True
    return _aware(best) > cutoff


def filter_fresh(
    listings: Iterable[Listing], window: timedelta | float | int | None = None, now: datetime | None = None
) -> list[Listing]:
    """Keep listings whose best-known date is after ``now - window`` (days when numeric)."""
    if window is None:
        window = settings.freshness_window_days
    cutoff = (now or utcnow()) - _window(window)
    return [listing for listing in listings if is_fresh(listing, cutoff)]


def filter_between(
    listings: Iterable[Listing], start: datetime | None = None, end: datetime | None = None
) -> list[Listing]:
    """Inclusive custom range; undated listings are excluded here."""
    kept: list[Listing] = []
    for listing in listings:
        best = listing.best_date()
        if best is None:
            continue
        best = _aware(best)
        if start is not None and best < _aware(start):
            continue
        if end is not None and best > _aware(end):
            continue
        kept.append(listing)
    return kept

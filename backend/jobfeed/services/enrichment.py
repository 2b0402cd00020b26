from __future__ import annotations
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Iterable

from bs4 import BeautifulSoup

from jobfeed.core.config import Settings, settings
from jobfeed.crawlers.base import DATE_ABSOLUTE, DATE_ESTIMATED, DATE_PRECISION, Listing
from jobfeed.crawlers.http_helpers import RateLimitedFetcher
from jobfeed.services.freshness import parse_absolute_date, parse_posted_date
from jobfeed.services.link_verifier import clean_url, is_valid_url
from jobfeed.utils.concurrency import gather_best_effort

logger = logging.getLogger(__name__)

DESCRIPTION_SELECTORS = (
    ".job-description, .jobsearch-jobDescriptionText, .description, .job-details, .job-summary, "
    "[class*='description'], [class*='detail'], [class*='summary']"
)
SALARY_SELECTORS = ".salary, .compensation, .pay, [class*='salary'], [class*='compensation']"
LOCATION_SELECTORS = ".location, .job-location, .workplace-location, [class*='location'], [data-testid*='location']"
COMPANY_SELECTORS = ".company, .employer, .company-name, [class*='company'], [class*='employer']"
DATE_SELECTORS = (
    "time, .date, .posted-date, .job-date, .publish-date, .timestamp, [class*='posted'], [class*='date']"
)

MIN_DESCRIPTION_BLOCK = 50
MAX_DESCRIPTION = 5000
THIN_DESCRIPTION = 200

_DIGIT_RE = re.compile(r"\d")
# "job-date" or "postedAt", but not "candidate".
_DATE_CLASS_RE = re.compile(r"(?<![a-zA-Z])(?:date|posted|published|timestamp)|Date|Posted|Published")


def needs_enrichment(listing: Listing) -> bool:
    return (
        len(listing.description or "") < THIN_DESCRIPTION
        or not listing.location
        or not listing.salary_range
        or listing.date_source in (None, DATE_ESTIMATED)
    )


def _short_text(soup: BeautifulSoup, selectors: str, accept) -> str:
    for node in soup.select(selectors):
        text = node.get_text(" ", strip=True)
        if text and accept(text):
            return text
    return ""


def extract_description(soup: BeautifulSoup) -> str:
    parts: list[str] = []
    size = 0
    for node in soup.select(DESCRIPTION_SELECTORS):
        text = node.get_text(" ", strip=True)
        # Nested matches repeat their parent's text.
        if len(text) < MIN_DESCRIPTION_BLOCK or any(text in part for part in parts):
            continue
        parts.append(text)
        size += len(text)
        if size > MAX_DESCRIPTION:
            break
    return " ".join(parts)[:MAX_DESCRIPTION].strip()


def extract_posted(soup: BeautifulSoup) -> tuple | None:
    """Best ``(timestamp, date_source)`` found on a detail page, trying ``datetime`` attributes first."""
    for node in soup.select(DATE_SELECTORS):
        if node.name != "time" and not any(_DATE_CLASS_RE.search(name) for name in node.get("class") or ()):
            continue
        stamp = node.get("datetime")
        if stamp:
            parsed = parse_absolute_date(stamp)
            if parsed is not None:
                return parsed, DATE_ABSOLUTE
        text = node.get_text(" ", strip=True)
        if text and len(text) < 120:
            parsed_text = parse_posted_date(text)
            if parsed_text is not None:
                return parsed_text
    return None


def _backdates(listing: Listing, candidate: datetime, limit: timedelta | None) -> bool:
    """Whether ``candidate`` would push an observed date back by more than ``limit``."""
    if limit is None or listing.posted_date is None or listing.date_source in (None, DATE_ESTIMATED):
        return False
    current = listing.posted_date
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return current - candidate > limit


def apply_details(listing: Listing, html: str, max_backdate: timedelta | None = None) -> Listing:
    soup = BeautifulSoup(html, "html.parser")

    description = extract_description(soup)
    if len(description) > len(listing.description or ""):
        listing.description = description

    if not listing.location:
        listing.location = _short_text(soup, LOCATION_SELECTORS, lambda t: 2 < len(t) < 100)
    if not listing.salary_range:
        listing.salary_range = _short_text(
            soup, SALARY_SELECTORS, lambda t: len(t) < 100 and bool(_DIGIT_RE.search(t))
        )
    if not listing.company:
        listing.company = _short_text(soup, COMPANY_SELECTORS, lambda t: 1 < len(t) < 100)

    posted = extract_posted(soup)
    if posted is not None:
        posted_date, date_source = posted
        # Only a strictly more specific date may replace the current one.
        if DATE_PRECISION[date_source] > DATE_PRECISION.get(listing.date_source, 0) and not _backdates(
            listing, posted_date, max_backdate
        ):
            listing.posted_date = posted_date
            listing.date_source = date_source
    return listing


class DeepEnricher:
    """Re-fetches detail pages for a bounded number of listings to backfill missing fields.

    Strictly best-effort: each listing is enriched on a copy, and the copy
    only replaces the original if its fetch finished in time and succeeded.
    """

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        max_count: int = 50,
        workers: int = 5,
        timeout: float = 30.0,
        max_backdate: timedelta | None = None,
    ):
        self.fetcher = fetcher
        self.max_backdate = max_backdate
        self.max_count = max_count
        self.workers = workers
        self.timeout = timeout

    @classmethod
    def from_settings(cls, fetcher: RateLimitedFetcher, cfg: Settings = settings) -> "DeepEnricher":
        return cls(
            fetcher,
            max_count=cfg.max_enrichment_count,
            workers=cfg.enrichment_workers,
            timeout=cfg.enrichment_timeout_seconds,
            max_backdate=timedelta(days=cfg.freshness_window_days),
        )

    async def enhance(self, listings: Iterable[Listing], timeout: float | None = None) -> list[Listing]:
        """``timeout`` can only shorten the configured stage timeout."""
        listings = list(listings)
        timeout = self.timeout if timeout is None else min(self.timeout, timeout)
        candidates = [i for i, listing in enumerate(listings) if needs_enrichment(listing)][: self.max_count]
        if not candidates:
            return listings

        outcomes = await gather_best_effort(
            (self.enrich_one(listings[i].copy()) for i in candidates),
            timeout=timeout,
            limit=self.workers,
        )

        enriched = 0
        for index, outcome in zip(candidates, outcomes):
            if outcome.error is not None:
                logger.warning("[enrichment] %r failed: %s", listings[index].title, outcome.error)
            if outcome.ok and outcome.result is not None:
                listings[index] = outcome.result
                enriched += 1

        abandoned = sum(1 for outcome in outcomes if not outcome.done)
        logger.info(
            "[enrichment] enriched %d of %d candidate(s), %d abandoned at deadline",
            enriched,
            len(candidates),
            abandoned,
        )
        return listings

    async def enrich_one(self, listing: Listing) -> Listing | None:
        url = clean_url(listing.apply_url)
        if not is_valid_url(url):
            return None

        result = await self.fetcher.fetch(url)
        if not result.ok:
            logger.debug("[enrichment] detail page unavailable for %s: %s", url, result.error)
            return None

        listing.apply_url = result.final_url or url
        return apply_details(listing, result.html, self.max_backdate)

from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from jobfeed.core.config import SourceSettings, settings

if TYPE_CHECKING:
    from jobfeed.crawlers.http_helpers import RateLimitedFetcher

logger = logging.getLogger(__name__)

# How a posted date was obtained, least to most specific.
DATE_ESTIMATED = "estimated"
DATE_RELATIVE = "relative"
DATE_ABSOLUTE = "absolute"
DATE_PRECISION = {None: 0, DATE_ESTIMATED: 1, DATE_RELATIVE: 2, DATE_ABSOLUTE: 3}


@dataclass
class Listing:
    title: str
    company: str = ""
    location: str = ""
    source: str = ""
    apply_url: str = ""
    description: str = ""
    salary_range: str = ""
    job_type: str = "unknown"
    posted_date: datetime | None = None
    posted_text: str = ""
    date_source: str | None = None
    created_at: datetime | None = None
    link_verified: bool = False
    raw_payload: dict = field(default_factory=dict)

    def is_valid(self) -> bool:
        """Only listings with a title, a company and an apply URL may be aggregated."""
        return bool((self.title or "").strip() and (self.company or "").strip() and (self.apply_url or "").strip())

    def best_date(self) -> datetime | None:
        return self.posted_date or self.created_at

    def copy(self) -> "Listing":
        return replace(self, raw_payload=dict(self.raw_payload))


PageCallback = Callable[[list[Listing]], None]


@dataclass
class SourceResult:
    """Tagged adapter result: ``ok`` with listings, ``empty``, or ``failed`` with a reason."""

    status: str
    listings: list[Listing] = field(default_factory=list)
    error: str | None = None

    @classmethod
    def ok(cls, listings: list[Listing]) -> "SourceResult":
        if not listings:
            return cls.empty()
        return cls(status="ok", listings=list(listings))

    @classmethod
    def empty(cls) -> "SourceResult":
        return cls(status="empty")

    @classmethod
    def failed(cls, reason: str) -> "SourceResult":
        return cls(status="failed", error=reason)

    @property
    def is_failed(self) -> bool:
        return self.status == "failed"


@dataclass
class SourceOutcome:
    source: str
    status: str
    listing_count: int = 0
    elapsed: float = 0.0
    error: str | None = None


class SourceAdapter:
    source_name: str

    def __init__(self, config: SourceSettings | None = None):
        self.config = config or settings.source(self.source_name)

    def name(self) -> str:
        return self.source_name

    def is_enabled(self) -> bool:
        return self.config.enabled

    def min_delay(self) -> float:
        return self.config.request_delay_seconds

    async def fetch_listings(self, on_page: PageCallback | None = None) -> SourceResult:
        raise NotImplementedError


class PagedSourceAdapter(SourceAdapter):
    """Adapter for search pages fetched in order until one comes back empty.

    Subclasses provide ``page_url`` and ``parse_page``. Fetching, retries and
    per-host spacing are delegated to the shared ``RateLimitedFetcher``; this
    class only adds the inter-page delay and the stop conditions.
    """

    def __init__(self, fetcher: RateLimitedFetcher, config: SourceSettings | None = None):
        super().__init__(config)
        self.fetcher = fetcher

    def page_url(self, page: int) -> str:
        raise NotImplementedError

    def parse_page(self, html: str, page_url: str) -> list[Listing]:
        raise NotImplementedError

    async def fetch_listings(self, on_page: PageCallback | None = None) -> SourceResult:
        listings: list[Listing] = []
        seen: set[str] = set()

        for page in range(1, self.config.max_pages + 1):
            if page > 1 and self.min_delay() > 0:
                await asyncio.sleep(self.min_delay())

            url = self.page_url(page)
            result = await self.fetcher.fetch(url, max_retries=self.config.max_retries)
            if not result.ok:
                logger.warning("[%s] page %d failed: %s", self.source_name, page, result.error)
                if listings:
                    break
                return SourceResult.failed(str(result.error))

            batch: list[Listing] = []
            for item in self.parse_page(result.html, url):
                if not item.is_valid() or item.apply_url in seen:
                    continue
                seen.add(item.apply_url)
                item.source = self.source_name
                batch.append(item)

            if not batch:
                logger.info("[%s] page %d yielded no new listings, stopping", self.source_name, page)
                break

            listings.extend(batch)
            if on_page is not None:
                on_page(batch)

        return SourceResult.ok(listings)

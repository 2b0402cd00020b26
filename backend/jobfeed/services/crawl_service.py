from __future__ import annotations
import asyncio
import contextlib
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Iterable

import httpx

from jobfeed.core.config import Settings, settings
from jobfeed.crawlers.base import Listing, SourceAdapter, SourceOutcome, SourceResult
from jobfeed.crawlers.http_helpers import RateLimitedFetcher
from jobfeed.crawlers.registry import build_adapters
from jobfeed.services.dedupe import dedupe, truncate_fields
from jobfeed.services.enrichment import DeepEnricher
from jobfeed.services.freshness import enrich_missing_dates, filter_fresh, utcnow
from jobfeed.services.health import HealthTracker
from jobfeed.services.link_verifier import LinkVerifier
from jobfeed.utils.concurrency import gather_best_effort

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    NOT_STARTED = "not_started"
    FANNING_OUT = "fanning_out"
    COLLECTING = "collecting"
    REDUCING = "reducing"
    DONE = "done"


class UnknownSourceError(LookupError):
    pass


@dataclass
class AggregationRun:
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: RunState = RunState.NOT_STARTED
    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None
    outcomes: dict[str, SourceOutcome] = field(default_factory=dict)
    listings: list[Listing] = field(default_factory=list)
    raw_count: int = 0

    @property
    def contributing_sources(self) -> list[str]:
        return [name for name, outcome in self.outcomes.items() if outcome.listing_count > 0]


class ListingCollector:
    """Append-only listing sink shared by all source tasks of one run."""

    def __init__(self):
        self._items: list[Listing] = []
        self._counts: dict[str, int] = {}
        self._lock = threading.Lock()

    def add(self, source: str, listings: list[Listing]) -> None:
        with self._lock:
            self._items.extend(listings)
            self._counts[source] = self._counts.get(source, 0) + len(listings)

    def count(self, source: str) -> int:
        with self._lock:
            return self._counts.get(source, 0)

    def snapshot(self) -> list[Listing]:
        with self._lock:
            return list(self._items)


RunCallback = Callable[[AggregationRun], None]


def _remaining(finish_by: float | None) -> float | None:
    return None if finish_by is None else finish_by - time.monotonic()


class AggregationService:
    """Fans out over every enabled source, then dedupes, filters, enriches and verifies.

    The aggregate is cached for ``aggregate_cache_ttl_seconds``; ``invalidate_cache``
    forces the next ``aggregate`` call to scrape again. Callers always get a list,
    possibly empty, and never an exception for source failures.
    """

    def __init__(
        self,
        adapters: Iterable[SourceAdapter],
        health: HealthTracker | None = None,
        enricher: DeepEnricher | None = None,
        verifier: LinkVerifier | None = None,
        cfg: Settings = settings,
        on_run: RunCallback | None = None,
        fetcher: RateLimitedFetcher | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.adapters = {adapter.name().lower(): adapter for adapter in adapters}
        self.health = health or HealthTracker()
        self.enricher = enricher
        self.verifier = verifier
        self.cfg = cfg
        self.on_run = on_run
        self.fetcher = fetcher
        self._clock = clock
        self._cache: tuple[list[Listing], float] | None = None
        self._cache_lock = threading.Lock()
        self._run_lock = asyncio.Lock()
        self._last_run: AggregationRun | None = None
        self._refresh_task: asyncio.Task | None = None

    # Public operations

    async def aggregate(self, force: bool = False) -> list[Listing]:
        if not force:
            cached = self._cached()
            if cached is not None:
                return cached

        async with self._run_lock:
            # Another caller may have refreshed while this one waited.
            if not force:
                cached = self._cached()
                if cached is not None:
                    return cached
            run = await self.run()
            with self._cache_lock:
                self._cache = (list(run.listings), self._clock())
            return list(run.listings)

    def invalidate_cache(self) -> None:
        with self._cache_lock:
            self._cache = None
        logger.info("[aggregator] aggregate cache invalidated")

    async def scrape_single_source(self, name: str) -> list[Listing]:
        adapter = self.adapters.get((name or "").lower())
        if adapter is None:
            raise UnknownSourceError(name)
        if not adapter.is_enabled():
            logger.info("[aggregator] source %s is disabled", adapter.name())
            return []

        collector = ListingCollector()
        outcome = await self._run_source(adapter, collector)
        logger.info(
            "[aggregator] single-source scrape of %s: %s, %d listing(s)",
            outcome.source,
            outcome.status,
            outcome.listing_count,
        )
        return filter_fresh(dedupe(collector.snapshot()), self.cfg.freshness_window_days)

    async def fresh_within(self, hours: float) -> list[Listing]:
        if hours <= 0:
            raise ValueError("hours must be positive")
        listings = await self.aggregate()
        return filter_fresh(listings, timedelta(hours=hours))

    def last_run(self) -> AggregationRun | None:
        return self._last_run

    # Run

    async def run(self) -> AggregationRun:
        run = AggregationRun()
        self._last_run = run
        deadline = self.cfg.aggregation_deadline_seconds

        enabled: list[SourceAdapter] = []
        for name, adapter in self.adapters.items():
            if adapter.is_enabled():
                enabled.append(adapter)
            else:
                run.outcomes[name] = SourceOutcome(source=adapter.name(), status="disabled")

        logger.info("[aggregator] run %s starting with %d source(s), deadline %gs", run.run_id, len(enabled), deadline)
        run.state = RunState.FANNING_OUT
        collector = ListingCollector()
        started = time.monotonic()
        tasks = [self._run_source(adapter, collector) for adapter in enabled]

        run.state = RunState.COLLECTING
        results = await gather_best_effort(tasks, timeout=deadline, limit=self.cfg.fanout_workers)

        for adapter, result in zip(enabled, results):
            name = adapter.name()
            if result.ok:
                run.outcomes[name.lower()] = result.result
                continue
            # Abandoned at the deadline; whatever it appended already stays.
            message = f"abandoned at {deadline:g}s deadline"
            if result.error is not None:
                message = f"{type(result.error).__name__}: {result.error}"
            logger.warning("[aggregator] %s %s", name, message)
            self.health.record_failure(name, message)
            run.outcomes[name.lower()] = SourceOutcome(
                source=name,
                status="timeout" if result.error is None else "failed",
                listing_count=collector.count(name),
                elapsed=time.monotonic() - started,
                error=message,
            )

        raw = collector.snapshot()
        run.raw_count = len(raw)
        run.state = RunState.REDUCING
        run.listings = await self.reduce(raw, budget=deadline - (time.monotonic() - started))
        run.state = RunState.DONE
        run.finished_at = utcnow()

        self._log_summary(run)
        if not run.contributing_sources:
            logger.error("[aggregator] run %s: no source contributed any listings", run.run_id)
        if self.on_run is not None:
            # Run history is a blocking database write.
            await asyncio.to_thread(self.on_run, run)
        return run

    async def reduce(self, listings: list[Listing], budget: float | None = None) -> list[Listing]:
        """Validity, dedupe and freshness, then enrichment and verification inside ``budget`` seconds."""
        window = self.cfg.freshness_window_days
        finish_by = None if budget is None else time.monotonic() + budget
        listings = dedupe(listing for listing in listings if listing.is_valid())
        listings = filter_fresh(listings, window)
        logger.info("[aggregator] %d listing(s) after dedupe and freshness", len(listings))

        if self.enricher is not None and self.cfg.deep_enrichment_enabled:
            remaining = _remaining(finish_by)
            if remaining is not None and remaining <= 0:
                logger.warning("[aggregator] run deadline reached, skipping deep enrichment")
            else:
                listings = await self.enricher.enhance(listings, timeout=remaining)
        if self.verifier is not None and self.cfg.link_verification_enabled:
            remaining = _remaining(finish_by)
            if remaining is not None and remaining <= 0:
                # Listings with unchecked links are kept.
                logger.warning("[aggregator] run deadline reached, skipping link verification")
            else:
                listings = await self.verifier.verify_all(listings, timeout=remaining)

        # Enrichment can fill in locations and verification rewrites URLs.
        listings = dedupe(listings)
        # Dates were set before the adapters finished; re-check against the current time.
        listings = filter_fresh(listings, window)
        return [listing for listing in listings if listing.is_valid()]

    async def _run_source(self, adapter: SourceAdapter, collector: ListingCollector) -> SourceOutcome:
        name = adapter.name()
        started = time.monotonic()
        streamed: set[int] = set()

        def on_page(batch: list[Listing]) -> None:
            streamed.update(id(item) for item in batch)
            collector.add(name, self.prepare(name, batch))

        timeout = self.cfg.source_timeout_seconds
        try:
            result = await asyncio.wait_for(adapter.fetch_listings(on_page=on_page), timeout=timeout)
        except asyncio.TimeoutError:
            result = SourceResult.failed(f"timed out after {timeout:g}s")
        except Exception as exc:  # noqa: BLE001
            logger.exception("[aggregator] %s raised", name)
            result = SourceResult.failed(f"{type(exc).__name__}: {exc}")

        remaining = [item for item in result.listings if id(item) not in streamed]
        if remaining:
            collector.add(name, self.prepare(name, remaining))

        count = collector.count(name)
        elapsed = time.monotonic() - started
        if result.is_failed:
            self.health.record_failure(name, result.error or "failed")
            status = "failed"
        else:
            self.health.record_success(name, count)
            status = "ok" if count else "empty"
        return SourceOutcome(source=name, status=status, listing_count=count, elapsed=elapsed, error=result.error)

    def prepare(self, source: str, listings: list[Listing]) -> list[Listing]:
        now = utcnow()
        prepared: list[Listing] = []
        for listing in listings:
            listing.source = listing.source or source
            if listing.created_at is None:
                listing.created_at = now
            truncate_fields(listing)
            if listing.is_valid():
                prepared.append(listing)
        prepared = enrich_missing_dates(prepared, now=now, assumed_age=timedelta(days=self.cfg.assumed_listing_age_days))
        if self.cfg.prefilter_freshness:
            prepared = filter_fresh(prepared, self.cfg.freshness_window_days, now=now)
        return prepared

    def _cached(self) -> list[Listing] | None:
        with self._cache_lock:
            if self._cache is None:
                return None
            listings, stored_at = self._cache
            if self._clock() - stored_at >= self.cfg.aggregate_cache_ttl_seconds:
                self._cache = None
                return None
            return list(listings)

    def _log_summary(self, run: AggregationRun) -> None:
        for outcome in run.outcomes.values():
            logger.info(
                "[aggregator] %-18s %-8s %4d listing(s) %6.1fs%s",
                outcome.source,
                outcome.status,
                outcome.listing_count,
                outcome.elapsed,
                f" ({outcome.error})" if outcome.error else "",
            )
        logger.info(
            "[aggregator] run %s done: %d raw, %d in aggregate from %d source(s)",
            run.run_id,
            run.raw_count,
            len(run.listings),
            len(run.contributing_sources),
        )

    # Scheduled refresh

    def start_refresh(self) -> asyncio.Task | None:
        interval = self.cfg.refresh_interval_seconds
        if interval <= 0 or self._refresh_task is not None:
            return self._refresh_task
        self._refresh_task = asyncio.create_task(self._refresh_loop(interval))
        logger.info("[aggregator] refreshing aggregate every %.0fs", interval)
        return self._refresh_task

    async def _refresh_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.aggregate(force=True)
            except Exception:  # noqa: BLE001
                logger.exception("[aggregator] scheduled refresh failed")

    async def stop_refresh(self) -> None:
        task, self._refresh_task = self._refresh_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def aclose(self) -> None:
        await self.stop_refresh()
        if self.fetcher is not None:
            await self.fetcher.aclose()
        if self.verifier is not None:
            await self.verifier.aclose()


def build_service(
    cfg: Settings = settings, client: httpx.AsyncClient | None = None, on_run: RunCallback | None = None
) -> AggregationService:
    fetcher = RateLimitedFetcher.from_settings(cfg, client=client)
    return AggregationService(
        build_adapters(fetcher, cfg),
        enricher=DeepEnricher.from_settings(fetcher, cfg),
        verifier=LinkVerifier.from_settings(cfg, client=client),
        cfg=cfg,
        on_run=on_run,
        fetcher=fetcher,
    )

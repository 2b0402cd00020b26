from __future__ import annotations
import asyncio
import logging
import time

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from jobfeed.core.config import Settings, SourceSettings
from jobfeed.crawlers.base import Listing, SourceAdapter, SourceResult
from jobfeed.crawlers.http_helpers import RateLimitedFetcher
from jobfeed.crawlers.rate_limit import RateLimiter
from jobfeed.db.database import Base
from jobfeed.services.crawl_service import AggregationService, RunState, UnknownSourceError
from jobfeed.services.enrichment import DeepEnricher
from jobfeed.services.health import FAILING, HEALTHY
from jobfeed.services.link_verifier import LinkVerifier
from jobfeed.services.run_history import list_runs, save_run


def _listing(title, company="Acme", location="Pune", url=None, posted_text=""):
    return Listing(
        title=title,
        company=company,
        location=location,
        apply_url=url or f"https://jobs.example.com/{title.lower().replace(' ', '-')}",
        posted_text=posted_text,
    )


class FakeAdapter(SourceAdapter):
    def __init__(self, name, listings=None, delay=0.0, error=None, enabled=True, stream_first=False, result=None):
        self.source_name = name
        super().__init__(SourceSettings(enabled=enabled))
        self.listings = listings or []
        self.delay = delay
        self.error = error
        self.stream_first = stream_first
        self.result = result
        self.calls = 0

    async def fetch_listings(self, on_page=None):
        self.calls += 1
        if self.stream_first and on_page is not None:
            # Hand over the first page, then stall on the next one.
            on_page([listing.copy() for listing in self.listings])
            await asyncio.sleep(self.delay)
            return SourceResult.empty()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.result is not None:
            return self.result
        return SourceResult.ok([listing.copy() for listing in self.listings])


def _cfg(**kwargs) -> Settings:
    values = {
        "aggregation_deadline_seconds": 2,
        "source_timeout_seconds": 1.5,
        "deep_enrichment_enabled": False,
        "link_verification_enabled": False,
    }
    values.update(kwargs)
    return Settings(**values)


@pytest.mark.asyncio
async def test_failing_source_does_not_affect_others():
    broken = FakeAdapter("broken", error=RuntimeError("selector changed"))
    healthy = FakeAdapter("healthy", [_listing("Backend Engineer"), _listing("Data Engineer")])
    service = AggregationService([broken, healthy], cfg=_cfg())

    listings = await service.aggregate()

    assert sorted(item.title for item in listings) == ["Backend Engineer", "Data Engineer"]
    run = service.last_run()
    assert run.state is RunState.DONE
    assert run.outcomes["broken"].status == "failed"
    assert "selector changed" in run.outcomes["broken"].error
    assert run.outcomes["healthy"].listing_count == 2
    assert service.health.status("broken") == FAILING
    assert service.health.status("healthy") == HEALTHY


@pytest.mark.asyncio
async def test_same_posting_across_sources_keeps_first_seen():
    x = FakeAdapter("x", [_listing("Software Engineer", url="https://x.example.com/1")])
    y = FakeAdapter("y", [_listing("software engineer", company="ACME", url="https://y.example.com/9")], delay=0.05)
    service = AggregationService([x, y], cfg=_cfg())

    listings = await service.aggregate()

    assert len(listings) == 1
    assert listings[0].source == "x"


@pytest.mark.asyncio
async def test_invalid_and_stale_listings_never_reach_aggregate():
    adapter = FakeAdapter(
        "mixed",
        [
            _listing("No Company", company=""),
            _listing("Old Role", posted_text="30 days ago"),
            _listing("New Role", posted_text="3 hours ago"),
            _listing("Undated Role"),
        ],
    )
    service = AggregationService([adapter], cfg=_cfg())

    listings = await service.aggregate()

    assert sorted(item.title for item in listings) == ["New Role", "Undated Role"]
    assert all(item.is_valid() for item in listings)
    assert all(item.created_at is not None for item in listings)


@pytest.mark.asyncio
async def test_slow_source_is_cut_off_and_keeps_streamed_listings():
    slow = FakeAdapter("slow", [_listing("Streamed Role")], delay=30, stream_first=True)
    fast = FakeAdapter("fast", [_listing("Fast Role")])
    service = AggregationService([slow, fast], cfg=_cfg(source_timeout_seconds=0.3))

    started = time.monotonic()
    listings = await service.aggregate()

    assert time.monotonic() - started < 2
    assert sorted(item.title for item in listings) == ["Fast Role", "Streamed Role"]
    outcome = service.last_run().outcomes["slow"]
    assert outcome.status == "failed"
    assert "timed out" in outcome.error
    assert outcome.listing_count == 1


@pytest.mark.asyncio
async def test_run_deadline_abandons_queued_sources():
    first = FakeAdapter("first", [_listing("First Role")], delay=0.3)
    second = FakeAdapter("second", [_listing("Second Role")], delay=5, stream_first=True)
    cfg = _cfg(aggregation_deadline_seconds=0.6, source_timeout_seconds=0.55, fanout_workers=1)
    service = AggregationService([first, second], cfg=cfg)

    started = time.monotonic()
    listings = await service.aggregate()

    assert time.monotonic() - started < 2
    assert sorted(item.title for item in listings) == ["First Role", "Second Role"]
    outcome = service.last_run().outcomes["second"]
    assert outcome.status == "timeout"
    assert outcome.listing_count == 1


@pytest.mark.asyncio
async def test_all_sources_failing_returns_empty_list(caplog):
    service = AggregationService(
        [FakeAdapter("a", error=ValueError("boom")), FakeAdapter("b", result=SourceResult.failed("HTTP 429"))],
        cfg=_cfg(),
    )

    with caplog.at_level(logging.ERROR):
        listings = await service.aggregate()

    assert listings == []
    assert "no source contributed" in caplog.text


@pytest.mark.asyncio
async def test_aggregate_is_cached_until_invalidated():
    adapter = FakeAdapter("cached", [_listing("Role")])
    service = AggregationService([adapter], cfg=_cfg())

    first = await service.aggregate()
    second = await service.aggregate()
    assert adapter.calls == 1
    assert [item.title for item in second] == [item.title for item in first]

    service.invalidate_cache()
    await service.aggregate()
    assert adapter.calls == 2

    await service.aggregate(force=True)
    assert adapter.calls == 3


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_run():
    adapter = FakeAdapter("shared", [_listing("Role")], delay=0.1)
    service = AggregationService([adapter], cfg=_cfg())

    results = await asyncio.gather(*(service.aggregate() for _ in range(5)))

    assert adapter.calls == 1
    assert all(len(result) == 1 for result in results)


@pytest.mark.asyncio
async def test_expired_aggregate_is_rebuilt():
    now = [0.0]
    adapter = FakeAdapter("ttl", [_listing("Role")])
    service = AggregationService([adapter], cfg=_cfg(aggregate_cache_ttl_seconds=60), clock=lambda: now[0])

    await service.aggregate()
    now[0] = 61
    await service.aggregate()

    assert adapter.calls == 2


@pytest.mark.asyncio
async def test_disabled_source_is_skipped():
    disabled = FakeAdapter("off", [_listing("Hidden Role")], enabled=False)
    service = AggregationService([disabled, FakeAdapter("on", [_listing("Visible Role")])], cfg=_cfg())

    listings = await service.aggregate()

    assert [item.title for item in listings] == ["Visible Role"]
    assert disabled.calls == 0
    assert service.last_run().outcomes["off"].status == "disabled"


@pytest.mark.asyncio
async def test_scrape_single_source():
    target = FakeAdapter("target", [_listing("Only Role")])
    other = FakeAdapter("other", [_listing("Other Role")])
    service = AggregationService([target, other], cfg=_cfg())

    listings = await service.scrape_single_source("Target")

    assert [item.title for item in listings] == ["Only Role"]
    assert other.calls == 0
    with pytest.raises(UnknownSourceError):
        await service.scrape_single_source("missing")


@pytest.mark.asyncio
async def test_fresh_within_hours():
    adapter = FakeAdapter("fresh", [_listing("Today Role", posted_text="3 hours ago"), _listing("Older Role", posted_text="2 days ago")])
    service = AggregationService([adapter], cfg=_cfg())

    listings = await service.fresh_within(24)

    assert [item.title for item in listings] == ["Today Role"]
    with pytest.raises(ValueError):
        await service.fresh_within(0)


class DropSecondVerifier:
    async def verify_all(self, listings, timeout=None):
        kept = []
        for listing in listings:
            if "Dead" in listing.title:
                continue
            listing.link_verified = True
            kept.append(listing)
        return kept

    async def aclose(self):
        pass


@pytest.mark.asyncio
async def test_link_verification_runs_when_enabled():
    adapter = FakeAdapter("v", [_listing("Live Role"), _listing("Dead Role")])
    service = AggregationService([adapter], verifier=DropSecondVerifier(), cfg=_cfg(link_verification_enabled=True))

    listings = await service.aggregate()

    assert [item.title for item in listings] == ["Live Role"]
    assert listings[0].link_verified is True


@pytest.mark.asyncio
async def test_run_history_is_stored_per_source():
    # on_run executes in a worker thread, so every thread must see the same in-memory database.
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    Base.metadata.create_all(bind=engine)
    stored = []

    def on_run(run):
        db = TestingSession()
        try:
            stored.extend(save_run(db, run))
        finally:
            db.close()

    service = AggregationService(
        [FakeAdapter("good", [_listing("Role")]), FakeAdapter("bad", error=RuntimeError("down"))],
        cfg=_cfg(),
        on_run=on_run,
    )
    await service.aggregate()

    db = TestingSession()
    rows = {row.source: row for row in list_runs(db)}
    db.close()

    assert len(stored) == 2
    assert rows["good"].status == "ok"
    assert rows["good"].listing_count == 1
    assert rows["bad"].status == "failed"
    assert "down" in rows["bad"].error_summary
    assert rows["good"].run_id == rows["bad"].run_id == service.last_run().run_id


def _slow_client() -> httpx.AsyncClient:
    async def handler(request):
        await asyncio.sleep(5)
        return httpx.Response(200, text="<html></html>")

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_enrichment_and_verification_share_the_run_deadline():
    client = _slow_client()
    limiter = RateLimiter(base_delay=0, min_delay=0, max_delay=0, jitter=0)
    fetcher = RateLimitedFetcher(rate_limiter=limiter, client=client, max_retries=1, retry_base_delay=0)
    service = AggregationService(
        [FakeAdapter("slow", [_listing("Backend Engineer")], delay=0.4)],
        enricher=DeepEnricher(fetcher, timeout=30),
        verifier=LinkVerifier(client=client, timeout=30, batch_timeout=30),
        cfg=_cfg(
            aggregation_deadline_seconds=0.6,
            source_timeout_seconds=0.55,
            deep_enrichment_enabled=True,
            link_verification_enabled=True,
        ),
    )

    started = time.monotonic()
    await service.aggregate()
    elapsed = time.monotonic() - started
    await client.aclose()

    assert service.last_run().state is RunState.DONE
    assert elapsed < 1.2


class RecordingEnricher:
    def __init__(self):
        self.calls = []

    async def enhance(self, listings, timeout=None):
        self.calls.append(timeout)
        return listings


@pytest.mark.asyncio
async def test_stages_are_skipped_once_fan_out_used_the_whole_deadline():
    first = FakeAdapter("first", [_listing("First Role")], delay=0.2)
    stalled = FakeAdapter("stalled", [_listing("Partial Role")], delay=5, stream_first=True)
    enricher = RecordingEnricher()
    service = AggregationService(
        [first, stalled],
        enricher=enricher,
        cfg=_cfg(
            aggregation_deadline_seconds=0.3,
            source_timeout_seconds=0.27,
            fanout_workers=1,
            deep_enrichment_enabled=True,
        ),
    )

    listings = await service.aggregate()

    assert sorted(item.title for item in listings) == ["First Role", "Partial Role"]
    assert service.last_run().outcomes["stalled"].status == "timeout"
    assert enricher.calls == []

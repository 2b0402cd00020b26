from __future__ import annotations
import asyncio

import httpx
import pytest

from jobfeed.crawlers.base import Listing
from jobfeed.services.link_verifier import LinkVerifier, alternate_url, clean_url, is_anti_automation_host


def _listing(url: str, title: str = "Data Engineer") -> Listing:
    return Listing(title=title, company="Acme", apply_url=url)


def _verifier(handler, **kwargs) -> LinkVerifier:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)
    kwargs.setdefault("backoff", 0)
    return LinkVerifier(client=client, **kwargs)


def test_clean_url():
    assert clean_url(" www.example.com//jobs//1?utm_source=x&id=5&fbclid=y ") == "https://www.example.com/jobs/1?id=5"
    assert clean_url("//example.com/a") == "https://example.com/a"
    assert clean_url("https://Example.com/jobs?ref=feed&gclid=1") == "https://example.com/jobs"
    assert clean_url("") == ""


def test_alternate_url_patterns():
    assert alternate_url("https://www.naukri.com/job-listings/data-engineer-123") == "https://www.naukri.com/jobs-data-engineer-123"
    assert alternate_url("https://www.indeed.com/rc/clk?jk=abc123&from=serp") == "https://www.indeed.com/viewjob?jk=abc123"
    assert alternate_url("https://in.linkedin.com/jobs/view/data-engineer-at-acme-3812345678") == (
        "https://www.linkedin.com/jobs/view/3812345678"
    )
    assert alternate_url("https://www.glassdoor.com/job-listing/engineer-JV_1.htm") == "https://www.glassdoor.com/jobs/engineer-JV_1.htm"
    assert alternate_url("https://careers.example.com/jobs/1") is None


def test_anti_automation_hosts():
    assert is_anti_automation_host("https://in.linkedin.com/jobs/view/1")
    assert is_anti_automation_host("https://www.glassdoor.co.in/job-listing/x")
    assert not is_anti_automation_host("https://notlinkedin.com/jobs/1")


@pytest.mark.asyncio
async def test_not_found_without_alternate_is_dropped():
    verifier = _verifier(lambda request: httpx.Response(404))
    listing = _listing("https://careers.example.com/jobs/404")

    assert await verifier.verify_all([listing]) == []
    assert listing.link_verified is False


@pytest.mark.asyncio
async def test_working_link_is_kept_and_follows_redirects():
    def handler(request):
        if request.url.path == "/old":
            return httpx.Response(301, headers={"Location": "https://careers.example.com/new"})
        return httpx.Response(200)

    verifier = _verifier(handler)
    listing = _listing("https://careers.example.com/old?utm_campaign=x")

    result = await verifier.verify_all([listing])

    assert result == [listing]
    assert listing.link_verified is True
    assert listing.apply_url == "https://careers.example.com/new"


@pytest.mark.asyncio
async def test_head_rejected_falls_back_to_get():
    methods = []

    def handler(request):
        methods.append(request.method)
        if request.method == "HEAD":
            return httpx.Response(405)
        return httpx.Response(200, text="<html></html>")

    verifier = _verifier(handler)
    result = await verifier.verify_all([_listing("https://careers.example.com/jobs/1")])

    assert len(result) == 1
    assert methods == ["HEAD", "GET"]


@pytest.mark.asyncio
async def test_allowlisted_host_is_trusted_without_request():
    calls = []

    def handler(request):
        calls.append(request.url)
        return httpx.Response(403)

    verifier = _verifier(handler)
    listing = _listing("https://www.linkedin.com/jobs/view/3812345678")

    assert await verifier.verify_all([listing]) == [listing]
    assert listing.link_verified is True
    assert calls == []


@pytest.mark.asyncio
async def test_rate_limited_link_is_retried():
    calls = []

    def handler(request):
        calls.append(request.url)
        return httpx.Response(429) if len(calls) == 1 else httpx.Response(200)

    verifier = _verifier(handler)
    result = await verifier.verify_all([_listing("https://careers.example.com/jobs/1")])

    assert len(result) == 1
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_persistent_rate_limit_gives_up_on_that_listing_only():
    def handler(request):
        if request.url.host == "blocked.example.com":
            return httpx.Response(429)
        return httpx.Response(200)

    verifier = _verifier(handler, max_attempts=3)
    blocked = _listing("https://blocked.example.com/jobs/1", title="A")
    fine = _listing("https://careers.example.com/jobs/2", title="B")

    assert await verifier.verify_all([blocked, fine]) == [fine]


@pytest.mark.asyncio
async def test_alternate_url_rescues_dead_link():
    def handler(request):
        if request.url.path == "/viewjob":
            return httpx.Response(200)
        return httpx.Response(404)

    verifier = _verifier(handler)
    listing = _listing("https://www.indeed.com/rc/clk?jk=abc123&from=serp")

    assert await verifier.verify_all([listing]) == [listing]
    assert listing.apply_url == "https://www.indeed.com/viewjob?jk=abc123"


@pytest.mark.asyncio
async def test_slow_link_times_out_without_failing_batch():
    async def handler(request):
        if request.url.host == "slow.example.com":
            await asyncio.sleep(5)
        return httpx.Response(200)

    verifier = _verifier(handler, timeout=0.1)
    slow = _listing("https://slow.example.com/jobs/1", title="Slow")
    fast = _listing("https://fast.example.com/jobs/2", title="Fast")

    result = await asyncio.wait_for(verifier.verify_all([slow, fast]), timeout=2)

    assert result == [fast]


@pytest.mark.asyncio
async def test_invalid_url_is_dropped():
    verifier = _verifier(lambda request: httpx.Response(200))

    assert await verifier.verify_all([_listing("/jobs/relative-only")]) == []


@pytest.mark.asyncio
async def test_connection_error_is_retried_before_giving_up():
    calls = []

    def handler(request):
        calls.append(request.url)
        if len(calls) == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200)

    verifier = _verifier(handler, max_attempts=3)
    listing = _listing("https://careers.example.com/jobs/1")

    assert await verifier.verify_all([listing]) == [listing]
    assert listing.link_verified is True
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_unreachable_host_is_dropped_after_every_attempt():
    calls = []

    def handler(request):
        calls.append(request.url)
        raise httpx.ConnectError("connection refused", request=request)

    verifier = _verifier(handler, max_attempts=3)

    assert await verifier.verify_all([_listing("https://careers.example.com/jobs/1")]) == []
    assert len(calls) == 3

from __future__ import annotations
import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Iterable
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx
from tenacity import AsyncRetrying, retry_if_result, stop_after_attempt, wait_exponential

from jobfeed.core.config import Settings, settings
from jobfeed.crawlers.base import Listing
from jobfeed.crawlers.http_helpers import USER_AGENTS
from jobfeed.utils.concurrency import gather_best_effort

logger = logging.getLogger(__name__)

# Probing these hosts from a script gets blocked, which would read as a dead link.
ANTI_AUTOMATION_HOSTS = (
    "shine.com",
    "wellfound.com",
    "naukri.com",
    "linkedin.com",
    "glassdoor.com",
    "glassdoor.co.in",
)

TRACKING_PARAMS = {"fbclid", "gclid", "msclkid", "ref", "referrer", "trk", "trackingid", "refid"}

THROTTLED_STATUSES = (403, 429)


def _host(url: str) -> str:
    return (urlsplit(url).hostname or "").lower()


def is_anti_automation_host(url: str) -> bool:
    host = _host(url)
    return any(host == domain or host.endswith("." + domain) for domain in ANTI_AUTOMATION_HOSTS)


def _is_tracking(key: str) -> bool:
    key = key.lower()
    return key.startswith("utm_") or key in TRACKING_PARAMS


def clean_url(url: str) -> str:
    """Trim, add a missing scheme, collapse repeated slashes in the path and drop tracking parameters."""
    url = (url or "").strip()
    if not url:
        return ""
    if url.startswith("//"):
        url = "https:" + url
    elif "://" not in url and not url.startswith("/"):
        url = "https://" + url

    parts = urlsplit(url)
    path = re.sub(r"/{2,}", "/", parts.path)
    query = urlencode([(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if not _is_tracking(k)])
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, query, parts.fragment))


def is_valid_url(url: str) -> bool:
    parts = urlsplit(url or "")
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def alternate_url(url: str) -> str | None:
    """Known alternate link shapes for hosts whose job URLs come in more than one form."""
    host = _host(url)
    if "naukri.com" in host and "/job-listings/" in url:
        return url.replace("/job-listings/", "/jobs-", 1)
    if "indeed." in host and "/viewjob?jk=" not in url:
        match = re.search(r"jk=([^&]+)", url)
        if match:
            return f"https://{host}/viewjob?jk={match.group(1)}"
    if "linkedin.com" in host and "/jobs/view/" in url:
        match = re.search(r"/jobs/view/(?:[^/?#]*-)?(\d+)", url)
        if match:
            alternate = f"https://www.linkedin.com/jobs/view/{match.group(1)}"
            return alternate if alternate != url else None
    if "glassdoor." in host and "/job-listing/" in url:
        return url.replace("/job-listing/", "/jobs/", 1)
    return None


@dataclass
class ProbeResult:
    status_code: int | None
    final_url: str
    error: str | None = None

    @property
    def valid(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 400


def _worth_retrying(probe: ProbeResult) -> bool:
    """Throttled or unreachable; any other answer is final."""
    return probe.status_code is None or probe.status_code in THROTTLED_STATUSES


class LinkVerifier:
    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        workers: int = 10,
        timeout: float = 15.0,
        batch_timeout: float | None = None,
        max_attempts: int = 3,
        backoff: float = 2.0,
    ):
        self.workers = workers
        self.timeout = timeout
        self.batch_timeout = batch_timeout
        self.max_attempts = max_attempts
        self.backoff = backoff
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    @classmethod
    def from_settings(cls, cfg: Settings = settings, client: httpx.AsyncClient | None = None) -> "LinkVerifier":
        return cls(
            client=client,
            workers=cfg.verification_workers,
            timeout=cfg.verification_timeout_seconds,
            batch_timeout=cfg.verification_batch_timeout_seconds,
            max_attempts=cfg.verification_max_attempts,
            backoff=cfg.verification_backoff_seconds,
        )

    async def verify_all(self, listings: Iterable[Listing], timeout: float | None = None) -> list[Listing]:
        """Return only the listings whose apply link could be confirmed; the rest are dropped."""
        listings = list(listings)
        batch_timeout = self.batch_timeout
        if timeout is not None:
            batch_timeout = timeout if batch_timeout is None else min(batch_timeout, timeout)
        outcomes = await gather_best_effort(
            (self._verify_within_timeout(listing) for listing in listings),
            timeout=batch_timeout,
            limit=self.workers,
        )
        verified = [outcome.result for outcome in outcomes if outcome.ok and outcome.result is not None]
        unfinished = sum(1 for outcome in outcomes if not outcome.done)
        logger.info(
            "[link_verifier] %d of %d listing(s) have working links (%d unfinished at batch deadline)",
            len(verified),
            len(listings),
            unfinished,
        )
        return verified

    async def _verify_within_timeout(self, listing: Listing) -> Listing | None:
        try:
            return await asyncio.wait_for(self.verify(listing), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.info("[link_verifier] timed out verifying %s", listing.apply_url)
            return None

    async def verify(self, listing: Listing) -> Listing | None:
        url = clean_url(listing.apply_url)
        if not is_valid_url(url):
            logger.debug("[link_verifier] unusable url for %r: %r", listing.title, listing.apply_url)
            listing.link_verified = False
            return None

        if is_anti_automation_host(url):
            listing.apply_url = url
            listing.link_verified = True
            return listing

        final_url = await self.resolve(url)
        if final_url is None:
            logger.debug("[link_verifier] dead link for %r: %s", listing.title, url)
            listing.link_verified = False
            return None

        listing.apply_url = final_url
        listing.link_verified = True
        return listing

    async def resolve(self, url: str) -> str | None:
        """Final URL after redirects if ``url`` (or its known alternate) answers 2xx/3xx."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff, exp_base=2),
            retry=retry_if_result(_worth_retrying),
            retry_error_callback=lambda state: state.outcome.result(),
        )
        probe = await retrying(self.probe, url)
        if probe.valid:
            return probe.final_url
        if probe.status_code is None or probe.status_code in THROTTLED_STATUSES:
            logger.debug("[link_verifier] gave up on %s: %s", url, probe.error or probe.status_code)
            return None

        alternate = alternate_url(url)
        if alternate:
            alt_probe = await self.probe(alternate)
            if alt_probe.valid:
                return alt_probe.final_url
        return None

    async def probe(self, url: str) -> ProbeResult:
        headers = {"User-Agent": USER_AGENTS[0], "Accept": "text/html,application/xhtml+xml,*/*;q=0.8"}
        try:
            response = await self._client.head(url, headers=headers, follow_redirects=True)
            if response.status_code in (405, 501):
                # Some servers refuse HEAD outright.
                response = await self._client.get(url, headers=headers, follow_redirects=True)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            return ProbeResult(status_code=None, final_url=url, error=f"{type(exc).__name__}: {exc}")
        return ProbeResult(status_code=response.status_code, final_url=str(response.url))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

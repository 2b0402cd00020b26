from __future__ import annotations
import itertools
import logging
import re
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Iterator

import httpx
from bs4 import BeautifulSoup
from tenacity import AsyncRetrying, RetryCallState, retry_if_result, stop_after_attempt, wait_exponential

from jobfeed.core.config import Settings, settings
from jobfeed.crawlers.rate_limit import RateLimiter
from jobfeed.crawlers.response_cache import ResponseCache

logger = logging.getLogger(__name__)

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:123.0) Gecko/20100101 Firefox/123.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.3 Safari/605.1.15",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_3 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.3 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (Android 14; Mobile; rv:123.0) Gecko/123.0 Firefox/123.0",
    "Mozilla/5.0 (X11; Ubuntu; Linux x86_64; rv:123.0) Gecko/20100101 Firefox/123.0",
]

BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Upgrade-Insecure-Requests": "1",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "DNT": "1",
    "Cache-Control": "no-cache",
}

# Checked against <title> only; these words also show up in ordinary page scripts.
BLOCKED_TITLE_MARKERS = (
    "just a moment",
    "attention required",
    "access denied",
    "security challenge",
    "captcha",
    "cloudflare",
    "pardon our interruption",
    "are you a robot",
)
BLOCKED_BODY_MARKERS = (
    "pardon our interruption",
    "unusual traffic from your computer",
    "verify you are a human",
    "are you a robot",
)
_TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)


class FailureKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    UNKNOWN = "unknown"


@dataclass
class FetchError:
    kind: FailureKind
    message: str
    status_code: int | None = None

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


@dataclass
class FetchResult:
    url: str
    html: str = ""
    final_url: str = ""
    status_code: int | None = None
    error: FetchError | None = None
    attempts: int = 0
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


def looks_blocked(html: str) -> bool:
    match = _TITLE_RE.search(html or "")
    title = match.group(1).strip().lower() if match else ""
    if any(marker in title for marker in BLOCKED_TITLE_MARKERS):
        return True
    head = (html or "")[:20000].lower()
    return any(marker in head for marker in BLOCKED_BODY_MARKERS)


def classify_failure(error: BaseException | None = None, status_code: int | None = None) -> FailureKind:
    if status_code in (403, 429):
        return FailureKind.RATE_LIMITED
    if status_code in (404, 410):
        return FailureKind.NOT_FOUND
    if status_code is not None and status_code >= 500:
        return FailureKind.TRANSIENT
    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return FailureKind.TRANSIENT
    message = str(error or "").lower()
    if "too many requests" in message or "rate limit" in message:
        return FailureKind.RATE_LIMITED
    return FailureKind.UNKNOWN


def _should_retry(result: FetchResult) -> bool:
    return result.error is not None and result.error.kind is not FailureKind.NOT_FOUND


def _log_retry(url: str, attempts: int):
    def log(state: RetryCallState) -> None:
        logger.warning(
            "[fetcher] %s for %s, retry %d/%d in %.1fs",
            state.outcome.result().error,
            url,
            state.attempt_number + 1,
            attempts,
            state.next_action.sleep,
        )

    return log


class RateLimitedFetcher:
    """Fetches pages with per-host spacing, user-agent rotation, a short-lived
    cache and classified retries. ``fetch`` never raises for HTTP or network
    failures; the error comes back on the ``FetchResult``.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter | None = None,
        cache: ResponseCache | None = None,
        client: httpx.AsyncClient | None = None,
        max_retries: int = 4,
        retry_base_delay: float = 3.0,
        timeout: float = 20.0,
        user_agents: list[str] | None = None,
    ):
        self.rate_limiter = rate_limiter or RateLimiter()
        self.cache = cache or ResponseCache()
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self._agents = itertools.cycle(user_agents or USER_AGENTS)
        self._agent_lock = threading.Lock()

    @classmethod
    def from_settings(cls, cfg: Settings = settings, client: httpx.AsyncClient | None = None) -> "RateLimitedFetcher":
        return cls(
            rate_limiter=RateLimiter.from_settings(cfg),
            cache=ResponseCache(ttl_seconds=cfg.response_cache_ttl_seconds),
            client=client,
            max_retries=cfg.fetch_max_retries,
            retry_base_delay=cfg.fetch_retry_base_delay_seconds,
            timeout=cfg.fetch_timeout_seconds,
        )

    def next_user_agent(self) -> str:
        with self._agent_lock:
            return next(self._agents)

    async def fetch(self, url: str, max_retries: int | None = None, base_delay: float | None = None) -> FetchResult:
        if not url or not url.strip():
            return FetchResult(url=url or "", error=FetchError(FailureKind.UNKNOWN, "empty url"))

        cached = self.cache.get(url)
        if cached is not None:
            logger.debug("[fetcher] cache hit %s", url)
            return FetchResult(url=url, html=cached.html, final_url=cached.final_url, status_code=200, from_cache=True)

        attempts = max_retries or self.max_retries
        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=self.retry_base_delay, exp_base=2),
            retry=retry_if_result(_should_retry),
            before_sleep=_log_retry(url, attempts),
            # The last failed FetchResult is the answer, not an exception.
            retry_error_callback=lambda state: state.outcome.result(),
        )
        result = await retrying(self._attempt, url, itertools.count(1), base_delay)
        if not result.ok:
            logger.warning("[fetcher] giving up on %s after %d attempt(s): %s", url, result.attempts, result.error)
        return result

    async def _attempt(self, url: str, numbers: Iterator[int], base_delay: float | None = None) -> FetchResult:
        await self.rate_limiter.acquire(url, base_delay)
        attempt = next(numbers)
        headers = dict(BROWSER_HEADERS)
        headers["User-Agent"] = self.next_user_agent()
        try:
            response = await self._client.get(url, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            error = FetchError(classify_failure(exc), f"{type(exc).__name__}: {exc}")
            return FetchResult(url=url, error=error, attempts=attempt)

        if response.status_code >= 400:
            kind = classify_failure(status_code=response.status_code)
            error = FetchError(kind, f"HTTP {response.status_code}", response.status_code)
            return FetchResult(url=url, error=error, status_code=response.status_code, attempts=attempt)
        if looks_blocked(response.text):
            error = FetchError(FailureKind.RATE_LIMITED, "anti-bot challenge page", response.status_code)
            return FetchResult(url=url, error=error, status_code=response.status_code, attempts=attempt)

        final_url = str(response.url)
        self.cache.put(url, response.text, final_url)
        return FetchResult(
            url=url, html=response.text, final_url=final_url, status_code=response.status_code, attempts=attempt
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "RateLimitedFetcher":
        return self

    async def __aexit__(self, *_exc) -> None:
        await self.aclose()


def soup_links(html: str):
    soup = BeautifulSoup(html, "html.parser")
    return soup, soup.find_all("a")

from __future__ import annotations
import asyncio
import logging
import random
import threading
import time
from collections import deque
from typing import Callable
from urllib.parse import urlsplit

from jobfeed.core.config import Settings, settings

logger = logging.getLogger(__name__)

REQUEST_WINDOW_SECONDS = 60.0


def host_of(url: str) -> str:
    return (urlsplit(url).hostname or "unknown").lower()


class RateLimiter:
    """Per-host minimum spacing with +/- jitter, clamped to [min_delay, max_delay].

    Callers reserve the next free slot for a host under the lock and then sleep
    outside of it, so concurrent callers for the same host are queued one
    target delay apart and nobody is dropped. A slot whose waiter is cancelled
    is released again.
    """

    def __init__(
        self,
        base_delay: float = 5.0,
        min_delay: float = 2.0,
        max_delay: float = 8.0,
        jitter: float = 0.3,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ):
        self.base_delay = base_delay
        self.min_delay = min_delay
        self.max_delay = max(max_delay, min_delay)
        self.jitter = jitter
        self._clock = clock
        self._rng = rng or random.Random()
        self._last_request: dict[str, float] = {}
        self._pending: dict[str, list[float]] = {}
        self._recent: dict[str, deque[float]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> "RateLimiter":
        return cls(
            base_delay=cfg.fetch_base_delay_seconds,
            min_delay=cfg.fetch_min_delay_seconds,
            max_delay=cfg.fetch_max_delay_seconds,
            jitter=cfg.fetch_jitter_ratio,
        )

    def target_delay(self, base_delay: float | None = None) -> float:
        base = self.base_delay if base_delay is None else base_delay
        variation = base * self._rng.uniform(-self.jitter, self.jitter)
        return max(self.min_delay, min(self.max_delay, base + variation))

    def reserve(self, host: str, base_delay: float | None = None) -> float:
        """Claim the next request slot for ``host`` and return how long to wait for it."""
        return self._claim(host, base_delay)[1]

    def _claim(self, host: str, base_delay: float | None) -> tuple[float, float]:
        with self._lock:
            now = self._clock()
            pending = self._pending.setdefault(host, [])
            taken = [ts for ts in (self._last_request.get(host), *pending) if ts is not None]
            start = now if not taken else max(now, max(taken) + self.target_delay(base_delay))
            pending.append(start)

            recent = self._recent.setdefault(host, deque())
            recent.append(start)
            while recent and recent[0] < now - REQUEST_WINDOW_SECONDS:
                recent.popleft()
        return start, start - now

    def _settle(self, host: str, start: float, used: bool) -> None:
        with self._lock:
            pending = self._pending.get(host, [])
            if start in pending:
                pending.remove(start)
            if used:
                self._last_request[host] = max(start, self._last_request.get(host, start))
            elif start in self._recent.get(host, ()):
                # A cancelled waiter hands its slot back to whoever queues next.
                self._recent[host].remove(start)

    async def acquire(self, url: str, base_delay: float | None = None) -> float:
        host = host_of(url)
        start, wait = self._claim(host, base_delay)
        try:
            if wait > 0:
                logger.debug("[rate_limit] waiting %.2fs for %s", wait, host)
                await asyncio.sleep(wait)
        except asyncio.CancelledError:
            self._settle(host, start, used=False)
            raise
        self._settle(host, start, used=True)
        return wait

    def request_count(self, host: str) -> int:
        """Requests issued to ``host`` within the last minute."""
        with self._lock:
            cutoff = self._clock() - REQUEST_WINDOW_SECONDS
            return sum(1 for ts in self._recent.get(host.lower(), ()) if ts >= cutoff)

    def active_hosts(self) -> int:
        with self._lock:
            return len(set(self._last_request) | {host for host, slots in self._pending.items() if slots})

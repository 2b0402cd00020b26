from __future__ import annotations
import threading
import time
from dataclasses import dataclass
from typing import Callable


@dataclass
class CachedResponse:
    html: str
    final_url: str
    fetched_at: float


class ResponseCache:
    """Per-URL document cache with a fixed TTL; expired entries are dropped on read."""

    def __init__(self, ttl_seconds: float = 900.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CachedResponse] = {}
        self._lock = threading.Lock()

    def get(self, url: str) -> CachedResponse | None:
        with self._lock:
            entry = self._entries.get(url)
            if entry is None:
                return None
            if self._clock() - entry.fetched_at > self.ttl_seconds:
                del self._entries[url]
                return None
            return entry

    def put(self, url: str, html: str, final_url: str | None = None) -> None:
        with self._lock:
            self._entries[url] = CachedResponse(html=html, final_url=final_url or url, fetched_at=self._clock())

    def invalidate(self, url: str) -> None:
        with self._lock:
            self._entries.pop(url, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict:
        with self._lock:
            return {"cached_documents": len(self._entries), "ttl_seconds": self.ttl_seconds}

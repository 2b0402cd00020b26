from __future__ import annotations
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone

HEALTHY = "HEALTHY"
DEGRADED = "DEGRADED"
FAILING = "FAILING"
UNKNOWN = "UNKNOWN"

ROLLING_WINDOW = 20


@dataclass
class SourceHealth:
    source: str
    success_count: int = 0
    failure_count: int = 0
    last_listing_count: int = 0
    last_success_at: datetime | None = None
    last_failure_at: datetime | None = None
    last_error: str | None = None
    recent: deque = field(default_factory=lambda: deque(maxlen=ROLLING_WINDOW))

    @property
    def success_rate(self) -> float:
        """Percentage of successes over the last ``ROLLING_WINDOW`` recorded runs."""
        if not self.recent:
            return 0.0
        return sum(1 for ok in self.recent if ok) / len(self.recent) * 100

    @property
    def status(self) -> str:
        if self.success_count == 0 and self.failure_count == 0:
            return UNKNOWN
        if self.last_success_at is None:
            return FAILING
        if self.recent and not self.recent[-1]:
            # Most recent run failed after an earlier success.
            return DEGRADED
        if self.success_rate >= 70:
            return HEALTHY
        if self.success_rate >= 40:
            return DEGRADED
        return FAILING

    def as_dict(self) -> dict:
        return {
            "source": self.source,
            "status": self.status,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "success_rate": round(self.success_rate, 1),
            "last_listing_count": self.last_listing_count,
            "last_success_at": self.last_success_at,
            "last_failure_at": self.last_failure_at,
            "last_error": self.last_error,
        }


class HealthTracker:
    """Per-source success/failure bookkeeping for dashboards; never consulted by the pipeline."""

    def __init__(self):
        self._health: dict[str, SourceHealth] = {}
        self._lock = threading.Lock()

    def _entry(self, source: str) -> SourceHealth:
        entry = self._health.get(source)
        if entry is None:
            entry = self._health[source] = SourceHealth(source=source)
        return entry

    def record_success(self, source: str, count: int) -> None:
        with self._lock:
            entry = self._entry(source)
            entry.success_count += 1
            entry.last_listing_count = count
            entry.last_success_at = datetime.now(timezone.utc)
            entry.recent.append(True)

    def record_failure(self, source: str, message: str) -> None:
        with self._lock:
            entry = self._entry(source)
            entry.failure_count += 1
            entry.last_error = message
            entry.last_failure_at = datetime.now(timezone.utc)
            entry.recent.append(False)

    def get(self, source: str) -> SourceHealth | None:
        with self._lock:
            return self._health.get(source)

    def status(self, source: str) -> str:
        entry = self.get(source)
        return entry.status if entry else UNKNOWN

    def snapshot(self) -> dict[str, dict]:
        with self._lock:
            return {name: entry.as_dict() for name, entry in self._health.items()}

    def summary(self) -> dict:
        snapshot = self.snapshot()
        statuses = [item["status"] for item in snapshot.values()]
        return {
            "sources": snapshot,
            "total": len(snapshot),
            "healthy": statuses.count(HEALTHY),
            "degraded": statuses.count(DEGRADED),
            "failing": statuses.count(FAILING),
        }

from __future__ import annotations
from datetime import datetime

from pydantic import BaseModel


class SourceHealthOut(BaseModel):
    source: str
    status: str
    success_count: int
    failure_count: int
    success_rate: float
    last_listing_count: int
    last_success_at: datetime | None
    last_failure_at: datetime | None
    last_error: str | None


class HealthSummaryOut(BaseModel):
    sources: dict[str, SourceHealthOut]
    total: int
    healthy: int
    degraded: int
    failing: int

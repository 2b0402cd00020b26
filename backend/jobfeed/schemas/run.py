from __future__ import annotations
from datetime import datetime

from pydantic import BaseModel


class CrawlRunOut(BaseModel):
    id: int
    run_id: str
    source: str
    status: str
    listing_count: int
    elapsed_ms: float
    error_summary: str
    started_at: datetime
    finished_at: datetime | None

    class Config:
        from_attributes = True


class SourceOutcomeOut(BaseModel):
    source: str
    status: str
    listing_count: int
    elapsed: float
    error: str | None

    class Config:
        from_attributes = True


class CrawlTriggerResponse(BaseModel):
    run_id: str
    state: str
    listing_count: int
    raw_count: int
    outcomes: list[SourceOutcomeOut]

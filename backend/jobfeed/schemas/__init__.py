from __future__ import annotations
from jobfeed.schemas.auth import LoginRequest, TokenResponse
from jobfeed.schemas.health import HealthSummaryOut, SourceHealthOut
from jobfeed.schemas.listing import ListingOut
from jobfeed.schemas.run import CrawlRunOut, CrawlTriggerResponse, SourceOutcomeOut
from jobfeed.schemas.source import SourceOut

__all__ = [
    "LoginRequest",
    "TokenResponse",
    "HealthSummaryOut",
    "SourceHealthOut",
    "ListingOut",
    "CrawlRunOut",
    "CrawlTriggerResponse",
    "SourceOutcomeOut",
    "SourceOut",
]

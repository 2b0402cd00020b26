from __future__ import annotations

from pydantic import BaseModel


class SourceOut(BaseModel):
    name: str
    enabled: bool
    search_query: str
    location: str
    min_delay: float
    max_pages: int
    health_status: str

from __future__ import annotations
from datetime import datetime

from pydantic import BaseModel


class ListingOut(BaseModel):
    title: str
    company: str
    location: str
    source: str
    apply_url: str
    description: str
    salary_range: str
    job_type: str
    posted_date: datetime | None
    date_source: str | None
    created_at: datetime | None
    link_verified: bool

    class Config:
        from_attributes = True

from __future__ import annotations
from fastapi import APIRouter, Depends, Query

from jobfeed.api.deps import get_service
from jobfeed.schemas.listing import ListingOut
from jobfeed.services.crawl_service import AggregationService

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.get("", response_model=list[ListingOut])
async def list_jobs(
    fresh_within_hours: float | None = Query(default=None, gt=0),
    limit: int = Query(default=200, ge=1, le=1000),
    service: AggregationService = Depends(get_service),
):
    if fresh_within_hours is not None:
        listings = await service.fresh_within(fresh_within_hours)
    else:
        listings = await service.aggregate()
    return listings[:limit]


@router.get("/fresh", response_model=list[ListingOut])
async def fresh_jobs(
    hours: float = Query(default=24, gt=0),
    service: AggregationService = Depends(get_service),
):
    return await service.fresh_within(hours)

from __future__ import annotations
from fastapi import APIRouter, Depends, HTTPException

from jobfeed.api.deps import get_service
from jobfeed.schemas.health import HealthSummaryOut, SourceHealthOut
from jobfeed.services.crawl_service import AggregationService

router = APIRouter(prefix="/scraper/health", tags=["scraper-health"])


@router.get("", response_model=HealthSummaryOut)
def health_summary(service: AggregationService = Depends(get_service)):
    return service.health.summary()


@router.get("/{name}", response_model=SourceHealthOut)
def source_health(name: str, service: AggregationService = Depends(get_service)):
    entry = service.health.get(name)
    if entry is None:
        raise HTTPException(status_code=404, detail="no health records for source")
    return entry.as_dict()

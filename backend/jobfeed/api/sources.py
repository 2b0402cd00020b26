from __future__ import annotations
from fastapi import APIRouter, Depends, HTTPException

from jobfeed.api.deps import get_service, require_user
from jobfeed.schemas.listing import ListingOut
from jobfeed.schemas.source import SourceOut
from jobfeed.services.crawl_service import AggregationService, UnknownSourceError

router = APIRouter(prefix="/sources", tags=["sources"])


@router.get("", response_model=list[SourceOut])
def list_sources(service: AggregationService = Depends(get_service)):
    return [
        SourceOut(
            name=adapter.name(),
            enabled=adapter.is_enabled(),
            search_query=adapter.config.search_query,
            location=adapter.config.location,
            min_delay=adapter.min_delay(),
            max_pages=adapter.config.max_pages,
            health_status=service.health.status(adapter.name()),
        )
        for adapter in service.adapters.values()
    ]


@router.get("/{name}/listings", response_model=list[ListingOut])
async def scrape_source(
    name: str,
    _: str = Depends(require_user),
    service: AggregationService = Depends(get_service),
):
    try:
        return await service.scrape_single_source(name)
    except UnknownSourceError:
        raise HTTPException(status_code=404, detail="source not found") from None

from __future__ import annotations
from fastapi import APIRouter, Depends

from jobfeed.api.deps import get_service, require_user
from jobfeed.schemas.run import CrawlTriggerResponse, SourceOutcomeOut
from jobfeed.services.crawl_service import AggregationService

router = APIRouter(prefix="/crawl", tags=["crawl"])


@router.post("/trigger", response_model=CrawlTriggerResponse)
async def trigger(_: str = Depends(require_user), service: AggregationService = Depends(get_service)):
    listings = await service.aggregate(force=True)
    run = service.last_run()
    return CrawlTriggerResponse(
        run_id=run.run_id,
        state=run.state.value,
        listing_count=len(listings),
        raw_count=run.raw_count,
        outcomes=[SourceOutcomeOut.model_validate(outcome) for outcome in run.outcomes.values()],
    )


@router.post("/invalidate")
def invalidate(_: str = Depends(require_user), service: AggregationService = Depends(get_service)):
    service.invalidate_cache()
    return {"success": True, "message": "aggregate cache cleared"}

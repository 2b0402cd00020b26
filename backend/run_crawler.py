from __future__ import annotations
import asyncio

from jobfeed.core.config import settings
from jobfeed.core.logging import configure_logging
from jobfeed.db.init_db import init_db
from jobfeed.services.crawl_service import build_service
from jobfeed.services.run_history import record_run


async def main() -> dict:
    service = build_service(settings, on_run=record_run)
    try:
        listings = await service.aggregate(force=True)
    finally:
        await service.aclose()

    run = service.last_run()
    return {
        "run_id": run.run_id,
        "listings": len(listings),
        "raw": run.raw_count,
        "sources": {
            outcome.source: {"status": outcome.status, "listings": outcome.listing_count, "error": outcome.error}
            for outcome in run.outcomes.values()
        },
    }


if __name__ == "__main__":
    configure_logging(settings.log_level)
    init_db()
    print(asyncio.run(main()))

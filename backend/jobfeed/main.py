from __future__ import annotations
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from jobfeed.api import auth, crawl, health, jobs, runs, scraper_health, sources
from jobfeed.core.config import settings
from jobfeed.core.logging import configure_logging
from jobfeed.db.init_db import init_db
from jobfeed.services.crawl_service import build_service
from jobfeed.services.run_history import record_run

configure_logging(settings.log_level)

app = FastAPI(title=settings.app_name)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def on_startup():
    init_db()
    app.state.aggregator = build_service(settings, on_run=record_run)
    app.state.aggregator.start_refresh()


@app.on_event("shutdown")
async def on_shutdown():
    service = getattr(app.state, "aggregator", None)
    if service is not None:
        await service.aclose()


app.include_router(health.router)
app.include_router(auth.router, prefix=settings.api_prefix)
app.include_router(jobs.router, prefix=settings.api_prefix)
app.include_router(sources.router, prefix=settings.api_prefix)
app.include_router(crawl.router, prefix=settings.api_prefix)
app.include_router(runs.router, prefix=settings.api_prefix)
app.include_router(scraper_health.router, prefix=settings.api_prefix)

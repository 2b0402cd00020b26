from __future__ import annotations
import logging

from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from jobfeed.db.database import SessionLocal
from jobfeed.models.crawl_run import CrawlRun
from jobfeed.services.crawl_service import AggregationRun

logger = logging.getLogger(__name__)


def save_run(db: Session, run: AggregationRun) -> list[CrawlRun]:
    rows = [
        CrawlRun(
            run_id=run.run_id,
            source=outcome.source,
            status=outcome.status,
            listing_count=outcome.listing_count,
            elapsed_ms=round(outcome.elapsed * 1000, 1),
            error_summary=(outcome.error or "")[:2000],
            started_at=run.started_at,
            finished_at=run.finished_at,
        )
        for outcome in run.outcomes.values()
    ]
    db.add_all(rows)
    db.commit()
    return rows


def record_run(run: AggregationRun) -> None:
    """Run callback for the aggregation service; storage problems are logged, never raised into the run."""
    db = SessionLocal()
    try:
        save_run(db, run)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("[run_history] could not store run %s", run.run_id)
    finally:
        db.close()


def list_runs(db: Session, limit: int = 100) -> list[CrawlRun]:
    return db.query(CrawlRun).order_by(desc(CrawlRun.started_at), CrawlRun.id).limit(limit).all()

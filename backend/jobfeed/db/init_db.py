from __future__ import annotations
from jobfeed.db.database import Base, engine
from jobfeed.models import crawl_run  # noqa: F401


def init_db() -> None:
    Base.metadata.create_all(bind=engine)

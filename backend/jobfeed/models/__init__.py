from __future__ import annotations
from jobfeed.models.crawl_run import CrawlRun

__all__ = ["CrawlRun"]

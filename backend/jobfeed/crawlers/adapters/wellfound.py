from __future__ import annotations
import re

from jobfeed.crawlers.adapters.common import parse_listing_anchors
from jobfeed.crawlers.base import Listing, PagedSourceAdapter


class WellfoundAdapter(PagedSourceAdapter):
    source_name = "wellfound"

    def page_url(self, page: int) -> str:
        role = re.sub(r"[^a-z0-9]+", "-", self.config.search_query.lower()).strip("-")
        url = f"https://wellfound.com/role/{role}"
        return url if page == 1 else f"{url}?page={page}"

    def parse_page(self, html: str, page_url: str) -> list[Listing]:
        return parse_listing_anchors(html, page_url, "wellfound", "wellfound.com")

from __future__ import annotations
from urllib.parse import urlencode, urljoin

from jobfeed.crawlers.base import Listing, PagedSourceAdapter
from jobfeed.crawlers.http_helpers import soup_links

BASE_URL = "https://cryptojobslist.com"


def _text(el) -> str:
    return " ".join(el.get_text(" ", strip=True).split()) if el else ""


class CryptoJobsListAdapter(PagedSourceAdapter):
    source_name = "cryptojobslist"

    def page_url(self, page: int) -> str:
        params = {"q": self.config.search_query}
        if page > 1:
            params["page"] = page
        return f"{BASE_URL}/search?{urlencode(params)}"

    def parse_page(self, html: str, page_url: str) -> list[Listing]:
        soup, _ = soup_links(html)
        listings: list[Listing] = []

        for row in soup.select("table.job-preview-inline-table tbody tr"):
            link_el = row.select_one("a[href^='/jobs/']")
            if not link_el or not link_el.get("href"):
                continue

            tds = row.find_all("td")
            company_url = ""
            if len(tds) > 1:
                company_anchor = tds[1].find("a", href=True)
                if company_anchor:
                    company_url = urljoin(BASE_URL, company_anchor["href"])
            location = _text(tds[3]).replace("📍", "").strip() if len(tds) > 3 else ""

            listings.append(
                Listing(
                    title=_text(link_el),
                    company=_text(tds[1]) if len(tds) > 1 else "",
                    location=location,
                    apply_url=urljoin(BASE_URL, link_el["href"]),
                    salary_range=_text(tds[4]) if len(tds) > 4 else "",
                    posted_text=_text(tds[6]) if len(tds) > 6 else "",
                    raw_payload={"site": "cryptojobslist", "company_url": company_url},
                )
            )

        return listings

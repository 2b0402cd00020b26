from __future__ import annotations
import re
from urllib.parse import urlencode, urljoin, urlsplit, urlunsplit

from jobfeed.crawlers.base import Listing, PagedSourceAdapter
from jobfeed.crawlers.http_helpers import soup_links

PAGE_SIZE = 25


def _text(el) -> str:
    return " ".join(el.get_text(" ", strip=True).split()) if el else ""


class LinkedInAdapter(PagedSourceAdapter):
    source_name = "linkedin"

    def page_url(self, page: int) -> str:
        params = {"keywords": self.config.search_query, "start": (page - 1) * PAGE_SIZE}
        if self.config.location:
            params["location"] = self.config.location
        return f"https://www.linkedin.com/jobs/search/?{urlencode(params)}"

    def parse_page(self, html: str, page_url: str) -> list[Listing]:
        soup, _ = soup_links(html)
        listings: list[Listing] = []

        for card in soup.select("div.base-card, div.base-search-card"):
            title_el = card.select_one("h3.base-search-card__title") or card.select_one("h3")
            company_el = card.select_one("h4.base-search-card__subtitle a") or card.select_one(
                "h4.base-search-card__subtitle"
            )
            link_el = card.select_one("a.base-card__full-link[href*='/jobs/view/']")
            if not title_el or not link_el:
                continue

            # Tracking parameters differ per impression; drop them so the URL is stable.
            parsed = urlsplit(urljoin("https://www.linkedin.com", link_el.get("href", "")))
            apply_url = urlunsplit((parsed.scheme, parsed.netloc, parsed.path, "", ""))

            job_id = None
            match = re.search(r"/jobs/view/.*?(\d+)/?$", parsed.path)
            if match:
                job_id = match.group(1)

            time_el = card.select_one("time")
            posted_text = ""
            if time_el:
                posted_text = time_el.get("datetime") or _text(time_el)

            company_url = ""
            if company_el is not None and company_el.name == "a":
                company_url = urljoin("https://www.linkedin.com", company_el.get("href", ""))

            listings.append(
                Listing(
                    title=_text(title_el),
                    company=_text(company_el),
                    location=_text(card.select_one(".job-search-card__location")),
                    apply_url=apply_url,
                    salary_range=_text(card.select_one(".job-search-card__salary-info")),
                    posted_text=posted_text,
                    raw_payload={"site": "linkedin", "job_id": job_id, "company_url": company_url},
                )
            )

        return listings

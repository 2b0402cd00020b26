from __future__ import annotations
import json
import logging
import re
from html import unescape
from urllib.parse import urljoin

from jobfeed.crawlers.base import Listing, PagedSourceAdapter
from jobfeed.crawlers.http_helpers import soup_links

logger = logging.getLogger(__name__)

BASE_URL = "https://web3.career"


def _slug(query: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", query.lower()).strip("-")


def _clean(value) -> str:
    return unescape(str(value or "")).strip()


class Web3CareerAdapter(PagedSourceAdapter):
    """Reads the schema.org ``JobPosting`` blocks embedded in each listing page."""

    source_name = "web3career"

    def page_url(self, page: int) -> str:
        url = f"{BASE_URL}/{_slug(self.config.search_query)}-jobs"
        return url if page == 1 else f"{url}?page={page}"

    def parse_page(self, html: str, page_url: str) -> list[Listing]:
        soup, _ = soup_links(html)
        listings: list[Listing] = []

        for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
            raw = script.get_text(strip=True)
            if not raw:
                continue
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                logger.debug("[web3career] skipping malformed ld+json block on %s", page_url)
                continue

            items = data if isinstance(data, list) else [data]
            for item in items:
                if isinstance(item, dict) and item.get("@type") == "JobPosting":
                    listings.append(self._to_listing(item))

        return listings

    @staticmethod
    def _to_listing(item: dict) -> Listing:
        org = item.get("hiringOrganization")
        company = ""
        company_url = ""
        if isinstance(org, dict):
            company = _clean(org.get("name"))
            company_url = str(org.get("url") or org.get("sameAs") or "").strip()

        location = ""
        requirements = item.get("applicantLocationRequirements")
        if isinstance(requirements, dict):
            location = _clean(requirements.get("name"))
        if not location:
            location = _clean(item.get("jobLocationType"))

        employment = item.get("employmentType")
        if isinstance(employment, list):
            job_type = ",".join(str(x) for x in employment)
        else:
            job_type = str(employment or "unknown")

        salary = ""
        base_salary = item.get("baseSalary")
        if isinstance(base_salary, dict) and isinstance(base_salary.get("value"), dict):
            value = base_salary["value"]
            low, high = value.get("minValue"), value.get("maxValue")
            if low or high:
                salary = f"{base_salary.get('currency', '')} {low or ''}-{high or ''}".strip()

        url = str(item.get("url") or "").strip()
        return Listing(
            title=_clean(item.get("title")),
            company=company,
            location=location,
            apply_url=urljoin(BASE_URL, url) if url else "",
            description=_clean(item.get("description")),
            salary_range=salary,
            job_type=job_type,
            posted_text=str(item.get("datePosted") or "").strip(),
            raw_payload={"site": "web3career", "company_url": company_url},
        )

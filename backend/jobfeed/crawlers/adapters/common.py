from __future__ import annotations
from urllib.parse import urljoin, urlparse

from jobfeed.crawlers.base import Listing
from jobfeed.crawlers.http_helpers import soup_links

KEYWORDS = ["job", "career", "position", "opening", "role", "engineer", "developer"]
COMPANY_SELECTORS = "a[href*='/company/'], [class*='company'], [class*='startup']"
MAX_ANCESTORS = 4


def _text(el) -> str:
    return " ".join(el.get_text(" ", strip=True).split()) if el else ""


def _company_near(anchor) -> str:
    """Company name from the closest enclosing card, if the card names one."""
    parent = anchor.parent
    for _ in range(MAX_ANCESTORS):
        if parent is None:
            break
        for candidate in parent.select(COMPANY_SELECTORS):
            if candidate is anchor:
                continue
            text = _text(candidate)
            if 1 < len(text) < 100:
                return text
        parent = parent.parent
    return ""


def parse_listing_anchors(html: str, listing_url: str, site_name: str, host_contains: str) -> list[Listing]:
    """Generic parser for listing pages without structured markup: job-looking links on the site's own host."""
    _, links = soup_links(html)
    listings: list[Listing] = []
    seen: set[str] = set()

    for a in links:
        href = (a.get("href") or "").strip()
        text = _text(a)
        if not href or not text or len(text) < 8:
            continue

        full_url = urljoin(listing_url, href)
        host = (urlparse(full_url).netloc or "").lower()
        if host_contains not in host or "/company/" in full_url:
            continue
        if not any(k in f"{text} {full_url}".lower() for k in KEYWORDS):
            continue
        if full_url in seen:
            continue
        seen.add(full_url)

        listings.append(
            Listing(
                title=text[:220],
                company=_company_near(a),
                apply_url=full_url,
                raw_payload={"site": site_name, "from_listing": listing_url, "anchor_text": text},
            )
        )

    return listings

from __future__ import annotations
import logging
from typing import Iterable

from jobfeed.crawlers.base import Listing
from jobfeed.utils.hash import dedup_key

logger = logging.getLogger(__name__)

MAX_DESCRIPTION = 5000
MAX_TITLE = 255
MAX_COMPANY = 255
MAX_URL = 1000


def listing_key(listing: Listing, include_location: bool = True) -> str:
    return dedup_key(listing.title, listing.company, listing.location if include_location else None)


def dedupe(listings: Iterable[Listing], include_location: bool = True) -> list[Listing]:
    """Stable, first-seen-wins removal of listings sharing a dedup key."""
    seen: set[str] = set()
    unique: list[Listing] = []
    total = 0
    for listing in listings:
        total += 1
        key = listing_key(listing, include_location)
        if key in seen:
            continue
        seen.add(key)
        unique.append(listing)

    if len(unique) < total:
        logger.info("[dedupe] removed %d duplicate listing(s)", total - len(unique))
    return unique


def _clip(value: str, limit: int) -> str:
    if value and len(value) > limit:
        return value[: limit - 3] + "..."
    return value


def truncate_fields(listing: Listing) -> Listing:
    # Apply URLs are dropped rather than clipped; a clipped URL would not resolve.
    listing.description = _clip(listing.description, MAX_DESCRIPTION)
    listing.title = _clip(listing.title, MAX_TITLE)
    listing.company = _clip(listing.company, MAX_COMPANY)
    if listing.apply_url and len(listing.apply_url) > MAX_URL:
        listing.apply_url = ""
    return listing

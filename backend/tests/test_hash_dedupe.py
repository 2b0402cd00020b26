from __future__ import annotations
from jobfeed.crawlers.base import Listing
from jobfeed.services.dedupe import MAX_DESCRIPTION, dedupe, truncate_fields
from jobfeed.utils.hash import dedup_key


def _listing(title="Software Engineer", company="Acme", location="Pune", source="x", url="https://x.com/jobs/1"):
    return Listing(title=title, company=company, location=location, source=source, apply_url=url)


def test_dedup_key_is_stable_and_case_insensitive():
    a = dedup_key("Senior Solidity Engineer", "Acme", "Remote")
    b = dedup_key("  senior   solidity engineer ", "ACME", "remote ")
    c = dedup_key("Senior Solidity Engineer", "Acme", "Berlin")

    assert a == b
    assert a != c
    assert dedup_key("Engineer", "Acme") != dedup_key("Engineer", "Acme", "")


def test_same_posting_from_two_sources_collapses_to_first_seen():
    first = _listing(source="x", url="https://x.com/jobs/1")
    second = _listing(title="software engineer ", company="ACME", source="y", url="https://y.com/jobs/9")

    result = dedupe([first, second])

    assert result == [first]
    assert result[0].source == "x"


def test_dedupe_is_idempotent_and_keeps_order():
    listings = [
        _listing(title="A"),
        _listing(title="B"),
        _listing(title="a"),
        _listing(title="C", location="Remote"),
        _listing(title="C", location="Berlin"),
        _listing(title="B"),
    ]

    once = dedupe(listings)
    twice = dedupe(once)

    assert [item.title for item in once] == ["A", "B", "C", "C"]
    assert twice == once


def test_dedupe_without_location_merges_cities():
    listings = [_listing(location="Pune"), _listing(location="Mumbai")]

    assert len(dedupe(listings)) == 2
    assert len(dedupe(listings, include_location=False)) == 1


def test_truncate_fields_clips_text_and_blanks_long_urls():
    listing = _listing(title="T" * 300, url="https://x.com/" + "a" * 1200)
    listing.description = "d" * (MAX_DESCRIPTION + 10)

    truncate_fields(listing)

    assert len(listing.title) == 255
    assert listing.title.endswith("...")
    assert len(listing.description) == MAX_DESCRIPTION
    assert listing.apply_url == ""
    assert listing.is_valid() is False

from __future__ import annotations
from jobfeed.core.config import DEFAULT_MAX_PAGES, DEFAULT_SEARCH_QUERY, Settings, SourceSettings


def test_source_settings_fall_back_to_defaults():
    cfg = SourceSettings(search_query="   ", request_delay_seconds=-1, max_pages=0, max_retries="lots")

    assert cfg.search_query == DEFAULT_SEARCH_QUERY
    assert cfg.request_delay_seconds == 3.0
    assert cfg.max_pages == DEFAULT_MAX_PAGES
    assert cfg.max_retries == 4


def test_source_settings_keep_valid_values():
    cfg = SourceSettings(search_query=" data engineer ", location="Pune", request_delay_seconds="1.5", max_pages="2")

    assert cfg.search_query == "data engineer"
    assert cfg.request_delay_seconds == 1.5
    assert cfg.max_pages == 2


def test_out_of_range_globals_are_corrected():
    cfg = Settings(
        fanout_workers=50,
        verification_workers=0,
        freshness_window_days=-3,
        max_enrichment_count=-1,
        fetch_jitter_ratio=4,
        log_level="chatty",
    )

    assert cfg.fanout_workers == 10
    assert cfg.verification_workers == 1
    assert cfg.freshness_window_days == 7
    assert cfg.max_enrichment_count == 50
    assert cfg.fetch_jitter_ratio == 0.3
    assert cfg.log_level == "INFO"


def test_stage_budgets_stay_below_deadline():
    cfg = Settings(
        aggregation_deadline_seconds=10,
        source_timeout_seconds=40,
        enrichment_timeout_seconds=0,
        verification_timeout_seconds=5,
    )

    assert cfg.source_timeout_seconds == 9.0
    assert cfg.enrichment_timeout_seconds < 10
    assert cfg.verification_timeout_seconds == 5
    assert cfg.verification_batch_timeout_seconds < 10


def test_max_delay_raised_to_min_delay():
    cfg = Settings(fetch_min_delay_seconds=4, fetch_max_delay_seconds=1)

    assert cfg.fetch_max_delay_seconds == 4


def test_per_source_settings_from_environment(monkeypatch):
    monkeypatch.setenv("SOURCES__LINKEDIN__MAX_PAGES", "2")
    monkeypatch.setenv("SOURCES__LINKEDIN__SEARCH_QUERY", "platform engineer")

    cfg = Settings()

    assert cfg.source("linkedin").max_pages == 2
    assert cfg.source("LinkedIn").search_query == "platform engineer"
    assert cfg.source("wellfound").max_pages == DEFAULT_MAX_PAGES

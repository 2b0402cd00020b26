from __future__ import annotations
from jobfeed.core.config import Settings, settings
from jobfeed.crawlers.adapters.cryptojobslist import CryptoJobsListAdapter
from jobfeed.crawlers.adapters.linkedin import LinkedInAdapter
from jobfeed.crawlers.adapters.web3career import Web3CareerAdapter
from jobfeed.crawlers.adapters.wellfound import WellfoundAdapter
from jobfeed.crawlers.base import PagedSourceAdapter
from jobfeed.crawlers.http_helpers import RateLimitedFetcher

ADAPTERS = {
    "linkedin": LinkedInAdapter,
    "cryptojobslist": CryptoJobsListAdapter,
    "web3career": Web3CareerAdapter,
    "wellfound": WellfoundAdapter,
}


def build_adapters(fetcher: RateLimitedFetcher, cfg: Settings = settings) -> list[PagedSourceAdapter]:
    return [adapter_cls(fetcher, cfg.source(name)) for name, adapter_cls in ADAPTERS.items()]

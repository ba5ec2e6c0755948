"""
docfetch crawler: scrapes documentation pages through the Firecrawl API.

- Progressive timeouts for slow-rendering single-page-app docs
- Priority-ordered worker pool with bounded concurrency
- Truncated-render detection and same-site link discovery
- Page fetcher tying cache, circuit breaker and retry queue together
"""

from .fetcher import CrawlReport, DocFetcher, PageResult
from .firecrawl_client import FirecrawlClient
from .models import ScrapeOptions, ScrapeResponse
from .progressive_timeout import (
    ProgressiveTimeoutConfig,
    ReadinessRules,
    ScrapeResult,
    create_custom_config,
    scrape_with_progressive_timeout,
)
from .worker_pool import PRIORITY_LEVELS, WorkerPool, get_url_priority

__all__ = [
    "CrawlReport",
    "DocFetcher",
    "FirecrawlClient",
    "PRIORITY_LEVELS",
    "PageResult",
    "ProgressiveTimeoutConfig",
    "ReadinessRules",
    "ScrapeOptions",
    "ScrapeResponse",
    "ScrapeResult",
    "WorkerPool",
    "create_custom_config",
    "get_url_priority",
    "scrape_with_progressive_timeout",
]

"""
Progressive timeout strategy.

Slow-rendering documentation sites often return a skeleton page on the first
try. Each attempt here gets a larger timeout budget until the returned
content looks fully rendered or the attempts run out.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, Dict, Iterable, Optional, Tuple, Union

import async_timeout
import structlog

from docfetch.crawler.models import ScrapeOptions, ScrapeResponse
from docfetch.errors import ContentError
from docfetch.observability.metrics import increment, observe

logger = structlog.get_logger(__name__)

ScrapeFn = Callable[[str, ScrapeOptions], Awaitable[ScrapeResponse]]

HEAVY_SPA_HOSTS = ("react.dev", "angular.io", "vuejs.org")
SLOW_PRESET_HOSTS = ("react.dev", "angular.io", "nextjs.org")
LIGHTWEIGHT_MARKERS = ("/api/", "/reference/", ".md")
FAST_PRESET_MARKERS = ("/api/", ".md")
MIN_WAIT_TIME = 2.0


@dataclass(frozen=True)
class ReadinessRules:
    """Heuristics deciding whether scraped content is fully rendered."""

    min_length: int = 500
    structured_min_length: int = 1000
    loading_indicators: Tuple[str, ...] = (
        "loading...",
        "please wait",
        "initializing",
        "fetching data",
        '<div class="spinner"',
        '<div class="loader"',
        "skeleton-loader",
    )


@dataclass(frozen=True)
class ProgressiveTimeoutConfig:
    initial_timeout: float = 10.0
    max_timeout: float = 60.0
    timeout_increment: float = 10.0
    wait_time: float = 5.0
    max_retries: int = 3
    readiness: ReadinessRules = field(default_factory=ReadinessRules)


DEFAULT_PROGRESSIVE_CONFIG = ProgressiveTimeoutConfig()

FAST_PROGRESSIVE_CONFIG = ProgressiveTimeoutConfig(
    initial_timeout=5.0,
    max_timeout=20.0,
    timeout_increment=5.0,
    wait_time=2.0,
    max_retries=2,
)

SLOW_PROGRESSIVE_CONFIG = ProgressiveTimeoutConfig(
    initial_timeout=15.0,
    max_timeout=90.0,
    timeout_increment=15.0,
    wait_time=10.0,
    max_retries=4,
)


@dataclass
class ScrapeResult:
    data: ScrapeResponse
    attempt_count: int
    final_timeout: float
    total_time: float


def is_content_ready(content: Optional[str], rules: ReadinessRules = ReadinessRules()) -> bool:
    if not content or len(content) < rules.min_length:
        return False

    lowered = content.lower()
    if any(indicator in lowered for indicator in rules.loading_indicators):
        return False

    has_headers = "#" in content or "<h1" in content or "<h2" in content
    has_paragraphs = "\n\n" in content or "<p>" in content
    has_code = "```" in content or "<code" in content

    return has_headers or (has_paragraphs and len(content) > rules.structured_min_length) or has_code


def calculate_wait_time(url: str, base_wait_time: float) -> float:
    """Render wait for ``url``: doubled for heavy SPA sites, halved for API/Markdown pages."""
    lowered = url.lower()
    if any(host in lowered for host in HEAVY_SPA_HOSTS):
        return base_wait_time * 2
    if any(marker in lowered for marker in LIGHTWEIGHT_MARKERS):
        return max(MIN_WAIT_TIME, base_wait_time * 0.5)
    return base_wait_time


def create_custom_config(url: str) -> ProgressiveTimeoutConfig:
    lowered = url.lower()
    if any(marker in lowered for marker in FAST_PRESET_MARKERS):
        return FAST_PROGRESSIVE_CONFIG
    if any(host in lowered for host in SLOW_PRESET_HOSTS):
        return SLOW_PROGRESSIVE_CONFIG
    return DEFAULT_PROGRESSIVE_CONFIG


async def scrape_with_progressive_timeout(
    scrape_fn: ScrapeFn,
    url: str,
    config: Optional[ProgressiveTimeoutConfig] = None,
    options: Optional[ScrapeOptions] = None,
) -> ScrapeResult:
    """
    Call ``scrape_fn`` with escalating timeouts until the content is ready.

    Each attempt is bounded by ``async_timeout.timeout(current_timeout)``. Timeouts
    and unready content move on to the next attempt with a larger budget; any
    other exception propagates immediately.

    Raises:
        TimeoutError: every attempt timed out (the last one is re-raised).
        ContentError: attempts completed but never produced ready content.
    """
    config = config or DEFAULT_PROGRESSIVE_CONFIG
    base_options = options or ScrapeOptions()
    wait_time = calculate_wait_time(url, config.wait_time)

    current_timeout = config.initial_timeout
    attempt_count = 0
    start = time.monotonic()
    last_error: Optional[BaseException] = None
    last_length = 0

    while attempt_count < config.max_retries and current_timeout <= config.max_timeout:
        attempt_count += 1
        attempt_options = replace(base_options, wait_for=wait_time, timeout=current_timeout)

        try:
            async with async_timeout.timeout(current_timeout):
                response = await scrape_fn(url, attempt_options)
        except (asyncio.TimeoutError, TimeoutError) as e:
            last_error = e
            increment("scrape_attempts_total", labels={"outcome": "timeout"})
            logger.info(
                "Scrape attempt timed out",
                url=url,
                attempt=attempt_count,
                timeout=current_timeout,
            )
        else:
            content = response.content
            if is_content_ready(content, config.readiness):
                total_time = time.monotonic() - start
                increment("scrape_attempts_total", labels={"outcome": "ready"})
                observe("scrape_latency_seconds", total_time)
                return ScrapeResult(
                    data=response,
                    attempt_count=attempt_count,
                    final_timeout=current_timeout,
                    total_time=total_time,
                )

            last_length = len(content or "")
            increment("scrape_attempts_total", labels={"outcome": "not_ready"})
            logger.info("Scraped content not ready", url=url, attempt=attempt_count, length=last_length)

        current_timeout = min(current_timeout + config.timeout_increment, config.max_timeout)

    if last_error is not None:
        raise last_error
    raise ContentError(
        f"Failed to scrape {url} after {attempt_count} attempts",
        content_length=last_length,
        context={"url": url},
    )


async def batch_scrape_with_progressive_timeout(
    scrape_fn: ScrapeFn,
    urls: Iterable[str],
    config: Optional[ProgressiveTimeoutConfig] = None,
) -> Dict[str, Union[ScrapeResult, Exception]]:
    """Scrape ``urls`` concurrently; failures are returned in place of results."""
    urls = list(urls)

    async def _one(url: str) -> Union[ScrapeResult, Exception]:
        try:
            return await scrape_with_progressive_timeout(scrape_fn, url, config or create_custom_config(url))
        except Exception as e:
            return e

    results = await asyncio.gather(*(_one(url) for url in urls))
    return dict(zip(urls, results))

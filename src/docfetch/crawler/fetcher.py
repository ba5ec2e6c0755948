"""
Page fetcher: the unit of work behind ``docfetch scrape`` and ``docfetch crawl``.

For a single page it checks the cache, takes the per-URL scrape lock, asks the
circuit breaker for permission, scrapes with progressive timeouts, feeds the
outcome back to the breaker, caches the result and, on a retryable failure,
schedules a deferred retry.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Set, Tuple

import structlog
from structlog.contextvars import bind_contextvars, unbind_contextvars

from docfetch.cache.keys import normalize_url
from docfetch.cache.two_tier import TwoTierCache
from docfetch.config.config import ContentConfig, CrawlConfig
from docfetch.crawler.content import detect_truncation, extract_links, is_within_scope
from docfetch.crawler.models import ScrapeOptions, ScrapeResponse
from docfetch.crawler.progressive_timeout import create_custom_config, scrape_with_progressive_timeout
from docfetch.crawler.worker_pool import WorkerPool, get_url_priority
from docfetch.errors import CircuitBreakerError, ContentError, NetworkError, is_retryable
from docfetch.recovery.circuit_breaker import CircuitBreaker
from docfetch.recovery.retry_queue import RetryQueue, RetryTask

logger = structlog.get_logger(__name__)


class Scraper(Protocol):
    async def scrape(self, url: str, options: Optional[ScrapeOptions] = None) -> ScrapeResponse: ...


def _upstream_alive(error: BaseException) -> bool:
    """A 4xx answer means the API is up and rejected this URL."""
    if not isinstance(error, NetworkError) or error.status_code is None:
        return False
    return 400 <= error.status_code < 500 and not is_retryable(error)


@dataclass
class PageResult:
    url: str
    markdown: str
    cached: bool
    attempts: int = 0
    links: List[str] = field(default_factory=list)


@dataclass
class CrawlReport:
    start_url: str
    pages: List[PageResult] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def cached_pages(self) -> int:
        return sum(1 for page in self.pages if page.cached)

    def to_markdown(self) -> str:
        """Consolidate every fetched page into one document with a provenance header."""
        finished = self.finished_at or datetime.now(timezone.utc)
        pages = [page for page in self.pages if page.markdown.strip()]
        header = (
            "<!--\n"
            f"Downloaded via docfetch on {finished:%B %d, %Y} at {finished:%H:%M} UTC\n"
            f"Source URL: {self.start_url}\n"
            f"Total pages processed: {len(self.pages) + len(self.failures)}\n"
            f"Pages with content: {len(pages)}\n"
            f"Pages failed: {len(self.failures)}\n"
            "-->\n\n"
        )
        body = "".join(f"# {page.url}\n\n{page.markdown.strip()}\n\n---\n\n" for page in pages)
        return header + body


class DocFetcher:
    """Composes cache, circuit breaker, retry queue and scraper. Built once by the container."""

    def __init__(
        self,
        cache: TwoTierCache,
        breaker: CircuitBreaker,
        retry_queue: RetryQueue,
        scraper: Scraper,
        content_config: Optional[ContentConfig] = None,
        crawl_config: Optional[CrawlConfig] = None,
    ) -> None:
        self.cache = cache
        self.breaker = breaker
        self.retry_queue = retry_queue
        self.scraper = scraper
        self.content_config = content_config or ContentConfig()
        self.crawl_config = crawl_config or CrawlConfig()

    async def _cached(self, url: str) -> Optional[str]:
        cached = await self.cache.get(url)
        if cached is None:
            return None
        if detect_truncation(cached, self.content_config):
            logger.warning("Removed truncated cached content", url=url, length=len(cached))
            await self.cache.delete(url)
            return None
        return cached

    async def fetch_page(self, url: str, *, use_cache: bool = True, enqueue_on_failure: bool = True) -> PageResult:
        """
        Fetch one page as Markdown.

        Raises:
            CircuitBreakerError: the scraping API is currently refusing traffic.
            ContentError: the page came back truncated or never finished rendering.
            NetworkError / asyncio.TimeoutError: the upstream call failed.
        """
        if use_cache:
            cached = await self._cached(url)
            if cached is not None:
                logger.debug("Serving page from cache", url=url)
                return PageResult(url=url, markdown=cached, cached=True)

        lock_id = await self.cache.acquire_lock(url)
        if lock_id is None:
            logger.info("Page is being scraped elsewhere, waiting", url=url)
            await self.cache.wait_for_lock(url)
            cached = await self._cached(url)
            if cached is not None:
                return PageResult(url=url, markdown=cached, cached=True)
            lock_id = await self.cache.acquire_lock(url)

        try:
            return await self._scrape(url, enqueue_on_failure)
        finally:
            if lock_id is not None:
                await self.cache.release_lock(url, lock_id)

    async def _scrape(self, url: str, enqueue_on_failure: bool) -> PageResult:
        if not await self.breaker.can_request():
            status = await self.breaker.get_status()
            raise CircuitBreakerError(
                "Scraping API is temporarily unavailable",
                state=status["state"],
                cooldown_remaining=status["stats"]["cooldown_remaining"],
                context={"url": url},
            )

        try:
            result = await scrape_with_progressive_timeout(self.scraper.scrape, url, create_custom_config(url))
            markdown = result.data.markdown or ""
            if detect_truncation(markdown, self.content_config):
                raise ContentError(
                    f"Truncated content detected ({len(markdown)} chars)",
                    content_length=len(markdown),
                    truncated=True,
                    context={"url": url},
                )
        except Exception as e:
            if _upstream_alive(e):
                await self.breaker.record_success()
            else:
                await self.breaker.record_failure()
            if is_retryable(e) and enqueue_on_failure:
                await self.retry_queue.enqueue(RetryTask(url=url, last_error=str(e) or type(e).__name__))
            logger.warning("Failed to fetch page", url=url, error=str(e) or type(e).__name__, retryable=is_retryable(e))
            raise

        await self.breaker.record_success()
        if len(markdown) >= self.content_config.min_content_length:
            await self.cache.set(url, markdown)

        logger.info("Fetched page", url=url, length=len(markdown), attempts=result.attempt_count)
        return PageResult(
            url=url,
            markdown=markdown,
            cached=False,
            attempts=result.attempt_count,
            links=result.data.links,
        )

    async def crawl(
        self,
        start_url: str,
        *,
        limit: Optional[int] = None,
        max_depth: Optional[int] = None,
        concurrency: Optional[int] = None,
    ) -> CrawlReport:
        """
        Crawl ``start_url`` and the documentation pages under it.

        Links found on each page are scheduled by :func:`get_url_priority` as
        long as they stay on the same host and under the start path. Every URL
        is fetched at most once. A page that fails is recorded in the report
        and never stops the crawl.
        """
        limit = limit or self.crawl_config.max_urls
        max_depth = self.crawl_config.max_depth if max_depth is None else max_depth
        concurrency = concurrency or self.crawl_config.concurrency

        report = CrawlReport(start_url=start_url)
        scheduled: Set[str] = set()
        crawl_id = uuid.uuid4().hex[:12]

        def schedule(url: str, depth: int) -> None:
            key = normalize_url(url)
            if key in scheduled or len(scheduled) >= limit:
                return
            scheduled.add(key)
            pool.add((url, depth), get_url_priority(url))

        async def process(item: Tuple[str, int]) -> PageResult:
            url, depth = item
            try:
                page = await self.fetch_page(url)
            except Exception as e:
                report.failures[url] = str(e) or type(e).__name__
                raise

            report.pages.append(page)
            if depth < max_depth:
                for link in extract_links(page.markdown, url) + page.links:
                    if is_within_scope(link, start_url):
                        schedule(link, depth + 1)
            return page

        pool: WorkerPool[Tuple[str, int], PageResult] = WorkerPool(process, concurrency=concurrency)

        bind_contextvars(crawl_id=crawl_id)
        logger.info("Starting crawl", start_url=start_url, limit=limit, max_depth=max_depth, concurrency=concurrency)
        try:
            schedule(start_url, 0)
            pool.start()
            await pool.wait_for_completion()
            await pool.stop()
        finally:
            report.finished_at = datetime.now(timezone.utc)
            logger.info(
                "Crawl finished",
                pages=len(report.pages),
                cached=report.cached_pages,
                failed=len(report.failures),
            )
            unbind_contextvars("crawl_id")

        return report

    async def process_retry_queue(self, batch_size: int = 10) -> Dict[str, int]:
        """Re-attempt due retry tasks. Failures go back on the queue with the next attempt number."""

        async def _retry(task: RetryTask) -> bool:
            await self.fetch_page(task.url, enqueue_on_failure=False)
            return True

        return await self.retry_queue.process_ready(_retry, batch_size=batch_size)

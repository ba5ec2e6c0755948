"""
Async client for the Firecrawl scrape endpoint.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, Optional

import aiohttp
import structlog

from docfetch.config.config import ScraperConfig
from docfetch.crawler.models import ScrapeOptions, ScrapeResponse
from docfetch.errors import RETRYABLE_STATUS_CODES, FirecrawlError, NetworkError

logger = structlog.get_logger(__name__)


class FirecrawlClient:
    """Thin aiohttp wrapper around ``POST <api_url>/scrape``."""

    def __init__(self, config: ScraperConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self.api_url = config.api_url.rstrip("/")
        self.session = session
        self._owns_session = session is None

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "User-Agent": self.config.user_agent}
        if self.config.api_key is not None:
            headers["Authorization"] = f"Bearer {self.config.api_key.get_secret_value()}"
        return headers

    async def initialize(self) -> None:
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout),
                headers=self._headers(),
            )
            self._owns_session = True
            logger.info("Firecrawl client session initialized", api_url=self.api_url)

    async def close(self) -> None:
        if self.session is not None and self._owns_session:
            await self.session.close()
        self.session = None

    async def __aenter__(self) -> "FirecrawlClient":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _build_payload(self, url: str, options: ScrapeOptions) -> Dict[str, Any]:
        # Firecrawl takes durations in milliseconds.
        return {
            "url": url,
            "formats": list(options.formats),
            "onlyMainContent": options.only_main_content,
            "waitFor": int(options.wait_for * 1000),
            "timeout": int(options.timeout * 1000),
            "removeBase64Images": options.remove_base64_images,
            "skipTlsVerification": options.skip_tls_verification,
        }

    async def scrape(self, url: str, options: Optional[ScrapeOptions] = None) -> ScrapeResponse:
        """
        Scrape one page.

        Raises:
            FirecrawlError: the API answered with a non-2xx status or ``success: false``.
            NetworkError: the request never got a response.
            asyncio.TimeoutError: the transport timed out.
        """
        if self.session is None:
            await self.initialize()
        assert self.session is not None

        options = options or ScrapeOptions(only_main_content=self.config.only_main_content)
        start = time.monotonic()

        try:
            async with self.session.post(
                f"{self.api_url}/scrape",
                json=self._build_payload(url, options),
                headers=self._headers(),
            ) as response:
                status = response.status
                try:
                    body = await response.json(content_type=None)
                except ValueError:
                    body = {}
        except asyncio.TimeoutError:
            raise
        except aiohttp.ClientError as e:
            logger.warning("Firecrawl request failed", url=url, error=str(e))
            raise NetworkError(f"Firecrawl request failed: {e}", url=url) from e

        body = body if isinstance(body, dict) else {}
        elapsed = time.monotonic() - start

        if not 200 <= status < 300:
            api_error = body.get("error")
            logger.warning("Firecrawl returned an error", url=url, status=status, error=api_error)
            raise FirecrawlError(
                f"Firecrawl API error {status}: {api_error or 'unknown error'}",
                status_code=status,
                url=url,
                api_error=api_error,
                retryable=status in RETRYABLE_STATUS_CODES,
            )

        if not body.get("success", False):
            api_error = body.get("error")
            raise FirecrawlError(
                f"Firecrawl scrape unsuccessful: {api_error or 'no content returned'}",
                status_code=status,
                url=url,
                api_error=api_error,
                retryable=False,
            )

        data = body.get("data") or {}
        markdown = data.get("markdown") or data.get("content")
        logger.debug("Firecrawl scrape complete", url=url, status=status, elapsed=round(elapsed, 3))

        return ScrapeResponse(
            success=True,
            markdown=markdown,
            links=list(data.get("links") or []),
            metadata=dict(data.get("metadata") or {}),
        )

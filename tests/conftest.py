"""
Shared fixtures for the docfetch test suite.

Redis is replaced by fakeredis, and the scraping API by a scripted stub
scraper, so no test needs the network.
"""

import asyncio
from typing import Any, AsyncGenerator, Dict, List, Optional, Union
from unittest.mock import AsyncMock, MagicMock

import fakeredis
import pytest
import pytest_asyncio
import structlog
from redis.exceptions import ConnectionError as RedisConnectionError

from docfetch.crawler.models import ScrapeOptions, ScrapeResponse
from docfetch.observability.metrics import METRICS

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Integration tests across modules")

    # Route structlog through stdlib logging so records land in pytest's log capture
    # instead of stdout, where CLI tests read their output.
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.KeyValueRenderer(key_order=["event"]),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


@pytest_asyncio.fixture(autouse=True)
async def cleanup_tasks() -> AsyncGenerator[None, None]:
    """Cancel any task a test leaves running so it cannot leak into the next one."""
    tasks_before = asyncio.all_tasks()
    yield
    new_tasks = asyncio.all_tasks() - tasks_before

    for task in new_tasks:
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                print(f"Unexpected error during task cleanup: {e}")


# ============================================================================
# Durable store
# ============================================================================


@pytest_asyncio.fixture
async def redis_client() -> AsyncGenerator[fakeredis.FakeAsyncRedis, None]:
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def broken_redis() -> MagicMock:
    """A Redis client whose every command fails with a connection error."""
    error = RedisConnectionError("connection refused")
    client = MagicMock()
    for command in ("get", "set", "mget", "delete", "exists", "zadd", "zrangebyscore", "zrange", "zrem",
                    "zcard", "zcount", "sadd", "scard", "smembers"):
        setattr(client, command, AsyncMock(side_effect=error))
    client.pipeline.side_effect = error
    return client


# ============================================================================
# Scraping API
# ============================================================================

ScriptedResult = Union[ScrapeResponse, BaseException, str]


class StubScraper:
    """
    Scraper returning scripted results in order.

    A string becomes a successful response with that Markdown, an exception
    is raised, and the last entry repeats once the script runs out.
    """

    def __init__(self, *results: ScriptedResult, delay: float = 0.0) -> None:
        self.results: List[ScriptedResult] = list(results)
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []

    async def scrape(self, url: str, options: Optional[ScrapeOptions] = None) -> ScrapeResponse:
        self.calls.append({"url": url, "options": options})
        if self.delay:
            await asyncio.sleep(self.delay)

        result = self.results[min(len(self.calls), len(self.results)) - 1]
        if isinstance(result, BaseException):
            raise result
        if isinstance(result, str):
            return ScrapeResponse(success=True, markdown=result)
        return result

    @property
    def urls(self) -> List[str]:
        return [call["url"] for call in self.calls]


@pytest.fixture
def structured_markdown() -> str:
    """A 600-character, well-structured documentation page."""
    body = (
        "# Getting Started\n\n"
        "Install the package and import it in your project.\n\n"
        "## Usage\n\n"
        "```python\nimport example\nexample.run()\n```\n\n"
    )
    return (body + "More details follow in the reference section. " * 20)[:600]


def doc_page(title: str, links: Optional[List[str]] = None, length: int = 800) -> str:
    """Build a ready documentation page with optional Markdown links."""
    link_lines = "".join(f"- [{link}]({link})\n" for link in links or [])
    page = f"# {title}\n\nIntroduction to {title}.\n\n{link_lines}\n## Details\n\n"
    filler = "Reference text describing the behaviour in depth. "
    while len(page) < length:
        page += filler
    return page


# ============================================================================
# Metrics
# ============================================================================


def metric_value(name: str, **labels: str) -> float:
    """Current value of a docfetch counter or gauge."""
    metric = METRICS[name]
    if labels:
        metric = metric.labels(**labels)
    return metric._value.get()


@pytest.fixture(name="stub_scraper")
def stub_scraper_fixture():
    """Factory fixture: ``stub_scraper(result, ...)`` builds a :class:`StubScraper`."""
    return StubScraper


@pytest.fixture(name="doc_page")
def doc_page_fixture():
    return doc_page


@pytest.fixture(name="metric_value")
def metric_value_fixture():
    return metric_value

"""
Unit tests for the Firecrawl API client, with HTTP mocked by aioresponses.
"""

import asyncio

import aiohttp
import pytest
import pytest_asyncio
from aioresponses import aioresponses

from docfetch.config.config import ScraperConfig
from docfetch.crawler.firecrawl_client import FirecrawlClient
from docfetch.crawler.models import ScrapeOptions
from docfetch.errors import FirecrawlError, NetworkError, is_retryable

API_URL = "https://firecrawl.test/v1"
SCRAPE_URL = f"{API_URL}/scrape"
PAGE = "https://docs.example.com/guide"


@pytest.fixture
def mocked():
    with aioresponses() as m:
        yield m


@pytest_asyncio.fixture
async def client():
    client = FirecrawlClient(ScraperConfig(api_url=API_URL + "/", api_key="secret-token"))
    await client.initialize()
    yield client
    await client.close()


def _sent_requests(mocked):
    return [call for calls in mocked.requests.values() for call in calls]


@pytest.mark.unit
class TestFirecrawlClientSuccess:
    @pytest.mark.asyncio
    async def test_returns_markdown_links_and_metadata(self, client, mocked):
        mocked.post(
            SCRAPE_URL,
            payload={
                "success": True,
                "data": {
                    "markdown": "# Guide",
                    "links": ["https://docs.example.com/a"],
                    "metadata": {"title": "Guide"},
                },
            },
        )

        response = await client.scrape(PAGE)

        assert response.success is True
        assert response.markdown == "# Guide"
        assert response.links == ["https://docs.example.com/a"]
        assert response.metadata == {"title": "Guide"}

    @pytest.mark.asyncio
    async def test_falls_back_to_content_field(self, client, mocked):
        mocked.post(SCRAPE_URL, payload={"success": True, "data": {"content": "# Legacy"}})

        response = await client.scrape(PAGE)

        assert response.content == "# Legacy"

    @pytest.mark.asyncio
    async def test_payload_uses_milliseconds_and_bearer_auth(self, client, mocked):
        mocked.post(SCRAPE_URL, payload={"success": True, "data": {"markdown": "# Guide"}})

        await client.scrape(PAGE, ScrapeOptions(wait_for=2.5, timeout=15, only_main_content=False))

        [request] = _sent_requests(mocked)
        payload = request.kwargs["json"]
        assert payload["url"] == PAGE
        assert payload["formats"] == ["markdown"]
        assert payload["waitFor"] == 2500
        assert payload["timeout"] == 15000
        assert payload["onlyMainContent"] is False
        assert request.kwargs["headers"]["Authorization"] == "Bearer secret-token"

    @pytest.mark.asyncio
    async def test_no_auth_header_without_key(self, mocked):
        mocked.post(SCRAPE_URL, payload={"success": True, "data": {"markdown": "# Guide"}})

        async with FirecrawlClient(ScraperConfig(api_url=API_URL)) as client:
            await client.scrape(PAGE)

        [request] = _sent_requests(mocked)
        assert "Authorization" not in request.kwargs["headers"]


@pytest.mark.unit
class TestFirecrawlClientErrors:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
    async def test_transient_statuses_are_retryable(self, client, mocked, status):
        mocked.post(SCRAPE_URL, status=status, payload={"success": False, "error": "busy"})

        with pytest.raises(FirecrawlError) as exc_info:
            await client.scrape(PAGE)

        error = exc_info.value
        assert error.status_code == status
        assert error.api_error == "busy"
        assert error.retryable is True
        assert is_retryable(error) is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 401, 403, 404])
    async def test_client_errors_are_not_retryable(self, client, mocked, status):
        mocked.post(SCRAPE_URL, status=status, payload={"error": "rejected"})

        with pytest.raises(FirecrawlError) as exc_info:
            await client.scrape(PAGE)

        assert exc_info.value.retryable is False
        assert is_retryable(exc_info.value) is False

    @pytest.mark.asyncio
    async def test_unsuccessful_body_is_an_error(self, client, mocked):
        mocked.post(SCRAPE_URL, payload={"success": False, "error": "blocked by robots"})

        with pytest.raises(FirecrawlError) as exc_info:
            await client.scrape(PAGE)

        assert exc_info.value.status_code == 200
        assert exc_info.value.retryable is False
        assert "blocked by robots" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_non_json_error_body(self, client, mocked):
        mocked.post(SCRAPE_URL, status=502, body="<html>Bad gateway</html>")

        with pytest.raises(FirecrawlError) as exc_info:
            await client.scrape(PAGE)

        assert exc_info.value.retryable is True
        assert exc_info.value.api_error is None

    @pytest.mark.asyncio
    async def test_connection_failure_becomes_network_error(self, client, mocked):
        mocked.post(SCRAPE_URL, exception=aiohttp.ClientConnectionError("refused"))

        with pytest.raises(NetworkError) as exc_info:
            await client.scrape(PAGE)

        assert not isinstance(exc_info.value, FirecrawlError)
        assert exc_info.value.url == PAGE
        assert is_retryable(exc_info.value) is True

    @pytest.mark.asyncio
    async def test_transport_timeout_propagates(self, client, mocked):
        mocked.post(SCRAPE_URL, exception=asyncio.TimeoutError())

        with pytest.raises(asyncio.TimeoutError):
            await client.scrape(PAGE)

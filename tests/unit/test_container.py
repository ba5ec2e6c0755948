"""
Unit tests for the dependency container.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from docfetch.config import Config
from docfetch.container import DependencyContainer, LazyInstance
from docfetch.crawler.firecrawl_client import FirecrawlClient


@pytest.mark.unit
class TestDependencyContainer:
    @pytest.mark.asyncio
    async def test_components_share_the_injected_store(self, redis_client, stub_scraper):
        container = DependencyContainer(config=Config(), redis_client=redis_client, scraper=stub_scraper("# Page"))

        async with container.lifecycle():
            assert container.is_running is True
            assert container.get_cache().redis is redis_client
            assert container.get_circuit_breaker().redis is redis_client
            assert container.get_retry_queue().redis is redis_client

            fetcher = await container.get_fetcher()
            assert fetcher is await container.get_fetcher()
            assert fetcher.cache is container.get_cache()
            assert fetcher.breaker is container.get_circuit_breaker()

        assert container.is_running is False
        assert await redis_client.ping() is True

    @pytest.mark.asyncio
    async def test_memory_only_without_redis_url(self):
        container = DependencyContainer(config=Config())

        async with container.lifecycle():
            assert container.redis is None
            assert container.get_cache().is_redis_available() is False
            assert container.get_health_status()["durable_store"] is False

    @pytest.mark.asyncio
    async def test_config_values_reach_components(self, redis_client):
        config = Config.model_validate(
            {
                "cache": {"ttl": 7200, "local_ttl": 30},
                "circuit_breaker": {"name": "api", "failure_threshold": 9},
                "retry_queue": {"key_prefix": "jobs", "max_attempts": 2},
            }
        )
        container = DependencyContainer(config=config, redis_client=redis_client)
        await container.initialize()

        assert container.get_cache().ttl == 7200
        assert container.get_cache().local_ttl == 30
        assert container.get_circuit_breaker().key == "circuit:v1:api"
        assert container.get_circuit_breaker().failure_threshold == 9
        assert container.get_retry_queue().queue_key == "jobs:queue"
        assert container.get_retry_queue().max_attempts == 2

        await container.shutdown()

    def test_components_unavailable_before_initialize(self):
        container = DependencyContainer(config=Config())
        with pytest.raises(RuntimeError):
            container.get_cache()

    @pytest.mark.asyncio
    async def test_loads_config_from_yaml(self, tmp_path):
        config_file = tmp_path / "docfetch.yaml"
        config_file.write_text("crawl:\n  concurrency: 3\ncontent:\n  min_content_length: 50\n")
        container = DependencyContainer(config_path=config_file)

        async with container.lifecycle():
            assert container.config.crawl.concurrency == 3
            assert container.get_health_status()["config_path"] == str(config_file)

    @pytest.mark.asyncio
    async def test_default_scraper_is_firecrawl_client(self):
        container = DependencyContainer(config=Config())

        async with container.lifecycle():
            scraper = await container.get_scraper()
            assert isinstance(scraper, FirecrawlClient)
            assert scraper is await container.get_scraper()
            assert scraper.session is not None

        assert scraper.session is None

    @pytest.mark.asyncio
    async def test_shutdown_handlers_run_and_failures_are_contained(self):
        container = DependencyContainer(config=Config())
        sync_handler = MagicMock(side_effect=RuntimeError("boom"))
        async_handler = AsyncMock()
        container.add_shutdown_handler(sync_handler)
        container.add_shutdown_handler(async_handler)

        await container.initialize()
        await container.shutdown()
        await container.shutdown()

        sync_handler.assert_called_once()
        async_handler.assert_awaited_once()


@pytest.mark.unit
class TestLazyInstance:
    @pytest.mark.asyncio
    async def test_initialize_and_close_are_called_once(self):
        resource = MagicMock()
        resource.initialize = AsyncMock()
        resource.close = AsyncMock()
        factory = MagicMock(return_value=resource)
        lazy = LazyInstance(factory, "arg", key="value")

        assert await lazy.get() is resource
        assert await lazy.get() is resource
        factory.assert_called_once_with("arg", key="value")
        resource.initialize.assert_awaited_once()

        await lazy.cleanup()
        resource.close.assert_awaited_once()

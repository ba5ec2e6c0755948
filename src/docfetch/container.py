"""
Dependency injection container for docfetch components.

Every component is built once per container and handed to its consumers by
reference; nothing in docfetch is a module-level singleton.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, Dict, Generic, List, Optional, TypeVar
from uuid import uuid4

import structlog

from docfetch.config import Config

if TYPE_CHECKING:
    import redis.asyncio as redis

    from docfetch.cache import TwoTierCache
    from docfetch.crawler.fetcher import DocFetcher, Scraper
    from docfetch.recovery import CircuitBreaker, RetryQueue

T = TypeVar("T")


class LazyInstance(Generic[T]):
    """Lazy-loaded instance with lifecycle management."""

    def __init__(self, factory: Callable[..., T], *args: Any, **kwargs: Any) -> None:
        self._factory = factory
        self._args = args
        self._kwargs = kwargs
        self._instance: Optional[T] = None
        self._initialized = False

    async def get(self) -> T:
        if not self._initialized:
            self._instance = self._factory(*self._args, **self._kwargs)
            if hasattr(self._instance, "initialize") and callable(getattr(self._instance, "initialize", None)):
                await self._instance.initialize()  # type: ignore
            self._initialized = True
        assert self._instance is not None
        return self._instance

    async def cleanup(self) -> None:
        if self._instance and hasattr(self._instance, "close") and callable(getattr(self._instance, "close", None)):
            await self._instance.close()  # type: ignore
        self._instance = None
        self._initialized = False


class DependencyContainer:
    """
    Owns the Redis connection and the components built on it.

    ``redis_client`` and ``scraper`` may be passed in to replace the ones the
    container would build from configuration (tests use fakeredis and stub
    scrapers this way).
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        config: Optional[Config] = None,
        redis_client: Optional[redis.Redis] = None,
        scraper: Optional[Scraper] = None,
    ) -> None:
        self.config_path = config_path
        self.config = config
        self.logger = structlog.get_logger(self.__class__.__name__)

        self.redis: Optional[redis.Redis] = redis_client
        self._owns_redis = redis_client is None
        self._scraper_override = scraper

        self._cache: Optional[TwoTierCache] = None
        self._breaker: Optional[CircuitBreaker] = None
        self._retry_queue: Optional[RetryQueue] = None
        self._fetcher: Optional[DocFetcher] = None
        self._instances: Dict[str, LazyInstance[Any]] = {}
        self._instances_lock = asyncio.Lock()
        self._shutdown_handlers: List[Callable[[], Any]] = []

        self.container_id = str(uuid4())
        self.is_running = False

    async def initialize(self) -> None:
        if self.config is None:
            self.load_config()
        assert self.config is not None

        from docfetch.storage import create_redis_client

        if self.redis is None:
            self.redis = await create_redis_client(self.config.redis)

        self._create_components()
        self.is_running = True

        self.logger.info(
            "Dependency container initialized",
            container_id=self.container_id,
            config_path=str(self.config_path) if self.config_path else "default",
            durable_store=self.redis is not None,
        )

    def load_config(self) -> None:
        if self.config_path and self.config_path.exists():
            self.config = Config.from_yaml(self.config_path)
        else:
            self.config = Config()

    def _create_components(self) -> None:
        assert self.config is not None

        # Import modules only when needed to avoid circular imports
        from docfetch.cache import TwoTierCache
        from docfetch.crawler.firecrawl_client import FirecrawlClient
        from docfetch.recovery import CircuitBreaker, RetryQueue

        self._cache = TwoTierCache.from_config(self.config.cache, self.redis)
        self._breaker = CircuitBreaker.from_config(self.config.circuit_breaker, self.redis)
        self._retry_queue = RetryQueue.from_config(self.config.retry_queue, self.redis)
        self._fetcher = None
        self._instances = {"scraper": LazyInstance(FirecrawlClient, self.config.scraper)}

    def _require(self, component: Optional[T], name: str) -> T:
        if component is None:
            raise RuntimeError(f"Container not initialized, cannot provide {name}")
        return component

    def get_cache(self) -> TwoTierCache:
        return self._require(self._cache, "cache")

    def get_circuit_breaker(self) -> CircuitBreaker:
        return self._require(self._breaker, "circuit breaker")

    def get_retry_queue(self) -> RetryQueue:
        return self._require(self._retry_queue, "retry queue")

    async def get_scraper(self) -> Scraper:
        if self._scraper_override is not None:
            return self._scraper_override
        async with self._instances_lock:
            return await self._instances["scraper"].get()  # type: ignore

    async def get_fetcher(self) -> DocFetcher:
        if self._fetcher is None:
            from docfetch.crawler.fetcher import DocFetcher

            assert self.config is not None
            self._fetcher = DocFetcher(
                cache=self.get_cache(),
                breaker=self.get_circuit_breaker(),
                retry_queue=self.get_retry_queue(),
                scraper=await self.get_scraper(),
                content_config=self.config.content,
                crawl_config=self.config.crawl,
            )
        return self._fetcher

    @asynccontextmanager
    async def lifecycle(self) -> AsyncIterator[DependencyContainer]:
        """Context manager for proper lifecycle management."""
        try:
            await self.initialize()
            yield self
        finally:
            await self.shutdown()

    def add_shutdown_handler(self, handler: Callable[[], Any]) -> None:
        self._shutdown_handlers.append(handler)

    async def shutdown(self) -> None:
        if not self.is_running:
            return

        self.logger.info("Shutting down dependency container", container_id=self.container_id)

        for handler in self._shutdown_handlers:
            try:
                if asyncio.iscoroutinefunction(handler):
                    await handler()
                else:
                    handler()
            except Exception as e:
                self.logger.error("Error in shutdown handler", error=str(e))

        for name, instance in self._instances.items():
            try:
                await instance.cleanup()
            except Exception as e:
                self.logger.error(f"Error cleaning up {name}", error=str(e))

        if self._owns_redis:
            from docfetch.storage import close_redis_client

            await close_redis_client(self.redis)
            self.redis = None

        self.is_running = False
        self.logger.info("Dependency container shutdown complete")

    def get_health_status(self) -> Dict[str, Any]:
        return {
            "container_id": self.container_id,
            "is_running": self.is_running,
            "config_loaded": self.config is not None,
            "durable_store": self.redis is not None,
            "config_path": str(self.config_path) if self.config_path else None,
        }

"""
Operational status API for docfetch.

Exposes the cache, circuit breaker and retry queue statistics plus the
Prometheus metrics of the running process.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from docfetch import __version__
from docfetch.container import DependencyContainer

logger = structlog.get_logger(__name__)


def get_container(request: Request) -> DependencyContainer:
    return request.app.state.container


def create_app(container: Optional[DependencyContainer] = None) -> FastAPI:
    """Build the status API around ``container`` (a default one is created otherwise)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        active = container or DependencyContainer()
        started_here = not active.is_running
        if started_here:
            await active.initialize()
        app.state.container = active
        logger.info("Status API started", durable_store=active.redis is not None)

        yield

        if started_here:
            await active.shutdown()
        logger.info("Status API stopped")

    app = FastAPI(title="docfetch status", version=__version__, lifespan=lifespan)

    @app.get("/health")
    async def health(container: DependencyContainer = Depends(get_container)) -> Dict[str, Any]:
        return {"status": "ok", "version": __version__, **container.get_health_status()}

    @app.get("/api/cache/stats")
    async def cache_stats(container: DependencyContainer = Depends(get_container)) -> Dict[str, Any]:
        cache = container.get_cache()
        available = cache.is_redis_available()
        return {
            "type": "redis" if available else "memory-only",
            "stats": cache.get_stats(),
            "status": "connected" if available else "fallback",
        }

    @app.get("/api/circuit")
    async def circuit(container: DependencyContainer = Depends(get_container)) -> Dict[str, Any]:
        return await container.get_circuit_breaker().get_status()

    @app.get("/api/retry-queue")
    async def retry_queue(container: DependencyContainer = Depends(get_container)) -> Dict[str, Any]:
        queue = container.get_retry_queue()
        stats = await queue.get_stats()
        stats["failed"] = await queue.failed_count()
        return stats

    @app.get("/metrics")
    async def metrics() -> PlainTextResponse:
        """Endpoint for Prometheus to scrape."""
        return PlainTextResponse(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()

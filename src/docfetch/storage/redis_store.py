"""
Durable store connection.

Every component that persists state takes an optional ``redis.asyncio.Redis``
client. ``None`` means "no durable store" and each component falls back to its
in-memory or permissive behaviour instead of failing.
"""

from __future__ import annotations

from typing import Optional

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from docfetch.config.config import RedisConfig

logger = structlog.get_logger(__name__)


async def create_redis_client(config: RedisConfig) -> Optional[redis.Redis]:
    """
    Build a Redis client from configuration.

    Returns None when no URL is configured, or when the server cannot be
    reached at start-up and ``ping_on_startup`` is enabled.
    """
    if not config.url:
        logger.warning("Redis URL not configured, falling back to in-memory state only")
        return None

    client = redis.from_url(
        config.url,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=config.socket_timeout,
        socket_connect_timeout=config.socket_timeout,
        retry_on_timeout=True,
    )

    if config.ping_on_startup:
        try:
            await client.ping()
        except (RedisError, OSError) as e:
            logger.warning("Redis connection failed, falling back to in-memory state", error=str(e))
            await client.aclose()
            return None

    logger.info("Redis durable store initialized", url=_redact(config.url))
    return client


async def close_redis_client(client: Optional[redis.Redis]) -> None:
    if client is None:
        return
    try:
        await client.aclose()
        logger.info("Redis connection closed")
    except (RedisError, OSError) as e:
        logger.warning("Error closing Redis connection", error=str(e))


def _redact(url: str) -> str:
    """Hide the password part of a redis URL for logging."""
    if "@" not in url:
        return url
    scheme, _, rest = url.partition("://")
    return f"{scheme}://***@{rest.split('@', 1)[1]}"

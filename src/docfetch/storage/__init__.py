"""Durable store helpers."""

from .redis_store import close_redis_client, create_redis_client

__all__ = ["close_redis_client", "create_redis_client"]

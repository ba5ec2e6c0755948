"""
Durable retry queue for pages whose fetch failed.

Task ids live in a Redis sorted set scored by their due time; bodies are
stored separately with a 24h expiry. Tasks that exhaust their attempts are
moved to a "failed" set for inspection.
"""

from __future__ import annotations

import random
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional
from uuid import uuid4

import structlog
from pydantic import BaseModel, ConfigDict, Field

from docfetch.observability.metrics import increment

if TYPE_CHECKING:
    import redis.asyncio as redis

    from docfetch.config.config import RetryQueueSettings

logger = structlog.get_logger(__name__)

TASK_SCHEMA_VERSION = 1
JITTER_RATIO = 0.25


class RetryTask(BaseModel):
    """A deferred fetch."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    url: str
    attempt: int = Field(default=1, ge=1)
    last_error: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: float = Field(default_factory=time.time)
    schema_version: int = Field(default=TASK_SCHEMA_VERSION, alias="schema")

    model_config = ConfigDict(populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw: str) -> RetryTask:
        return cls.model_validate_json(raw)


RetryCallback = Callable[[RetryTask], Awaitable[bool]]


class RetryQueue:
    """
    Score-ordered queue of :class:`RetryTask` backed by Redis.

    Without a Redis client every operation is a logged no-op.
    """

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        key_prefix: str = "retry",
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        max_attempts: int = 5,
        task_ttl: int = 24 * 60 * 60,
    ) -> None:
        self.redis = redis_client
        self.key_prefix = key_prefix
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self.task_ttl = task_ttl

        self.queue_key = f"{key_prefix}:queue"
        self.failed_key = f"{key_prefix}:failed"

        if self.redis is None:
            logger.warning("Durable store not available, retry queue disabled")

    @classmethod
    def from_config(cls, config: RetryQueueSettings, redis_client: Optional[redis.Redis] = None) -> RetryQueue:
        return cls(
            redis_client=redis_client,
            key_prefix=config.key_prefix,
            initial_delay=config.initial_delay,
            max_delay=config.max_delay,
            max_attempts=config.max_attempts,
            task_ttl=config.task_ttl,
        )

    def task_key(self, task_id: str) -> str:
        return f"{self.key_prefix}:task:{task_id}"

    def compute_delay(self, attempt: int) -> float:
        """Exponential backoff before jitter, capped at ``max_delay``."""
        return min(self.initial_delay * (2 ** max(attempt - 1, 0)), self.max_delay)

    def _with_jitter(self, delay: float) -> float:
        return max(0.0, delay + delay * JITTER_RATIO * (random.random() * 2 - 1))

    def _parse(self, task_id: str, raw: Optional[str]) -> Optional[RetryTask]:
        if raw is None:
            logger.warning("Retry task body missing", task_id=task_id)
            return None
        try:
            return RetryTask.from_json(raw)
        except ValueError as e:
            logger.error("Skipping malformed retry task", task_id=task_id, error=str(e))
            return None

    async def enqueue(self, task: RetryTask) -> bool:
        """Schedule ``task`` after its backoff delay. Returns False on store failure."""
        if self.redis is None:
            logger.debug("Retry queue disabled, dropping task", url=task.url)
            return False

        delay = self._with_jitter(self.compute_delay(task.attempt))
        due = time.time() + delay

        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.set(self.task_key(task.id), task.to_json(), ex=self.task_ttl)
                pipe.zadd(self.queue_key, {task.id: due})
                await pipe.execute()
        except Exception as e:
            logger.error("Failed to enqueue retry task", url=task.url, task_id=task.id, error=str(e))
            return False

        increment("retry_tasks_total", labels={"event": "enqueued"})
        logger.info(
            "Enqueued retry task",
            url=task.url,
            task_id=task.id,
            attempt=task.attempt,
            delay=round(delay, 3),
        )
        return True

    async def dequeue(self, limit: int = 10) -> List[RetryTask]:
        """
        Claim up to ``limit`` ready tasks.

        Each id is claimed with ZREM; only ids this call actually removed are
        returned, so concurrent consumers never receive the same task.
        """
        if self.redis is None:
            return []

        try:
            ready = await self.redis.zrangebyscore(self.queue_key, "-inf", time.time(), start=0, num=limit)
            if not ready:
                return []

            async with self.redis.pipeline(transaction=False) as pipe:
                for task_id in ready:
                    pipe.zrem(self.queue_key, task_id)
                removed = await pipe.execute()

            claimed = [task_id for task_id, count in zip(ready, removed) if count]
            if not claimed:
                return []

            bodies = await self.redis.mget([self.task_key(task_id) for task_id in claimed])
        except Exception as e:
            logger.error("Failed to dequeue retry tasks", error=str(e))
            return []

        tasks = []
        for task_id, raw in zip(claimed, bodies):
            task = self._parse(task_id, raw)
            if task is not None:
                tasks.append(task)
        return tasks

    async def remove(self, task_id: str) -> bool:
        if self.redis is None:
            return False
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.zrem(self.queue_key, task_id)
                pipe.delete(self.task_key(task_id))
                removed, deleted = await pipe.execute()
        except Exception as e:
            logger.error("Failed to remove retry task", task_id=task_id, error=str(e))
            return False
        return bool(removed or deleted)

    async def size(self) -> int:
        if self.redis is None:
            return 0
        try:
            return int(await self.redis.zcard(self.queue_key))
        except Exception as e:
            logger.error("Failed to read retry queue size", error=str(e))
            return 0

    async def failed_count(self) -> int:
        if self.redis is None:
            return 0
        try:
            return int(await self.redis.scard(self.failed_key))
        except Exception as e:
            logger.error("Failed to read failed task count", error=str(e))
            return 0

    async def get_stats(self) -> Dict[str, Any]:
        """``total``, ``ready``, ``pending`` and ``next_retry_in`` (seconds, None when nothing is pending)."""
        stats: Dict[str, Any] = {"total": 0, "ready": 0, "pending": 0, "next_retry_in": None}
        if self.redis is None:
            return stats

        now = time.time()
        try:
            total = int(await self.redis.zcard(self.queue_key))
            ready = int(await self.redis.zcount(self.queue_key, "-inf", now))
            upcoming = await self.redis.zrangebyscore(
                self.queue_key, f"({now}", "+inf", start=0, num=1, withscores=True
            )
        except Exception as e:
            logger.error("Failed to read retry queue stats", error=str(e))
            return stats

        stats.update(total=total, ready=ready, pending=total - ready)
        if upcoming:
            stats["next_retry_in"] = max(0.0, float(upcoming[0][1]) - now)
        return stats

    async def clear(self) -> int:
        """Drop the queue and every task body it references. Returns the number of tasks dropped."""
        if self.redis is None:
            return 0
        try:
            task_ids = await self.redis.zrange(self.queue_key, 0, -1)
            async with self.redis.pipeline(transaction=True) as pipe:
                for task_id in task_ids:
                    pipe.delete(self.task_key(task_id))
                pipe.delete(self.queue_key)
                await pipe.execute()
        except Exception as e:
            logger.error("Failed to clear retry queue", error=str(e))
            return 0

        logger.info("Cleared retry queue", tasks=len(task_ids))
        return len(task_ids)

    async def _mark_failed(self, task: RetryTask) -> None:
        try:
            await self.redis.sadd(self.failed_key, task.id)
        except Exception as e:
            logger.error("Failed to record exhausted task", task_id=task.id, error=str(e))

    async def process_ready(
        self,
        callback: RetryCallback,
        batch_size: int = 10,
        max_attempts: Optional[int] = None,
    ) -> Dict[str, int]:
        """
        Run ``callback`` over every ready task.

        A task whose attempt count has reached ``max_attempts`` is moved to the
        failed set. A callback returning False or raising re-enqueues the task
        with the next attempt number.
        """
        max_attempts = max_attempts or self.max_attempts
        result = {"processed": 0, "failed": 0}

        for task in await self.dequeue(batch_size):
            if task.attempt >= max_attempts:
                await self._mark_failed(task)
                result["failed"] += 1
                increment("retry_tasks_total", labels={"event": "exhausted"})
                logger.warning("Retry task exhausted its attempts", url=task.url, attempt=task.attempt)
                continue

            last_error = task.last_error
            try:
                ok = await callback(task)
            except Exception as e:
                ok = False
                last_error = str(e)

            if ok:
                try:
                    await self.redis.delete(self.task_key(task.id))
                except Exception as e:
                    logger.warning("Failed to delete completed retry task", task_id=task.id, error=str(e))
                result["processed"] += 1
                increment("retry_tasks_total", labels={"event": "processed"})
                continue

            await self.enqueue(task.model_copy(update={"attempt": task.attempt + 1, "last_error": last_error}))
            result["failed"] += 1
            increment("retry_tasks_total", labels={"event": "requeued"})

        if result["processed"] or result["failed"]:
            logger.info("Processed retry queue batch", **result)
        return result

    async def get_failed_tasks(self, limit: int = 100) -> List[RetryTask]:
        if self.redis is None:
            return []
        try:
            task_ids = sorted(await self.redis.smembers(self.failed_key))[:limit]
            if not task_ids:
                return []
            bodies = await self.redis.mget([self.task_key(task_id) for task_id in task_ids])
        except Exception as e:
            logger.error("Failed to read failed retry tasks", error=str(e))
            return []

        tasks = []
        for task_id, raw in zip(task_ids, bodies):
            task = self._parse(task_id, raw)
            if task is not None:
                tasks.append(task)
        return tasks

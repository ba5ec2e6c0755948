"""
Unit tests for the durable retry queue.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from docfetch.recovery.retry_queue import RetryQueue, RetryTask


@pytest.fixture
def queue(redis_client):
    return RetryQueue(redis_client, key_prefix="test-retry", initial_delay=0.05, max_delay=0.4, max_attempts=3)


async def _make_ready(redis_client, queue: RetryQueue) -> None:
    """Move every queued task's due time into the past."""
    for task_id in await redis_client.zrange(queue.queue_key, 0, -1):
        await redis_client.zadd(queue.queue_key, {task_id: 0})


@pytest.mark.unit
class TestBackoff:
    def test_delay_doubles_and_caps(self):
        queue = RetryQueue(None, initial_delay=1.0, max_delay=30.0)
        delays = [queue.compute_delay(attempt) for attempt in range(1, 10)]

        assert delays[:5] == [1.0, 2.0, 4.0, 8.0, 16.0]
        assert all(a <= b for a, b in zip(delays, delays[1:]))
        assert max(delays) == 30.0

    def test_jitter_stays_within_a_quarter(self):
        queue = RetryQueue(None)
        for _ in range(200):
            assert 7.5 <= queue._with_jitter(10.0) <= 12.5


@pytest.mark.unit
class TestEnqueueDequeue:
    @pytest.mark.asyncio
    async def test_task_not_ready_before_its_delay(self, queue):
        assert await queue.enqueue(RetryTask(url="https://docs.example.com/a")) is True

        assert await queue.dequeue() == []
        await asyncio.sleep(0.1)

        tasks = await queue.dequeue()
        assert [task.url for task in tasks] == ["https://docs.example.com/a"]
        assert await queue.size() == 0

    @pytest.mark.asyncio
    async def test_task_body_layout(self, redis_client, queue):
        task = RetryTask(url="https://docs.example.com/a", metadata={"source": "crawl"})
        await queue.enqueue(task)

        body = json.loads(await redis_client.get(f"test-retry:task:{task.id}"))
        assert body["url"] == task.url
        assert body["attempt"] == 1
        assert body["schema"] == 1
        assert body["metadata"] == {"source": "crawl"}
        assert 0 < await redis_client.ttl(f"test-retry:task:{task.id}") <= 24 * 60 * 60

    @pytest.mark.asyncio
    async def test_dequeue_respects_limit(self, redis_client, queue):
        for i in range(5):
            await queue.enqueue(RetryTask(url=f"https://docs.example.com/{i}"))
        await _make_ready(redis_client, queue)

        assert len(await queue.dequeue(limit=2)) == 2
        assert await queue.size() == 3

    @pytest.mark.asyncio
    async def test_concurrent_consumers_never_share_a_task(self, redis_client, queue):
        for i in range(6):
            await queue.enqueue(RetryTask(url=f"https://docs.example.com/{i}"))
        await _make_ready(redis_client, queue)

        other = RetryQueue(redis_client, key_prefix="test-retry")
        first, second = await asyncio.gather(queue.dequeue(limit=6), other.dequeue(limit=6))

        ids = [task.id for task in first + second]
        assert len(ids) == len(set(ids)) == 6

    @pytest.mark.asyncio
    async def test_malformed_bodies_are_skipped(self, redis_client, queue):
        good = RetryTask(url="https://docs.example.com/good")
        await queue.enqueue(good)
        await redis_client.zadd(queue.queue_key, {"broken": 0})
        await redis_client.set(queue.task_key("broken"), "{not json")
        await _make_ready(redis_client, queue)

        tasks = await queue.dequeue()

        assert [task.id for task in tasks] == [good.id]
        assert await queue.size() == 0

    @pytest.mark.asyncio
    async def test_remove(self, queue):
        task = RetryTask(url="https://docs.example.com/a")
        await queue.enqueue(task)

        assert await queue.remove(task.id) is True
        assert await queue.size() == 0
        assert await queue.remove(task.id) is False


@pytest.mark.unit
class TestStatsAndClear:
    @pytest.mark.asyncio
    async def test_stats(self, redis_client):
        queue = RetryQueue(redis_client, initial_delay=10, max_delay=60)
        await queue.enqueue(RetryTask(url="https://docs.example.com/ready"))
        await queue.enqueue(RetryTask(url="https://docs.example.com/later"))
        ready_id = (await redis_client.zrange(queue.queue_key, 0, 0))[0]
        await redis_client.zadd(queue.queue_key, {ready_id: 0})

        stats = await queue.get_stats()

        assert stats["total"] == 2
        assert stats["ready"] == 1
        assert stats["pending"] == 1
        assert 0 < stats["next_retry_in"] <= 12.5

    @pytest.mark.asyncio
    async def test_stats_when_empty(self, queue):
        assert await queue.get_stats() == {"total": 0, "ready": 0, "pending": 0, "next_retry_in": None}

    @pytest.mark.asyncio
    async def test_clear_drops_queue_and_bodies(self, redis_client, queue):
        tasks = [RetryTask(url=f"https://docs.example.com/{i}") for i in range(3)]
        for task in tasks:
            await queue.enqueue(task)

        assert await queue.clear() == 3
        assert await queue.size() == 0
        assert await redis_client.get(queue.task_key(tasks[0].id)) is None


@pytest.mark.unit
class TestProcessReady:
    @pytest.mark.asyncio
    async def test_success_deletes_task(self, redis_client, queue):
        task = RetryTask(url="https://docs.example.com/a")
        await queue.enqueue(task)
        await _make_ready(redis_client, queue)
        callback = AsyncMock(return_value=True)

        result = await queue.process_ready(callback)

        assert result == {"processed": 1, "failed": 0}
        callback.assert_awaited_once()
        assert callback.await_args.args[0].url == task.url
        assert await redis_client.get(queue.task_key(task.id)) is None
        assert await queue.size() == 0

    @pytest.mark.asyncio
    async def test_false_requeues_with_next_attempt(self, redis_client, queue):
        await queue.enqueue(RetryTask(url="https://docs.example.com/a"))
        await _make_ready(redis_client, queue)

        result = await queue.process_ready(AsyncMock(return_value=False))

        assert result == {"processed": 0, "failed": 1}
        await _make_ready(redis_client, queue)
        [task] = await queue.dequeue()
        assert task.attempt == 2

    @pytest.mark.asyncio
    async def test_exception_requeues_with_last_error(self, redis_client, queue):
        await queue.enqueue(RetryTask(url="https://docs.example.com/a"))
        await _make_ready(redis_client, queue)

        result = await queue.process_ready(AsyncMock(side_effect=RuntimeError("upstream 503")))

        assert result == {"processed": 0, "failed": 1}
        await _make_ready(redis_client, queue)
        [task] = await queue.dequeue()
        assert task.attempt == 2
        assert task.last_error == "upstream 503"

    @pytest.mark.asyncio
    async def test_exhausted_tasks_move_to_failed_set(self, redis_client, queue):
        task = RetryTask(url="https://docs.example.com/a", attempt=3, last_error="timeout")
        await queue.enqueue(task)
        await _make_ready(redis_client, queue)
        callback = AsyncMock(return_value=True)

        result = await queue.process_ready(callback)

        assert result == {"processed": 0, "failed": 1}
        callback.assert_not_awaited()
        assert await queue.size() == 0
        assert await queue.failed_count() == 1

        [failed] = await queue.get_failed_tasks()
        assert failed.id == task.id
        assert failed.last_error == "timeout"

    @pytest.mark.asyncio
    async def test_max_attempts_override(self, redis_client, queue):
        await queue.enqueue(RetryTask(url="https://docs.example.com/a", attempt=2))
        await _make_ready(redis_client, queue)

        result = await queue.process_ready(AsyncMock(return_value=True), max_attempts=2)

        assert result == {"processed": 0, "failed": 1}

    @pytest.mark.asyncio
    async def test_nothing_ready(self, queue):
        assert await queue.process_ready(AsyncMock(return_value=True)) == {"processed": 0, "failed": 0}


@pytest.mark.unit
class TestDegradation:
    @pytest.mark.asyncio
    async def test_disabled_without_redis(self):
        queue = RetryQueue(None)

        assert await queue.enqueue(RetryTask(url="https://docs.example.com/a")) is False
        assert await queue.dequeue() == []
        assert await queue.remove("x") is False
        assert await queue.size() == 0
        assert await queue.clear() == 0
        assert await queue.get_failed_tasks() == []
        assert (await queue.get_stats())["total"] == 0

    @pytest.mark.asyncio
    async def test_store_errors_are_not_raised(self, broken_redis):
        queue = RetryQueue(broken_redis)

        assert await queue.enqueue(RetryTask(url="https://docs.example.com/a")) is False
        assert await queue.dequeue() == []
        assert await queue.size() == 0
        assert (await queue.get_stats())["next_retry_in"] is None


@pytest.mark.unit
class TestRetryTask:
    def test_attempt_must_be_positive(self):
        with pytest.raises(ValueError):
            RetryTask(url="https://docs.example.com/a", attempt=0)

    def test_json_round_trip(self):
        task = RetryTask(url="https://docs.example.com/a", attempt=2, last_error="boom")
        assert RetryTask.from_json(task.to_json()) == task

"""
Bounded-concurrency, priority-ordered task runner for crawl work.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Iterable, List, Optional, Set, Tuple, TypeVar
from urllib.parse import urlsplit

import structlog

from docfetch.observability.metrics import gauge, increment

logger = structlog.get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class PRIORITY_LEVELS:
    ROOT = 10  # Root/index pages
    MAIN = 5  # Getting started, overview
    SECTION = 3
    SUBSECTION = 1  # Deep pages
    DEFAULT = 0


def get_url_priority(url: str) -> int:
    """Rank a discovered link so shallow and overview pages are crawled first."""
    path = urlsplit(url).path.lower() or "/"
    depth = len([segment for segment in path.split("/") if segment])

    if path == "/" or path.endswith("/index"):
        return PRIORITY_LEVELS.ROOT
    if "getting-started" in path or "quickstart" in path or "overview" in path:
        return PRIORITY_LEVELS.MAIN
    if path in ("/docs", "/docs/"):
        return PRIORITY_LEVELS.ROOT
    if depth == 2:
        return PRIORITY_LEVELS.SECTION
    if depth > 5:
        return PRIORITY_LEVELS.SUBSECTION
    return PRIORITY_LEVELS.DEFAULT


@dataclass
class QueueItem(Generic[T]):
    data: T
    priority: int
    sequence: int


class WorkerPool(Generic[T, R]):
    """
    Runs ``process_fn`` over queued items, highest priority first.

    At most ``concurrency`` items are in flight. A failing item is reported
    through ``on_task_error`` and never stops the pool. ``wait_for_completion``
    returns once the queue is empty and no worker is active.
    """

    def __init__(
        self,
        process_fn: Callable[[T], Awaitable[R]],
        concurrency: int = 5,
        on_task_complete: Optional[Callable[[R], Any]] = None,
        on_task_error: Optional[Callable[[Exception], Any]] = None,
        on_queue_empty: Optional[Callable[[], Any]] = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self.process_fn = process_fn
        self.concurrency = concurrency
        self.on_task_complete = on_task_complete
        self.on_task_error = on_task_error
        self.on_queue_empty = on_queue_empty

        self._queue: List[Tuple[int, int, QueueItem[T]]] = []
        self._sequence = itertools.count()
        self._active = 0
        self._running = False
        self._processed = 0
        self._errors = 0
        self._tasks: Set[asyncio.Task] = set()

        self._idle = asyncio.Event()
        self._idle.set()

    # --- queue management ---

    def add(self, item: T, priority: int = 0) -> None:
        entry = QueueItem(data=item, priority=priority, sequence=next(self._sequence))
        heapq.heappush(self._queue, (-priority, entry.sequence, entry))
        self._idle.clear()
        if self._running:
            self._fill()

    def add_batch(self, items: Iterable[T], priority: int = 0) -> None:
        for item in items:
            self.add(item, priority)

    def clear_queue(self) -> None:
        self._queue.clear()
        self._check_idle()

    # --- lifecycle ---

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        logger.debug("Worker pool started", concurrency=self.concurrency, queued=len(self._queue))
        self._fill()
        self._check_idle()

    async def stop(self) -> None:
        """Stop taking new items and wait for in-flight ones to finish."""
        self._running = False
        while self._active > 0:
            await asyncio.sleep(0.1)
        logger.debug("Worker pool stopped", processed=self._processed, errors=self._errors)

    async def wait_for_completion(self) -> None:
        await self._idle.wait()

    def get_status(self) -> Dict[str, Any]:
        return {
            "queue_size": len(self._queue),
            "active_workers": self._active,
            "processed": self._processed,
            "errors": self._errors,
            "running": self._running,
            "concurrency": self.concurrency,
        }

    # --- internals ---

    def _fill(self) -> None:
        while self._running and self._active < self.concurrency and self._queue:
            _, _, entry = heapq.heappop(self._queue)
            self._active += 1
            gauge("worker_active", self._active)
            task = asyncio.create_task(self._run(entry))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, entry: QueueItem[T]) -> None:
        try:
            result = await self.process_fn(entry.data)
        except Exception as e:
            self._errors += 1
            increment("worker_tasks_total", labels={"outcome": "error"})
            self._notify(self.on_task_error, e)
        else:
            self._processed += 1
            increment("worker_tasks_total", labels={"outcome": "success"})
            self._notify(self.on_task_complete, result)
        finally:
            self._active -= 1
            gauge("worker_active", self._active)
            self._fill()
            self._check_idle()

    def _check_idle(self) -> None:
        if self._queue or self._active > 0 or self._idle.is_set():
            return
        self._idle.set()
        self._notify(self.on_queue_empty)

    def _notify(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error("Worker pool callback failed", callback=getattr(callback, "__name__", repr(callback)), error=str(e))

"""
Circuit breaker guarding the upstream scraping API.

State lives in Redis under ``circuit:v1:<name>`` so every process shares one
view of upstream health. The breaker never raises: store read failures yield a
fresh closed state and write failures are logged and dropped.
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

import structlog

from docfetch.observability.metrics import gauge

if TYPE_CHECKING:
    import redis.asyncio as redis

    from docfetch.config.config import CircuitBreakerSettings

logger = structlog.get_logger(__name__)

STATE_KEY_VERSION = "v1"
STATE_TTL = 60 * 60


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Probing recovery


_GAUGE_VALUES = {CircuitState.CLOSED: 0, CircuitState.HALF_OPEN: 1, CircuitState.OPEN: 2}


@dataclass
class BreakerSnapshot:
    """Persisted breaker state. A missing record is a fresh closed breaker."""

    failures: int = 0
    successes: int = 0
    last_failure_time: float = 0.0
    state: CircuitState = CircuitState.CLOSED
    half_open_requests: int = 0

    def to_json(self) -> str:
        data = asdict(self)
        data["state"] = self.state.value
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str) -> BreakerSnapshot:
        data = json.loads(raw)
        return cls(
            failures=int(data.get("failures", 0)),
            successes=int(data.get("successes", 0)),
            last_failure_time=float(data.get("last_failure_time") or 0.0),
            state=CircuitState(data.get("state", CircuitState.CLOSED.value)),
            half_open_requests=int(data.get("half_open_requests", 0)),
        )


class CircuitBreaker:
    """
    Closed -> Open after ``failure_threshold`` failures; Open -> HalfOpen once
    ``timeout`` seconds have passed since the last failure; HalfOpen admits at
    most ``half_open_requests`` probes, closes after ``success_threshold``
    successes and reopens on any failure.

    Without a Redis client the breaker is always closed and writes are dropped.
    """

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        name: str = "firecrawl",
        failure_threshold: int = 5,
        success_threshold: int = 2,
        timeout: float = 60.0,
        half_open_requests: int = 3,
    ) -> None:
        self.redis = redis_client
        self.name = name
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.timeout = timeout
        self.half_open_requests = half_open_requests

        self.key = f"circuit:{STATE_KEY_VERSION}:{name}"
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls, config: CircuitBreakerSettings, redis_client: Optional[redis.Redis] = None
    ) -> CircuitBreaker:
        return cls(
            redis_client=redis_client,
            name=config.name,
            failure_threshold=config.failure_threshold,
            success_threshold=config.success_threshold,
            timeout=config.timeout,
            half_open_requests=config.half_open_requests,
        )

    # --- persistence ---

    async def _load(self) -> BreakerSnapshot:
        if self.redis is None:
            return BreakerSnapshot()
        try:
            raw = await self.redis.get(self.key)
            return BreakerSnapshot.from_json(raw) if raw else BreakerSnapshot()
        except Exception as e:
            logger.warning("Failed to read circuit breaker state", breaker=self.name, error=str(e))
            return BreakerSnapshot()

    async def _save(self, snapshot: BreakerSnapshot) -> None:
        gauge("circuit_state", _GAUGE_VALUES[snapshot.state], labels={"breaker": self.name})
        if self.redis is None:
            return
        try:
            await self.redis.set(self.key, snapshot.to_json(), ex=STATE_TTL)
        except Exception as e:
            logger.warning("Failed to persist circuit breaker state", breaker=self.name, error=str(e))

    def _transition(self, snapshot: BreakerSnapshot, state: CircuitState) -> None:
        if snapshot.state != state:
            logger.info(
                "Circuit breaker state change",
                breaker=self.name,
                from_state=snapshot.state.value,
                to_state=state.value,
                failures=snapshot.failures,
            )
        snapshot.state = state

    # --- public API ---

    async def can_request(self) -> bool:
        """Whether a new upstream request may be sent. Consumes a probe slot when half-open."""
        async with self._lock:
            snapshot = await self._load()

            if snapshot.state == CircuitState.CLOSED:
                return True

            if snapshot.state == CircuitState.OPEN:
                if time.time() - snapshot.last_failure_time >= self.timeout:
                    self._transition(snapshot, CircuitState.HALF_OPEN)
                    snapshot.half_open_requests = 0
                    snapshot.successes = 0
                    await self._save(snapshot)
                    return True
                return False

            if snapshot.half_open_requests < self.half_open_requests:
                snapshot.half_open_requests += 1
                await self._save(snapshot)
                return True
            return False

    async def record_success(self) -> None:
        async with self._lock:
            snapshot = await self._load()

            if snapshot.state == CircuitState.HALF_OPEN:
                snapshot.successes += 1
                if snapshot.successes >= self.success_threshold:
                    self._transition(snapshot, CircuitState.CLOSED)
                    snapshot = BreakerSnapshot()
                await self._save(snapshot)
            elif snapshot.state == CircuitState.OPEN:
                # Should not happen: no request is admitted while open.
                self._transition(snapshot, CircuitState.CLOSED)
                await self._save(BreakerSnapshot())

    async def record_failure(self) -> None:
        async with self._lock:
            snapshot = await self._load()
            snapshot.last_failure_time = time.time()

            if snapshot.state == CircuitState.CLOSED:
                snapshot.failures += 1
                if snapshot.failures >= self.failure_threshold:
                    self._transition(snapshot, CircuitState.OPEN)
            elif snapshot.state == CircuitState.HALF_OPEN:
                self._transition(snapshot, CircuitState.OPEN)
                snapshot.half_open_requests = 0
                snapshot.successes = 0

            await self._save(snapshot)

    async def reset(self) -> None:
        """Force the breaker closed with zeroed counters."""
        async with self._lock:
            snapshot = await self._load()
            self._transition(snapshot, CircuitState.CLOSED)
            await self._save(BreakerSnapshot())

    async def get_state(self) -> CircuitState:
        return (await self._load()).state

    def _cooldown_remaining(self, snapshot: BreakerSnapshot) -> float:
        if snapshot.state != CircuitState.OPEN:
            return 0.0
        return max(0.0, self.timeout - (time.time() - snapshot.last_failure_time))

    async def get_status(self) -> Dict[str, Any]:
        """Snapshot for dashboards. Evaluates ``can_request`` without consuming a probe slot."""
        snapshot = await self._load()

        if snapshot.state == CircuitState.CLOSED:
            can_request = True
        elif snapshot.state == CircuitState.OPEN:
            can_request = time.time() - snapshot.last_failure_time >= self.timeout
        else:
            can_request = snapshot.half_open_requests < self.half_open_requests

        stats = asdict(snapshot)
        stats["state"] = snapshot.state.value
        stats["cooldown_remaining"] = self._cooldown_remaining(snapshot)

        return {
            "name": self.name,
            "state": snapshot.state.value,
            "can_request": can_request,
            "stats": stats,
        }

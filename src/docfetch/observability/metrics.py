"""
Defines the Prometheus metrics exported by docfetch.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from prometheus_client import REGISTRY as _PROM_REGISTRY
from prometheus_client import Counter as _OrigCounter
from prometheus_client import Gauge as _OrigGauge
from prometheus_client import Histogram as _OrigHistogram

# ---------------------------------------------------------------------------
# Duplicate-safe Prometheus metric wrappers
# ---------------------------------------------------------------------------
# Reloading this module (the test suite does) must not raise duplicate
# registration errors, so existing collectors are reused.


def _duplicate_safe_factory(metric_cls):
    """Return a factory that reuses an existing collector if already present."""

    def _factory(name: str, documentation: str, *args, **kwargs):  # type: ignore[override]
        existing = _PROM_REGISTRY._names_to_collectors.get(name)
        if existing is not None:
            return existing  # type: ignore[return-value]

        try:
            return metric_cls(name, documentation, *args, **kwargs)  # type: ignore[call-arg]
        except ValueError:
            # Registration lost the race, fall back to the now-existing collector.
            return _PROM_REGISTRY._names_to_collectors[name]  # type: ignore[return-value]

    return _factory


Counter = _duplicate_safe_factory(_OrigCounter)  # type: ignore[assignment]
Gauge = _duplicate_safe_factory(_OrigGauge)  # type: ignore[assignment]
Histogram = _duplicate_safe_factory(_OrigHistogram)  # type: ignore[assignment]


def _create_metrics() -> Dict[str, Any]:
    return {
        "cache_lookups_total": Counter(
            "docfetch_cache_lookups_total",
            "Cache lookups by outcome",
            ["outcome"],
        ),
        "cache_errors_total": Counter(
            "docfetch_cache_errors_total",
            "Durable store errors swallowed by the cache",
            ["operation"],
        ),
        "circuit_state": Gauge(
            "docfetch_circuit_state",
            "Circuit breaker state (0=closed, 1=half_open, 2=open)",
            ["breaker"],
        ),
        "retry_tasks_total": Counter(
            "docfetch_retry_tasks_total",
            "Retry queue task events",
            ["event"],
        ),
        "worker_tasks_total": Counter(
            "docfetch_worker_tasks_total",
            "Worker pool task outcomes",
            ["outcome"],
        ),
        "worker_active": Gauge(
            "docfetch_worker_active",
            "Worker pool tasks currently in flight",
        ),
        "scrape_latency_seconds": Histogram(
            "docfetch_scrape_latency_seconds",
            "Time taken by a progressive-timeout scrape including escalations",
            buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0],
        ),
        "scrape_attempts_total": Counter(
            "docfetch_scrape_attempts_total",
            "Upstream scrape attempts by outcome",
            ["outcome"],
        ),
    }


METRICS: Dict[str, Any] = _create_metrics()


def increment(name: str, value: float = 1.0, labels: Optional[Dict[str, Any]] = None) -> None:
    """Increment a counter metric."""
    if name in METRICS:
        metric = METRICS[name]
        if labels is not None:
            metric.labels(**labels).inc(value)
        else:
            metric.inc(value)


def gauge(name: str, value: float, labels: Optional[Dict[str, Any]] = None) -> None:
    """Set a gauge metric."""
    if name in METRICS:
        metric = METRICS[name]
        if labels is not None:
            metric.labels(**labels).set(value)
        else:
            metric.set(value)


def observe(name: str, value: float) -> None:
    """Record a histogram observation."""
    if name in METRICS:
        METRICS[name].observe(value)

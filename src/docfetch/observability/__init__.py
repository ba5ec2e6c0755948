"""Structured logging and Prometheus metrics."""

from __future__ import annotations

from .logging import configure_logging
from .metrics import METRICS, gauge, increment, observe

__all__ = ["configure_logging", "METRICS", "gauge", "increment", "observe"]

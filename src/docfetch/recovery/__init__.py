"""
Failure handling for the upstream scraping API: a shared circuit breaker and
a durable retry queue.
"""

from .circuit_breaker import BreakerSnapshot, CircuitBreaker, CircuitState
from .retry_queue import RetryQueue, RetryTask

__all__ = [
    "BreakerSnapshot",
    "CircuitBreaker",
    "CircuitState",
    "RetryQueue",
    "RetryTask",
]

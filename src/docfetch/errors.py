"""
Exception taxonomy for docfetch.

Durable-store failures never escape the cache, circuit breaker or retry queue;
they are converted to safe fallbacks at the component boundary. Upstream and
content failures do propagate so the fetcher can decide whether to retry later.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class DocFetchError(Exception):
    """Base class carrying a timestamp and structured context."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.timestamp = datetime.now(timezone.utc)
        self.context: Dict[str, Any] = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": type(self).__name__,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "context": self.context,
        }


class NetworkError(DocFetchError):
    """The upstream call failed, possibly with an HTTP status code."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        url: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, {**(context or {}), "status_code": status_code, "url": url})
        self.status_code = status_code
        self.url = url

    @property
    def retryable(self) -> bool:
        return self.status_code is None or self.status_code in RETRYABLE_STATUS_CODES


class FirecrawlError(NetworkError):
    """Error response returned by the Firecrawl API."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        url: Optional[str] = None,
        api_error: Optional[str] = None,
        retryable: bool = False,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message,
            status_code=status_code,
            url=url,
            context={**(context or {}), "api_error": api_error, "retryable": retryable},
        )
        self.api_error = api_error
        self._retryable = retryable

    @property
    def retryable(self) -> bool:
        return self._retryable


class ContentError(DocFetchError):
    """Returned content is too short or structurally incomplete."""

    def __init__(
        self,
        message: str,
        content_length: int = 0,
        truncated: bool = False,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, {**(context or {}), "content_length": content_length, "truncated": truncated})
        self.content_length = content_length
        self.truncated = truncated


CacheOperation = Literal["get", "set", "mget", "mset", "delete", "lock"]


class CacheError(DocFetchError):
    """A durable-store operation failed."""

    def __init__(self, message: str, operation: CacheOperation, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, {**(context or {}), "operation": operation})
        self.operation = operation


class CircuitBreakerError(DocFetchError):
    """Request blocked because the breaker is not admitting traffic."""

    def __init__(
        self,
        message: str,
        state: Literal["open", "half_open"] = "open",
        cooldown_remaining: Optional[float] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, {**(context or {}), "state": state, "cooldown_remaining": cooldown_remaining})
        self.state = state
        self.cooldown_remaining = cooldown_remaining


class ValidationError(DocFetchError):
    """Malformed task or input."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Any = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, {**(context or {}), "field": field, "value": value})
        self.field = field
        self.value = value


def is_retryable(error: BaseException) -> bool:
    """Whether a failed fetch is worth a deferred retry."""
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return True
    if isinstance(error, NetworkError):
        return error.retryable
    if isinstance(error, ContentError):
        return True
    return False

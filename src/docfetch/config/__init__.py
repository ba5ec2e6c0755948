"""Configuration models and loaders."""

from .config import (
    CacheConfig,
    CircuitBreakerSettings,
    Config,
    ContentConfig,
    CrawlConfig,
    MonitoringConfig,
    RedisConfig,
    RetryQueueSettings,
    ScraperConfig,
    find_config_file,
)

__all__ = [
    "CacheConfig",
    "CircuitBreakerSettings",
    "Config",
    "ContentConfig",
    "CrawlConfig",
    "MonitoringConfig",
    "RedisConfig",
    "RetryQueueSettings",
    "ScraperConfig",
    "find_config_file",
]

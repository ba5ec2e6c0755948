"""
Configuration management for docfetch using Pydantic.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, SecretStr, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger(__name__)

# --- Nested Configuration Models ---


class RedisConfig(BaseModel):
    """Durable store connection. Leaving ``url`` unset runs everything in memory."""

    url: Optional[str] = Field(default=None, description="Redis URL, e.g. redis://localhost:6379/0")
    socket_timeout: float = Field(default=5.0, description="Socket timeout in seconds.")
    ping_on_startup: bool = Field(default=True, description="Verify the connection before using it.")


class CacheConfig(BaseModel):
    ttl: int = Field(default=30 * 24 * 60 * 60, description="Durable tier TTL in seconds (one month).")
    local_ttl: float = Field(default=5 * 60, description="In-process tier TTL in seconds.")
    compression_threshold: int = Field(default=1024, description="Compress values larger than this many bytes.")
    lock_ttl: int = Field(default=120, description="Scrape lock expiry in seconds.")
    lock_wait_timeout: float = Field(default=60.0, description="How long to wait for another scraper's lock.")
    lock_poll_interval: float = Field(default=0.5)

    @field_validator("local_ttl")
    @classmethod
    def local_shorter_than_durable(cls, v: float, info: ValidationInfo) -> float:
        ttl = info.data.get("ttl")
        if ttl is not None and v >= ttl:
            raise ValueError("local_ttl must be shorter than the durable ttl")
        return v


class CircuitBreakerSettings(BaseModel):
    name: str = "firecrawl"
    failure_threshold: int = Field(default=5, ge=1)
    success_threshold: int = Field(default=2, ge=1)
    timeout: float = Field(default=60.0, description="Cooldown before probing, in seconds.")
    half_open_requests: int = Field(default=3, ge=1)


class RetryQueueSettings(BaseModel):
    key_prefix: str = "retry"
    initial_delay: float = Field(default=1.0, description="Base backoff delay in seconds.")
    max_delay: float = Field(default=30.0, description="Backoff ceiling in seconds.")
    max_attempts: int = Field(default=5, ge=1)
    task_ttl: int = Field(default=24 * 60 * 60)


class ScraperConfig(BaseModel):
    """Upstream scraping API."""

    api_url: str = "https://api.firecrawl.dev/v1"
    api_key: Optional[SecretStr] = Field(default=None, description="Bearer token for the scraping API.")
    user_agent: str = "Mozilla/5.0 (compatible; docfetch/0.1)"
    only_main_content: bool = True
    request_timeout: float = Field(default=90.0, description="Transport-level timeout in seconds.")


class CrawlConfig(BaseModel):
    concurrency: int = Field(default=5, ge=1)
    max_urls: int = Field(default=200, ge=1)
    max_depth: int = Field(default=2, ge=0)


class ContentConfig(BaseModel):
    """Heuristics used to reject obviously incomplete renders."""

    min_content_length: int = Field(default=200, description="Shorter content is never cached.")
    no_heading_length: int = Field(default=500, description="Content without a heading below this is truncated.")
    navigation_markers: List[str] = Field(default_factory=lambda: ["[Skip Navigation]", "Skip Navigation"])
    loading_markers: List[str] = Field(default_factory=lambda: ["Loading", "Please wait"])


class MonitoringConfig(BaseModel):
    log_level: str = Field(default="INFO", description="Logging level (e.g., DEBUG, INFO, WARNING).")
    log_file: Optional[str] = Field(default=None, description="Path to log file. If None, logs to console.")
    web_host: str = "127.0.0.1"
    web_port: int = 8000

    @field_validator("log_file", mode="before")
    @classmethod
    def create_parent_dir(cls, v: str | Path | None) -> str | None:
        if v is None:
            return None
        path = Path(v)
        path.parent.mkdir(parents=True, exist_ok=True)
        return str(path)


# --- Main Configuration Class ---


class Config(BaseSettings):
    project_name: str = "docfetch"
    version: str = "0.1.0"
    redis: RedisConfig = Field(default_factory=RedisConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    retry_queue: RetryQueueSettings = Field(default_factory=RetryQueueSettings)
    scraper: ScraperConfig = Field(default_factory=ScraperConfig)
    crawl: CrawlConfig = Field(default_factory=CrawlConfig)
    content: ContentConfig = Field(default_factory=ContentConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    model_config = SettingsConfigDict(env_prefix="DOCFETCH_", env_nested_delimiter="__", case_sensitive=False)

    @classmethod
    def from_yaml(cls, path: Path) -> Config:
        log.debug("Loading configuration from YAML file: %s", path)
        if not path.is_file():
            raise FileNotFoundError(f"Configuration file not found or is not a file: {path}")
        with open(path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f)
        if not yaml_data:
            log.warning("Configuration file is empty: %s. Using default settings.", path)
            return cls.model_validate({})
        return cls.model_validate(yaml_data)


def find_config_file() -> Path | None:
    current_dir = Path.cwd()
    for path in (current_dir / "docfetch.yaml", current_dir / "docfetch.yml", current_dir / "config.yaml"):
        if path.exists():
            return path
    return None

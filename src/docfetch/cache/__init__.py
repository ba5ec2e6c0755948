"""
Two-tier page cache: an in-process hot tier in front of Redis, with
compression and normalization-based keys.
"""

from .compression import compress, decompress
from .keys import cache_key, normalize_url
from .models import CacheEntry, CacheStats
from .two_tier import TwoTierCache

__all__ = [
    "CacheEntry",
    "CacheStats",
    "TwoTierCache",
    "cache_key",
    "compress",
    "decompress",
    "normalize_url",
]

"""Cache records and statistics."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class CacheEntry:
    """A value held by the in-process tier."""

    value: str
    timestamp: float
    compressed: bool = False

    def is_expired(self, now: float, ttl: float) -> bool:
        return now - self.timestamp > ttl


@dataclass
class StoredValue:
    """Representation written to the durable tier."""

    data: str
    compressed: bool = False

    def to_json(self) -> str:
        return json.dumps({"data": self.data, "compressed": self.compressed})

    @classmethod
    def from_json(cls, raw: Optional[str]) -> Optional[StoredValue]:
        if raw is None:
            return None
        payload = json.loads(raw)
        return cls(data=payload["data"], compressed=bool(payload.get("compressed", False)))


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    errors: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def as_dict(self) -> Dict[str, Any]:
        return {"hits": self.hits, "misses": self.misses, "errors": self.errors, "hit_rate": self.hit_rate}

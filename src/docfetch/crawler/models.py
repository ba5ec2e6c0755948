"""Request/response records shared by the scraper client and the fetch strategies."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class ScrapeOptions:
    """Per-call scrape parameters. Durations are seconds."""

    formats: List[str] = field(default_factory=lambda: ["markdown"])
    wait_for: float = 5.0
    timeout: float = 10.0
    only_main_content: bool = True
    remove_base64_images: bool = True
    skip_tls_verification: bool = False


@dataclass
class ScrapeResponse:
    success: bool
    markdown: Optional[str] = None
    error: Optional[str] = None
    links: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def content(self) -> Optional[str]:
        return self.markdown or None

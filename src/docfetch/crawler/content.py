"""
Checks on scraped Markdown: truncated renders and link discovery.
"""

from __future__ import annotations

import re
from typing import List, Optional
from urllib.parse import urljoin, urlsplit

from docfetch.config.config import ContentConfig

# Length of a page that rendered nothing but the "[Skip Navigation](...)" link.
NAVIGATION_ONLY_LENGTH = 82

_MARKDOWN_LINK = re.compile(r"\[[^\]]*\]\(([^)\s]+)(?:\s+\"[^\"]*\")?\)")
_HTML_LINK = re.compile(r"<a[^>]+href=[\"']([^\"']+)[\"'][^>]*>", re.IGNORECASE)
_PLAIN_URL = re.compile(r"https?://[^\s<>\[\]()\"']+")
_TRAILING_PUNCTUATION = ".,;:!?"


def detect_truncation(content: Optional[str], config: Optional[ContentConfig] = None) -> bool:
    """
    Whether ``content`` looks like an incomplete render.

    The thresholds and marker strings come from :class:`ContentConfig`.
    """
    config = config or ContentConfig()
    if not content:
        return True

    length = len(content)
    trimmed = content.strip()
    starts_with_nav = any(trimmed.startswith(marker) for marker in config.navigation_markers)

    if length == NAVIGATION_ONLY_LENGTH and starts_with_nav:
        return True

    if length < config.min_content_length and (
        starts_with_nav
        or trimmed in config.navigation_markers
        or trimmed.endswith("...")
        or any(marker in trimmed for marker in config.loading_markers)
    ):
        return True

    return "#" not in trimmed and length < config.no_heading_length


def extract_links(markdown: str, base_url: str) -> List[str]:
    """
    Collect http(s) links on the same host as ``base_url``.

    Markdown links, HTML anchors and bare URLs are recognised; relative
    targets are resolved against ``base_url``. Fragments are dropped and the
    result keeps first-seen order without duplicates.
    """
    base_host = urlsplit(base_url).hostname
    candidates: List[str] = []
    candidates.extend(_MARKDOWN_LINK.findall(markdown))
    candidates.extend(_HTML_LINK.findall(markdown))
    candidates.extend(match.rstrip(_TRAILING_PUNCTUATION) for match in _PLAIN_URL.findall(markdown))

    seen = set()
    links = []
    for candidate in candidates:
        if candidate.startswith(("mailto:", "javascript:", "#", "data:")):
            continue
        absolute = urljoin(base_url, candidate).split("#", 1)[0]
        parts = urlsplit(absolute)
        if parts.scheme not in ("http", "https") or parts.hostname != base_host:
            continue
        if absolute not in seen:
            seen.add(absolute)
            links.append(absolute)
    return links


def is_within_scope(url: str, start_url: str) -> bool:
    """Same host as ``start_url`` and at or below its path."""
    target, start = urlsplit(url), urlsplit(start_url)
    if target.hostname != start.hostname:
        return False
    prefix = start.path.rstrip("/")
    path = target.path.rstrip("/")
    return path == prefix or path.startswith(prefix + "/")


def generate_filename(url: str) -> str:
    """``docs.python.org/3/`` becomes ``docs-python-org-3-docs.md``."""
    parts = urlsplit(url)
    if not parts.hostname:
        return "documentation.md"
    host = parts.hostname.replace(".", "-")
    segments = [segment for segment in parts.path.split("/") if segment]
    if segments:
        return f"{host}-{segments[0]}-docs.md"
    return f"{host}-docs.md"

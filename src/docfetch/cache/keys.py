"""URL normalization and cache key derivation."""

from __future__ import annotations

import hashlib
from urllib.parse import urlsplit, urlunsplit

# Bump to invalidate every cached page after a change to key derivation.
KEY_VERSION = "v3"

_DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_url(url: str) -> str:
    """
    Normalize a URL for caching.

    Lowercases scheme and host, drops default ports, query string and
    fragment, and removes a trailing slash unless the path is the root.
    Input that does not parse as an absolute URL is returned unchanged.
    """
    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except ValueError:
        return url

    if not parts.scheme or not parts.netloc:
        return url

    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if ":" in host:
        host = f"[{host}]"

    netloc = host
    if parts.username:
        userinfo = parts.username
        if parts.password:
            userinfo += f":{parts.password}"
        netloc = f"{userinfo}@{netloc}"
    if port is not None and _DEFAULT_PORTS.get(scheme) != port:
        netloc += f":{port}"

    path = parts.path or "/"
    if path != "/" and path.endswith("/"):
        path = path[:-1]

    return urlunsplit((scheme, netloc, path, "", ""))


def _digest(url: str) -> str:
    # 32 hex chars = 128 bits
    return hashlib.sha256(normalize_url(url).encode("utf-8")).hexdigest()[:32]


def cache_key(url: str) -> str:
    return f"page:{_digest(url)}:{KEY_VERSION}"


def lock_key(url: str) -> str:
    return f"lock:{_digest(url)}:{KEY_VERSION}"

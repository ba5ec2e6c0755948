"""Reversible text compression for durable cache values."""

from __future__ import annotations

import base64
import zlib
from typing import Tuple


def compress(text: str) -> str:
    """zlib-compress UTF-8 text and return it as ASCII-safe base64."""
    return base64.b64encode(zlib.compress(text.encode("utf-8"))).decode("ascii")


def decompress(data: str) -> str:
    return zlib.decompress(base64.b64decode(data)).decode("utf-8")


def maybe_compress(text: str, threshold: int) -> Tuple[str, bool]:
    """Compress when the UTF-8 byte length exceeds ``threshold``."""
    if len(text.encode("utf-8")) > threshold:
        return compress(text), True
    return text, False

"""
Storage key generation.

Keys look like ``images/<epoch_ms>-<uuid4>-<filename>``. The uuid4 component
carries the uniqueness, so keys can be generated from any number of concurrent
requests without coordination.
"""
from __future__ import annotations

import re
import time
import uuid
from typing import Optional

KEY_PREFIX = "images/"
DEFAULT_FILENAME = "image"

_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]+")


def clean_filename(filename: Optional[str]) -> str:
    """Keep the caller's filename verbatim, minus control characters the key cannot hold."""
    name = _CONTROL_RE.sub("", filename or "")
    return name or DEFAULT_FILENAME


def generate_key(original_filename: Optional[str]) -> str:
    epoch_ms = time.time_ns() // 1_000_000
    return f"{KEY_PREFIX}{epoch_ms}-{uuid.uuid4()}-{clean_filename(original_filename)}"


__all__ = ["generate_key", "clean_filename"]

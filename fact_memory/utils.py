"""
Small helpers shared across the package.
"""

import hashlib
import re
from datetime import datetime, timezone

_TOKEN_RE = re.compile(r"[\w']+", re.UNICODE)


def utcnow() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


def tokenize(text: str) -> list[str]:
    """Lowercase word tokens."""
    return _TOKEN_RE.findall(text.lower())


def content_hash(text: str) -> str:
    """md5 hex digest of a memory text, stored in metadata for change detection."""
    return hashlib.md5(text.encode("utf-8")).hexdigest()

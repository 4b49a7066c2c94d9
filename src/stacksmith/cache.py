"""In-memory TTL cache for GitHub API responses.

Each ``GitHubClient`` owns one cache, so a dashboard refresh that fetches the
same PR list, reviews, or thread query several times in a short window only
hits GitHub once.

- Reads are cached with a 30-second TTL by default
- Mutations clear the whole cache
- The cache lives as long as its client (resets on server restart)
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TTL: float = 30.0

MISS = object()


def make_key(*args: Any, **kwargs: Any) -> str:
    """Create a stable cache key from request arguments."""
    raw = json.dumps({"a": args, "k": kwargs}, sort_keys=True, default=str)
    return hashlib.sha256(raw.encode()).hexdigest()[:16]


class TTLCache:
    """Thread-safe key/value store whose entries expire after ``ttl`` seconds."""

    def __init__(self, ttl: float = DEFAULT_TTL) -> None:
        self.ttl = ttl
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any:
        """Return the cached value, or ``MISS`` if absent or expired.

        ``MISS`` distinguishes a miss from a cached ``None`` (e.g. an empty
        204 response body).
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return MISS
            stored_at, value = entry
            if time.monotonic() - stored_at < self.ttl:
                logger.debug("Cache hit: %s", key)
                return value
            del self._entries[key]
            logger.debug("Cache expired: %s", key)
            return MISS

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = (time.monotonic(), value)
        logger.debug("Cache put: %s", key)

    def clear(self) -> None:
        """Drop every entry (called after mutations)."""
        with self._lock:
            if self._entries:
                logger.debug("Cache cleared (%d entries)", len(self._entries))
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

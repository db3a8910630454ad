"""
In-memory result cache

Bounded and expiring. Eviction is first-in-first-out: a cache hit does not
refresh an entry's position. Expired entries are dropped lazily on lookup.
"""
import hashlib
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 10
DEFAULT_EXPIRATION_SECONDS = 3600.0


@dataclass
class CacheEntry:
    key: str
    result: Any
    created_at: float


def make_cache_key(input_file: Any) -> str:
    """SHA-256 over the file content and its declared MIME type"""
    content = getattr(input_file, "content", None)
    if not isinstance(content, (bytes, bytearray)):
        raise TypeError(f"Cannot build a cache key for {type(input_file).__name__}")
    content_type = getattr(input_file, "content_type", "") or ""

    digest = hashlib.sha256()
    digest.update(content_type.encode("utf-8"))
    digest.update(b"\0")
    digest.update(bytes(content))
    return digest.hexdigest()


class ResultCache:
    """Thread-safe FIFO cache with per-entry expiry"""

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        expiration_seconds: float = DEFAULT_EXPIRATION_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        if expiration_seconds <= 0:
            raise ValueError(f"expiration_seconds must be > 0, got {expiration_seconds}")
        self.max_size = max_size
        self.expiration_seconds = expiration_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.created_at > self.expiration_seconds

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._is_expired(entry, self._clock()):
                del self._entries[key]
                logger.debug(f"Cache entry expired: {key[:12]}")
                return None
            return entry.result

    def put(self, key: str, result: Any) -> None:
        with self._lock:
            # Overwrite re-inserts at the back
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Cache full, evicted oldest entry: {evicted[:12]}")
            self._entries[key] = CacheEntry(key=key, result=result, created_at=self._clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("Cache cleared")

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "keys": list(self._entries.keys()),
                "expiration_seconds": self.expiration_seconds,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

"""In-memory TTL cache with capacity-driven eviction."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Optional, TypeVar

from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="cache")

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """Cached value with its absolute expiry on the cache clock."""
    value: T
    expires_at: float


class TTLCache(Generic[T]):
    """Thread-safe TTL cache.

    The lock only guards the underlying dict. Callers do their own upstream work
    outside it, so two concurrent misses for one key may both fetch; the later
    `set` wins.

    Once the entry count passes `max_entries * cleanup_threshold`, expired
    entries are dropped first and, if still over, the oldest insertions are
    evicted until half of `max_entries` remain.
    """

    def __init__(
        self,
        name: str,
        ttl_seconds: float,
        max_entries: int = 1000,
        cleanup_threshold: float = 0.8,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.ttl = ttl_seconds
        self.max_entries = max_entries
        self.cleanup_threshold = cleanup_threshold
        self._clock = clock
        self._entries: Dict[str, CacheEntry[T]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> Optional[T]:
        """Return the live value for key, or None if missing/expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                self._entries.pop(key, None)
                return None
            return entry.value

    def set(self, key: str, value: T, ttl_seconds: float | None = None) -> None:
        """Store value under key for `ttl_seconds` (default: the cache TTL)."""
        ttl = self.ttl if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._maintain()
            # re-insert so insertion order tracks the latest write
            self._entries.pop(key, None)
            self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _maintain(self) -> None:
        """Expire and evict; caller holds the lock."""
        if len(self._entries) <= self.max_entries * self.cleanup_threshold:
            return
        now = self._clock()
        for key in [k for k, e in self._entries.items() if e.expires_at <= now]:
            del self._entries[key]
        if len(self._entries) > self.max_entries * self.cleanup_threshold:
            to_remove = len(self._entries) - self.max_entries // 2
            for key in list(self._entries)[:to_remove]:
                del self._entries[key]
            logger.debug("Evicted oldest cache entries", extra={"cache": self.name, "evicted": to_remove})

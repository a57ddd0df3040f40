"""State backends for the tiered rate limiter.

Each limiter layer keeps a small JSON-able dict per client key (burst window
count or token-bucket level). The memory store is the default; the Redis store
lets several worker processes share the same counters on a best-effort basis.
"""

import json
import threading
from typing import Any, Dict, List, Optional, Protocol

import redis

from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="rate_limit_store")

LimiterState = Dict[str, Any]


class RateLimitStore(Protocol):
    """Protocol for rate-limit state backends."""

    def load(self, key: str) -> Optional[LimiterState]:
        """Return the stored state for key, or None."""

    def save(self, key: str, state: LimiterState, ttl_seconds: int) -> None:
        """Persist state for key; backends may expire it after ttl_seconds."""

    def delete(self, key: str) -> None:
        """Remove key without raising if it is absent."""

    def keys(self, prefix: str = "") -> List[str]:
        """List stored keys starting with prefix."""

    def clear(self) -> None:
        """Drop all limiter state."""


class InMemoryRateLimitStore(RateLimitStore):
    """Process-local, lock-protected state map."""

    def __init__(self) -> None:
        self._states: dict[str, LimiterState] = {}
        self._lock = threading.Lock()

    def load(self, key: str) -> Optional[LimiterState]:
        with self._lock:
            state = self._states.get(key)
            return dict(state) if state is not None else None

    def save(self, key: str, state: LimiterState, ttl_seconds: int) -> None:
        # expiry is left to TieredRateLimiter.cleanup()
        with self._lock:
            self._states[key] = dict(state)

    def delete(self, key: str) -> None:
        with self._lock:
            self._states.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return [k for k in self._states if k.startswith(prefix)]

    def clear(self) -> None:
        with self._lock:
            self._states.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)


class RedisRateLimitStore(RateLimitStore):
    """Redis-backed limiter state stored as JSON with a per-key expiry.

    Reads and writes are not atomic across processes; concurrent requests from
    one client may both pass a nearly exhausted layer.
    """

    def __init__(self, client, prefix: str = "ratelimit:") -> None:
        logger.debug("Initializing RedisRateLimitStore")
        self.client = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def load(self, key: str) -> Optional[LimiterState]:
        try:
            raw = self.client.get(self._key(key))
        except redis.RedisError as exc:
            logger.error("Failed to read limiter state from Redis", extra={"error": str(exc)})
            return None
        if not raw:
            return None
        try:
            return json.loads(raw.decode("utf-8") if isinstance(raw, bytes) else raw)
        except ValueError as exc:
            logger.warning("Discarding unreadable limiter state", extra={"key": key, "error": str(exc)})
            return None

    def save(self, key: str, state: LimiterState, ttl_seconds: int) -> None:
        try:
            self.client.setex(self._key(key), max(1, int(ttl_seconds)), json.dumps(state).encode("utf-8"))
        except redis.RedisError as exc:
            logger.error("Failed to write limiter state to Redis", extra={"error": str(exc)})

    def delete(self, key: str) -> None:
        try:
            self.client.delete(self._key(key))
        except redis.RedisError as exc:
            logger.error("Failed to delete limiter state from Redis", extra={"error": str(exc)})

    def keys(self, prefix: str = "") -> List[str]:
        out = []
        try:
            for raw in self.client.scan_iter(f"{self.prefix}{prefix}*"):
                name = raw.decode("utf-8") if isinstance(raw, bytes) else raw
                out.append(name[len(self.prefix):])
        except redis.RedisError as exc:
            logger.error("Failed to scan limiter keys in Redis", extra={"error": str(exc)})
            return []
        return out

    def clear(self) -> None:
        for key in self.keys():
            self.delete(key)


def build_rate_limit_store(redis_url: str | None) -> RateLimitStore:
    """Pick the Redis store when a URL is configured and reachable, else memory."""
    if redis_url:
        try:
            client = redis.Redis.from_url(redis_url)
            client.ping()
            logger.info("Using RedisRateLimitStore", extra={"redis_url": mask_url(redis_url)})
            return RedisRateLimitStore(client)
        except (redis.RedisError, ValueError) as exc:
            logger.warning("Falling back to InMemoryRateLimitStore (Redis unavailable)", extra={"error": str(exc)})
    return InMemoryRateLimitStore()

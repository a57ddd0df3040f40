"""Three-layer admission control applied before any comparison work.

Layers run in a fixed order and the first violation wins:

1. burst: fixed window of `burst_requests` per `burst_window_seconds`
2. per-minute token bucket
3. per-hour token bucket

Rejections are decisions, not exceptions. State lives in a RateLimitStore so
tests can use an isolated in-memory instance with a fake clock.
"""

from __future__ import annotations

import hashlib
import threading
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from ridefare.rate_limit_store import InMemoryRateLimitStore, LimiterState, RateLimitStore
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="rate_limiter")

CLEANUP_SLACK_SECONDS = 3600
CLEANUP_EVERY_N_CHECKS = 100

BURST_SUFFIX = "_burst"
MINUTE_SUFFIX = "_minute"
HOUR_SUFFIX = "_hour"


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one admission check. `reset_time` is epoch seconds."""
    allowed: bool
    remaining_requests: int
    reset_time: float
    reason: Optional[str] = None

    @property
    def retry_after_seconds(self) -> int:
        return max(1, int(round(self.reset_time - time.time())))


def client_fingerprint(headers: Mapping[str, str]) -> str:
    """Derive a client key from proxy headers, else from user-agent and language.

    This is a heuristic, not an identity: every header it reads can be set by the
    client.
    """
    def header(name: str) -> str:
        return (headers.get(name) or "").strip()

    forwarded = header("x-forwarded-for").split(",")[0].strip()
    identifier = forwarded or header("x-real-ip")
    if not identifier:
        user_agent = header("user-agent") or "unknown"
        language = header("accept-language") or "unknown"
        identifier = f"{user_agent}-{language}"
    digest = hashlib.sha256(identifier.encode("utf-8")).hexdigest()[:16]
    return f"client_{digest}"


@dataclass(frozen=True)
class BucketLimit:
    capacity: int
    interval_seconds: int
    reason: str


class TieredRateLimiter:
    """Burst window plus minute and hour token buckets per client."""

    def __init__(
        self,
        store: RateLimitStore | None = None,
        *,
        burst_requests: int = 3,
        burst_window_seconds: int = 10,
        requests_per_minute: int = 10,
        requests_per_hour: int = 50,
        clock: Callable[[], float] = time.time,
        cleanup_every: int = CLEANUP_EVERY_N_CHECKS,
    ) -> None:
        self.store = store if store is not None else InMemoryRateLimitStore()
        self.burst_requests = burst_requests
        self.burst_window = burst_window_seconds
        self.minute = BucketLimit(
            requests_per_minute, 60, f"Rate limit exceeded ({requests_per_minute} requests per minute)"
        )
        self.hour = BucketLimit(
            requests_per_hour, 3600, f"Rate limit exceeded ({requests_per_hour} requests per hour)"
        )
        self.burst_reason = (
            f"Burst limit exceeded ({burst_requests} requests per {burst_window_seconds} seconds)"
        )
        self._clock = clock
        self._cleanup_every = max(1, cleanup_every)
        self._checks = 0
        # serializes read-modify-write of one client's state; no I/O beyond the store
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings, store: RateLimitStore | None = None) -> "TieredRateLimiter":
        return cls(
            store,
            burst_requests=settings.burst_requests,
            burst_window_seconds=settings.burst_window_seconds,
            requests_per_minute=settings.requests_per_minute,
            requests_per_hour=settings.requests_per_hour,
        )

    def check_request(self, headers: Mapping[str, str]) -> RateLimitDecision:
        """Fingerprint the caller from request headers and check it."""
        return self.check(client_fingerprint(headers))

    def check(self, identity: str) -> RateLimitDecision:
        """Consume one request for identity if every layer allows it."""
        with self._lock:
            now = self._clock()
            decision = self._check_locked(identity, now)
            self._checks += 1
            run_cleanup = self._checks % self._cleanup_every == 0
        if run_cleanup:
            self.cleanup()
        if not decision.allowed:
            logger.info("Request rate limited", extra={"client": identity, "reason": decision.reason})
        return decision

    def _check_locked(self, identity: str, now: float) -> RateLimitDecision:
        burst_key = identity + BURST_SUFFIX
        burst = self.store.load(burst_key)
        if burst is not None and now < burst["reset_time"]:
            if burst["count"] >= self.burst_requests:
                return RateLimitDecision(False, 0, burst["reset_time"], self.burst_reason)
            burst["count"] += 1
        else:
            burst = {"count": 1, "reset_time": now + self.burst_window}
        self.store.save(burst_key, burst, self.burst_window + CLEANUP_SLACK_SECONDS)

        minute_key = identity + MINUTE_SUFFIX
        minute_state = self._refill(self.store.load(minute_key), self.minute, now)
        if minute_state["tokens"] < 1:
            self.store.save(minute_key, minute_state, self.minute.interval_seconds + CLEANUP_SLACK_SECONDS)
            return RateLimitDecision(
                False, int(minute_state["tokens"]), now + self.minute.interval_seconds, self.minute.reason
            )
        minute_state["tokens"] -= 1
        self.store.save(minute_key, minute_state, self.minute.interval_seconds + CLEANUP_SLACK_SECONDS)

        hour_key = identity + HOUR_SUFFIX
        hour_state = self._refill(self.store.load(hour_key), self.hour, now)
        if hour_state["tokens"] < 1:
            self.store.save(hour_key, hour_state, self.hour.interval_seconds + CLEANUP_SLACK_SECONDS)
            return RateLimitDecision(
                False, int(hour_state["tokens"]), now + self.hour.interval_seconds, self.hour.reason
            )
        hour_state["tokens"] -= 1
        self.store.save(hour_key, hour_state, self.hour.interval_seconds + CLEANUP_SLACK_SECONDS)

        remaining = int(min(minute_state["tokens"], hour_state["tokens"]))
        return RateLimitDecision(True, remaining, now + self.minute.interval_seconds)

    @staticmethod
    def _refill(state: Optional[LimiterState], limit: BucketLimit, now: float) -> LimiterState:
        """Return the bucket topped up for time elapsed since its last refill."""
        if state is None:
            return {"tokens": float(limit.capacity), "last_refill": now}
        elapsed = max(0.0, now - state["last_refill"])
        tokens = min(float(limit.capacity), state["tokens"] + elapsed * limit.capacity / limit.interval_seconds)
        return {"tokens": tokens, "last_refill": now}

    def cleanup(self) -> int:
        """Drop state idle for longer than its window plus an hour; return the count removed."""
        now = self._clock()
        removed = 0
        with self._lock:
            for key in self.store.keys():
                state = self.store.load(key)
                if state is None:
                    continue
                if key.endswith(BURST_SUFFIX):
                    stale = now > state["reset_time"] + CLEANUP_SLACK_SECONDS
                elif key.endswith(MINUTE_SUFFIX):
                    stale = now > state["last_refill"] + self.minute.interval_seconds + CLEANUP_SLACK_SECONDS
                elif key.endswith(HOUR_SUFFIX):
                    stale = now > state["last_refill"] + self.hour.interval_seconds + CLEANUP_SLACK_SECONDS
                else:
                    stale = False
                if stale:
                    self.store.delete(key)
                    removed += 1
        if removed:
            logger.debug("Removed stale rate limit entries", extra={"removed": removed})
        return removed

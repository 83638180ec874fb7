"""Fixed-window request rate limiting keyed by identity and action."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Protocol

from redis import Redis

from catalog_io.core.config import get_settings
from catalog_io.core.errors import RateLimitExceeded
from catalog_io.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)

SWEEP_INTERVAL_SECONDS = 60


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: float

    @property
    def retry_after_seconds(self) -> int:
        return max(1, int(self.reset_at - time.time() + 0.999))


class RateLimiter(Protocol):
    def allow(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision: ...


class InMemoryRateLimiter:
    """Process-local counters; expired windows are swept lazily on access."""

    def __init__(self, clock=time.time):
        self._clock = clock
        self._windows: dict[str, tuple[int, float]] = {}
        self._lock = threading.Lock()
        self._next_sweep = 0.0

    def _sweep(self, now: float) -> None:
        if now < self._next_sweep:
            return
        expired = [key for key, (_, reset_at) in self._windows.items() if reset_at <= now]
        for key in expired:
            del self._windows[key]
        self._next_sweep = now + SWEEP_INTERVAL_SECONDS

    def allow(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        now = self._clock()
        with self._lock:
            self._sweep(now)
            count, reset_at = self._windows.get(key, (0, 0.0))
            if reset_at <= now:
                count, reset_at = 0, now + window_seconds
            count += 1
            self._windows[key] = (count, reset_at)
        return RateLimitDecision(allowed=count <= limit, remaining=max(0, limit - count), reset_at=reset_at)

    def __len__(self) -> int:
        return len(self._windows)


class RedisRateLimiter:
    """Shared counters using INCR + EXPIRE so limits hold across instances."""

    def __init__(self, client: Redis, prefix: str = "ratelimit:"):
        self.client = client
        self.prefix = prefix

    def allow(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        redis_key = f"{self.prefix}{key}"
        pipe = self.client.pipeline()
        pipe.incr(redis_key, 1)
        pipe.ttl(redis_key)
        count, ttl = pipe.execute()

        if ttl is None or ttl < 0:
            self.client.expire(redis_key, window_seconds)
            ttl = window_seconds

        count = int(count)
        return RateLimitDecision(
            allowed=count <= limit,
            remaining=max(0, limit - count),
            reset_at=time.time() + ttl,
        )


def enforce(limiter: RateLimiter, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
    """Count one request against ``key`` and raise RateLimitExceeded when over the limit."""
    decision = limiter.allow(key, limit, window_seconds)
    if not decision.allowed:
        logger.warning(f"Rate limit exceeded for {key} (limit {limit}/{window_seconds}s)")
        raise RateLimitExceeded(retry_after_seconds=decision.retry_after_seconds)
    return decision


@lru_cache
def get_rate_limiter() -> RateLimiter:
    settings = get_settings()
    if settings.rate_limit_backend == "redis":
        return RedisRateLimiter(create_redis_client(settings.redis_url, decode_responses=True))
    return InMemoryRateLimiter()

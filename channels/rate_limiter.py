from __future__ import annotations

import logging
import time
import uuid
from collections import deque
from typing import Any, Callable, Deque, Dict

import redis.asyncio as redis

from settings import SETTINGS

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """In-process sliding window keyed by an arbitrary string."""

    def __init__(self, limit: int, window_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._last_sweep = clock()

    async def hit(self, key: str, limit: int | None = None) -> bool:
        """Record one request; False when the window is already full."""
        cap = limit or self.limit
        now = self._clock()
        if now - self._last_sweep > self.window_seconds:
            self._sweep(now)
        bucket = self._hits.setdefault(key, deque())
        self._expire(bucket, now)
        if len(bucket) >= cap:
            return False
        bucket.append(now)
        return True

    def _expire(self, bucket: Deque[float], now: float) -> None:
        while bucket and now - bucket[0] > self.window_seconds:
            bucket.popleft()

    def _sweep(self, now: float) -> None:
        """Forget keys whose window has emptied."""
        for key in list(self._hits):
            self._expire(self._hits[key], now)
            if not self._hits[key]:
                del self._hits[key]
        self._last_sweep = now

    def __len__(self) -> int:
        return len(self._hits)


class RedisSlidingWindowRateLimiter:
    """Sliding window shared across workers, one sorted set per key."""

    def __init__(self, client: Any, limit: int, window_seconds: float, prefix: str = "rate_limit") -> None:
        self.client = client
        self.limit = limit
        self.window_seconds = window_seconds
        self.prefix = prefix

    async def hit(self, key: str, limit: int | None = None) -> bool:
        cap = limit or self.limit
        redis_key = f"{self.prefix}:{key}"
        now = time.time()
        pipe = self.client.pipeline()
        pipe.zremrangebyscore(redis_key, 0, now - self.window_seconds)
        pipe.zcard(redis_key)
        _, count = await pipe.execute()
        if int(count) >= cap:
            return False
        await self.client.zadd(redis_key, {f"{now}:{uuid.uuid4().hex[:6]}": now})
        await self.client.expire(redis_key, int(self.window_seconds) + 1)
        return True


def build_rate_limiter(limit: int, window_seconds: float, prefix: str):
    if SETTINGS.redis_url:
        client = redis.from_url(SETTINGS.redis_url, decode_responses=True)
        return RedisSlidingWindowRateLimiter(client, limit, window_seconds, prefix=prefix)
    return SlidingWindowRateLimiter(limit, window_seconds)


class AIAccessRateLimiter:
    """Inbound per-workspace limit on AI calls. Backing-store errors propagate."""

    def __init__(self, backend=None) -> None:
        self.backend = backend or build_rate_limiter(SETTINGS.default_rate_limit_per_minute, 60, "rate_limit:ai")

    async def check(self, workspace_id: str, limit_per_minute: int) -> bool:
        return await self.backend.hit(workspace_id, limit_per_minute)


class OutboundRateLimiter:
    """Per-workspace limit on platform sends. Fails open when the backend errors."""

    def __init__(self, backend=None) -> None:
        self.backend = backend or build_rate_limiter(
            SETTINGS.outbound_rate_limit,
            SETTINGS.outbound_rate_window_seconds,
            "rate_limit:outbound",
        )

    async def __call__(self, workspace_id: str) -> bool:
        try:
            return await self.backend.hit(workspace_id)
        except Exception as exc:
            logger.error("outbound_rate_limit_check_failed", extra={"workspace_id": workspace_id, "error": repr(exc)})
            return True

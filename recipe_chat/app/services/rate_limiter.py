"""Per-user sliding-window rate limits.

A rejection is a normal outcome: callers check it before doing any work that
costs a model call, fetch or embedding.
"""

import asyncio
import logging
import math
import time
import uuid
from collections import deque
from typing import Callable, Deque, Dict, Optional, Protocol

from pydantic import BaseModel
from redis import asyncio as redis_asyncio
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class RateLimitDecision(BaseModel):
    allowed: bool
    limit: int
    remaining: int
    reset: int
    retry_after: Optional[int] = None

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class SlidingWindowLimiter(Protocol):
    async def hit(self, key: str, *, limit: int, window_seconds: int) -> RateLimitDecision:
        ...


def _decision(count: int, oldest: Optional[float], now: float, limit: int, window_seconds: int) -> RateLimitDecision:
    reset_at = (oldest if oldest is not None else now) + window_seconds
    if count > limit:
        return RateLimitDecision(
            allowed=False,
            limit=limit,
            remaining=0,
            reset=int(math.ceil(reset_at)),
            retry_after=max(1, int(math.ceil(reset_at - now))),
        )
    return RateLimitDecision(
        allowed=True,
        limit=limit,
        remaining=max(0, limit - count),
        reset=int(math.ceil(reset_at)),
    )


class InMemorySlidingWindowLimiter:
    """Single-process limiter for development and tests."""

    def __init__(self, clock: Clock = time.time):
        self.clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = asyncio.Lock()
        self._last_sweep = self.clock()

    def _sweep(self, now: float, window_seconds: int) -> None:
        # Drop keys with no hit inside the window
        cutoff = now - window_seconds
        for key in [k for k, hits in self._hits.items() if not hits or hits[-1] <= cutoff]:
            del self._hits[key]
        self._last_sweep = now

    async def hit(self, key: str, *, limit: int, window_seconds: int) -> RateLimitDecision:
        async with self._lock:
            now = self.clock()
            if now - self._last_sweep >= window_seconds:
                self._sweep(now, window_seconds)
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= now - window_seconds:
                hits.popleft()
            if len(hits) >= limit:
                return _decision(len(hits) + 1, hits[0], now, limit, window_seconds)
            hits.append(now)
            return _decision(len(hits), hits[0], now, limit, window_seconds)


class RedisSlidingWindowLimiter:
    """Sorted-set sliding log shared across processes.

    Falls back to an in-process limiter while Redis is unreachable.
    """

    def __init__(self, redis_url: str, clock: Clock = time.time, prefix: str = "ratelimit"):
        self.redis = redis_asyncio.Redis.from_url(redis_url, decode_responses=True)
        self.clock = clock
        self.prefix = prefix
        self.fallback = InMemorySlidingWindowLimiter(clock)

    async def hit(self, key: str, *, limit: int, window_seconds: int) -> RateLimitDecision:
        now = self.clock()
        redis_key = f"{self.prefix}:{key}:{window_seconds}"
        member = f"{now}:{uuid.uuid4().hex}"
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(redis_key, 0, now - window_seconds)
                pipe.zadd(redis_key, {member: now})
                pipe.zcard(redis_key)
                pipe.zrange(redis_key, 0, 0, withscores=True)
                pipe.expire(redis_key, window_seconds + 1)
                _, _, count, oldest, _ = await pipe.execute()
            if count > limit:
                await self.redis.zrem(redis_key, member)
        except RedisError as exc:
            logger.warning("Redis rate limit error, falling back to memory: %s", exc)
            return await self.fallback.hit(key, limit=limit, window_seconds=window_seconds)

        oldest_score = oldest[0][1] if oldest else None
        return _decision(int(count), oldest_score, now, limit, window_seconds)

    async def close(self) -> None:
        await self.redis.aclose()


def user_key(user_id: str, bucket: str) -> str:
    return f"{bucket}:user:{user_id}"

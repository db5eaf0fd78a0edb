"""
Rate Limiter

Per-tenant fixed-window request admission backed by Redis counters.

Each tenant gets one counter per aligned window, keyed
`ratelimit:{tenant}:{floor(now / window_seconds)}`. The first hit in a window
sets the key's expiry so abandoned windows clean themselves up. Up to twice
the limit can pass across a window boundary; that burst is accepted.

If Redis is unreachable the limiter fails open: availability of the service
is weighted above strict quota enforcement.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, NamedTuple, Optional

from redis.asyncio import Redis

logger = logging.getLogger("docsearch.ratelimit")


class RateLimitDecision(NamedTuple):
    """Outcome of one admission check."""
    allowed: bool
    count: int
    limit: int
    retry_after: int


class RateLimiter:
    """
    Fixed-window counter limiter.
    """

    def __init__(
        self,
        redis: Optional[Redis],
        *,
        enabled: bool = True,
        limit: int = 100,
        window_seconds: int = 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Parameters
        ----------
        redis : Optional[Redis]
            Shared async client. None means no counter store is configured,
            which admits every request.
        enabled : bool
            When False every request is admitted without touching Redis.
        limit : int
            Maximum admitted requests per tenant per window.
        window_seconds : int
            Window length.
        clock : Callable[[], float]
            Wall-clock source in seconds.
        """
        self._redis = redis
        self._enabled = enabled
        self._limit = limit
        self._window_seconds = max(1, window_seconds)
        self._clock = clock

    def window_key(self, tenant_id: str, now: Optional[float] = None) -> str:
        now = self._clock() if now is None else now
        return f"ratelimit:{tenant_id}:{int(now // self._window_seconds)}"

    async def check(self, tenant_id: str) -> RateLimitDecision:
        """
        Count one request for `tenant_id` and decide whether to admit it.
        """
        if not self._enabled or self._redis is None:
            return RateLimitDecision(True, 0, self._limit, 0)

        now = self._clock()
        key = self.window_key(tenant_id, now)
        retry_after = self._window_seconds - int(now % self._window_seconds)

        try:
            count = await self._redis.incr(key)
            if count == 1:
                await self._redis.expire(key, self._window_seconds)
        except Exception:
            logger.error("Error checking rate limit for tenant: %s", tenant_id, exc_info=True)
            return RateLimitDecision(True, 0, self._limit, 0)

        allowed = count <= self._limit
        if not allowed:
            logger.warning("Rate limit exceeded for tenant: %s", tenant_id)

        return RateLimitDecision(allowed, count, self._limit, retry_after)

    async def is_allowed(self, tenant_id: str) -> bool:
        decision = await self.check(tenant_id)
        return decision.allowed

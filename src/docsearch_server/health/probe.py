"""
Health Probe

Checks the four external collaborators concurrently. Each probe is bounded by
its own timeout and a failure marks only that component DOWN.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from redis.asyncio import Redis

from ..api.models import HealthResponse, ProbeStatus
from ..db.document_store import DocumentStore
from ..messaging.channel import TaskChannel
from ..search.index import SearchIndex

logger = logging.getLogger("docsearch.health")

UP: ProbeStatus = "UP"
DOWN: ProbeStatus = "DOWN"

HEALTH_CHECK_KEY = "health-check"

Check = Callable[[], Awaitable[bool]]


class HealthProbe:
    def __init__(
        self,
        store: DocumentStore,
        index: SearchIndex,
        redis: Optional[Redis],
        channel: TaskChannel,
        timeout_seconds: float = 2.0,
    ) -> None:
        self._store = store
        self._index = index
        self._redis = redis
        self._channel = channel
        self._timeout = timeout_seconds

    async def _redis_ping(self) -> bool:
        if self._redis is None:
            return False
        # Read then throwaway write, so both directions are exercised.
        await self._redis.get(HEALTH_CHECK_KEY)
        await self._redis.set(HEALTH_CHECK_KEY, "ok", ex=1)
        return True

    def _checks(self) -> Dict[str, Check]:
        return {
            "postgresql": self._store.ping,
            "elasticsearch": self._index.ping,
            "redis": self._redis_ping,
            "messaging": self._channel.ping,
        }

    async def _probe(self, name: str, check: Check) -> ProbeStatus:
        try:
            ok = await asyncio.wait_for(check(), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("Health probe '%s' timed out after %.1fs", name, self._timeout)
            return DOWN
        except Exception as exc:
            logger.warning("Health probe '%s' failed: %s", name, exc)
            return DOWN
        return UP if ok else DOWN

    async def check(self) -> HealthResponse:
        checks = self._checks()
        results = await asyncio.gather(
            *(self._probe(name, check) for name, check in checks.items())
        )
        statuses = dict(zip(checks.keys(), results))
        overall = UP if all(s == UP for s in statuses.values()) else DOWN
        return HealthResponse(status=overall, checks=statuses)

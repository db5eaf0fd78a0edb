"""
Dependency Guards

Retry with exponential backoff plus a circuit breaker, applied explicitly
around calls into the record store and the index engine.

Only `DependencyUnavailableError` counts as a dependency failure. Any other
exception (not-found, validation, an index engine rejecting a malformed
record) passes straight through without being retried and without tripping
the breaker.

Breaker states
--------------
CLOSED     calls flow; consecutive failures are counted.
OPEN       calls are rejected immediately until the reset timeout elapses.
HALF_OPEN  a single trial call is admitted; success closes the breaker,
           failure opens it again.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from random import random
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from .errors import DependencyUnavailableError

logger = logging.getLogger("docsearch.resilience")

T = TypeVar("T")


@dataclass(frozen=True)
class GuardPolicy:
    max_attempts: int = 3
    backoff_base_seconds: float = 0.2
    backoff_max_seconds: float = 2.0
    failure_threshold: int = 5
    reset_timeout_seconds: float = 30.0


class BreakerState(str, enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        failure_threshold: int,
        reset_timeout_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self._failure_threshold = max(1, failure_threshold)
        self._reset_timeout = reset_timeout_seconds
        self._clock = clock

        self._state = BreakerState.CLOSED
        self._failures = 0
        self._opened_at = 0.0
        self._trial_in_flight = False

    @property
    def state(self) -> BreakerState:
        if (
            self._state is BreakerState.OPEN
            and self._clock() - self._opened_at >= self._reset_timeout
        ):
            self._state = BreakerState.HALF_OPEN
            self._trial_in_flight = False
        return self._state

    def before_call(self) -> None:
        """Raise if the breaker does not currently admit a call."""
        state = self.state
        if state is BreakerState.OPEN:
            raise DependencyUnavailableError(
                self.name, f"Circuit breaker for '{self.name}' is open"
            )
        if state is BreakerState.HALF_OPEN:
            if self._trial_in_flight:
                raise DependencyUnavailableError(
                    self.name, f"Circuit breaker for '{self.name}' is half-open"
                )
            self._trial_in_flight = True

    def release_trial(self) -> None:
        self._trial_in_flight = False

    def record_success(self) -> None:
        if self._state is not BreakerState.CLOSED:
            logger.info("Circuit breaker '%s' closed", self.name)
        self._state = BreakerState.CLOSED
        self._failures = 0
        self._trial_in_flight = False

    def record_failure(self) -> None:
        self._failures += 1
        if (
            self._state is BreakerState.HALF_OPEN
            or self._failures >= self._failure_threshold
        ):
            if self._state is not BreakerState.OPEN:
                logger.warning(
                    "Circuit breaker '%s' opened after %d failure(s)",
                    self.name,
                    self._failures,
                )
            self._state = BreakerState.OPEN
            self._opened_at = self._clock()
            self._trial_in_flight = False


class DependencyGuard:
    """
    Retry + circuit breaker wrapper for one named dependency.

    Usage:
        guard = DependencyGuard("postgresql", policy)
        doc = await guard.call(store.find_by_id, doc_id)
    """

    def __init__(
        self,
        name: str,
        policy: GuardPolicy,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.name = name
        self.policy = policy
        self.breaker = CircuitBreaker(
            name,
            failure_threshold=policy.failure_threshold,
            reset_timeout_seconds=policy.reset_timeout_seconds,
            clock=clock,
        )
        self._sleep = sleep

    def _delay_for(self, attempt: int) -> float:
        delay = min(
            self.policy.backoff_base_seconds * (2 ** (attempt - 1)),
            self.policy.backoff_max_seconds,
        )
        return delay + random() * 0.2 * delay

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        attempts = max(1, self.policy.max_attempts)
        attempt = 1

        while True:
            self.breaker.before_call()
            try:
                result = await func(*args, **kwargs)
            except DependencyUnavailableError as exc:
                self.breaker.record_failure()
                if attempt >= attempts or self.breaker.state is BreakerState.OPEN:
                    raise
                delay = self._delay_for(attempt)
                logger.warning(
                    "%s call failed attempt=%d error=%s; retrying in %.2fs",
                    self.name,
                    attempt,
                    exc.detail,
                    delay,
                )
                await self._sleep(delay)
                attempt += 1
                continue
            except asyncio.CancelledError:
                self.breaker.release_trial()
                raise
            except Exception:
                # Not a dependency failure: the dependency answered.
                if self.breaker.state is BreakerState.HALF_OPEN:
                    self.breaker.record_success()
                raise

            self.breaker.record_success()
            return result


class GuardRegistry:
    """Shares one guard (and so one breaker) per dependency name."""

    def __init__(self, policy: GuardPolicy, clock: Optional[Callable[[], float]] = None) -> None:
        self._policy = policy
        self._clock = clock or time.monotonic
        self._guards: Dict[str, DependencyGuard] = {}

    def get(self, name: str) -> DependencyGuard:
        guard = self._guards.get(name)
        if guard is None:
            guard = DependencyGuard(name, self._policy, clock=self._clock)
            self._guards[name] = guard
        return guard

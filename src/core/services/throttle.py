"""Outbound call throttling: rate limiting and retry with backoff.

Responsibilities:
- `RateLimiter` owns one budget (a provider, or a discovery source).
  Provider calls that would exceed it are suspended until a token returns;
  discovery sources use `try_acquire` and skip the query instead.
- `RetryPolicy` wraps a single outbound call and retries transient failures
  with exponential backoff and jitter.
- Every wait here races the shared shutdown event and raises
  `OperationCancelled` when it fires.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import TypeVar

from core.config import RateLimitSettings, RetrySettings
from core.domain.errors import (
    OperationCancelled,
    RateLimitExceeded,
    RetryExhausted,
    TransientProviderError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def ensure_not_cancelled(cancel: asyncio.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelled("shutdown requested")


async def sleep_or_cancel(delay: float, cancel: asyncio.Event | None) -> None:
    """Sleep `delay` seconds, or raise `OperationCancelled` as soon as `cancel` is set."""

    ensure_not_cancelled(cancel)
    if delay <= 0:
        await asyncio.sleep(0)
        ensure_not_cancelled(cancel)
        return
    if cancel is None:
        await asyncio.sleep(delay)
        return
    try:
        await asyncio.wait_for(cancel.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return
    raise OperationCancelled("shutdown requested")


class RateLimiter:
    """Rolling-window token bucket.

    A token spent at time `t` comes back at `t + window_seconds`, so no window
    of that length ever holds more than `capacity` grants.
    """

    def __init__(
        self,
        capacity: int,
        window_seconds: float,
        *,
        name: str = "",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self.capacity = capacity
        self.window_seconds = window_seconds
        self.name = name
        self._clock = clock
        self._grants: deque[float] = deque()
        # FIFO: waiters are served in arrival order.
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: RateLimitSettings, *, name: str = "") -> "RateLimiter":
        return cls(settings.capacity, settings.window_seconds, name=name)

    def _expire(self, now: float) -> None:
        while self._grants and self._grants[0] + self.window_seconds <= now:
            self._grants.popleft()

    @property
    def available(self) -> int:
        self._expire(self._clock())
        return self.capacity - len(self._grants)

    def try_acquire(self) -> bool:
        """Take one token if one is free right now; never waits."""

        if self._lock.locked():
            return False
        now = self._clock()
        self._expire(now)
        if len(self._grants) >= self.capacity:
            return False
        self._grants.append(now)
        return True

    async def acquire(self, cancel: asyncio.Event | None = None) -> float:
        """Take one token, waiting as long as needed. Returns the grant time."""

        async with self._lock:
            while True:
                ensure_not_cancelled(cancel)
                now = self._clock()
                self._expire(now)
                if len(self._grants) < self.capacity:
                    self._grants.append(now)
                    return now
                wait = self._grants[0] + self.window_seconds - now
                logger.debug("Rate budget %s exhausted; waiting %.2fs", self.name or "-", wait)
                await sleep_or_cancel(wait, cancel)


class RetryPolicy:
    """Bounded retries for one outbound call.

    Retries on:
    - `TransientProviderError` (network errors, timeouts, 5xx)
    - `RateLimitExceeded` (429), never sooner than `rate_limit_floor`

    Does NOT retry on:
    - `AuthenticationError` or any other `ProviderError`
    """

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        jitter: float = 0.35,
        rate_limit_floor: float = 10.0,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.rate_limit_floor = rate_limit_floor

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay_seconds,
            max_delay=settings.max_delay_seconds,
            jitter=settings.jitter_seconds,
            rate_limit_floor=settings.rate_limit_floor_seconds,
        )

    def backoff_delay(self, attempt: int, error: TransientProviderError) -> float:
        """Delay before attempt `attempt + 1` (attempts are 1-based)."""

        delay = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        if isinstance(error, RateLimitExceeded):
            delay = max(delay, self.rate_limit_floor, error.retry_after or 0.0)
        if self.jitter:
            delay += random.uniform(0.0, self.jitter)
        return delay

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        provider: str,
        description: str = "request",
        cancel: asyncio.Event | None = None,
    ) -> T:
        attempt = 0
        while True:
            attempt += 1
            ensure_not_cancelled(cancel)
            try:
                result = await operation()
            except TransientProviderError as exc:
                if attempt >= self.max_attempts:
                    logger.error(
                        "%s: %s failed after %d attempt(s): %s",
                        provider,
                        description,
                        attempt,
                        exc,
                    )
                    raise RetryExhausted(provider=provider, attempts=attempt, last_error=exc) from exc
                delay = self.backoff_delay(attempt, exc)
                logger.warning(
                    "%s: %s failed (attempt %d/%d): %s. Retrying in %.2fs",
                    provider,
                    description,
                    attempt,
                    self.max_attempts,
                    exc,
                    delay,
                )
                await sleep_or_cancel(delay, cancel)
                continue

            if attempt > 1:
                logger.info("%s: %s succeeded after %d attempt(s)", provider, description, attempt)
            return result

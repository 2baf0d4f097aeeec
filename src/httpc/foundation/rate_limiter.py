"""Rate limiting for outbound requests.

This module provides admission control in front of the transport:

- `QuotaStore`: protocol for a backing store that answers "may one more
  request under this key go now, and if not, how long until it may?"
- `RateLimiter`: in-memory keyed store spacing requests evenly at a fixed
  rate per minute.
- `RateLimiterGate`: the block-and-recheck loop run before each logical
  request.

The gate keys the quota by base URL, not by path, so every endpoint under
one host shares one budget. A limited request is only ever delayed, never
dropped.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

import attrs

from httpc.exceptions import RateLimitError

MAX_RATE_LIMIT_KEYS = 65536

logger = logging.getLogger(__name__)


@attrs.define(frozen=True, slots=True)
class RateLimitResult:
    """Outcome of one quota check.

    Attributes:
        limited: True when the request must wait.
        retry_after: Seconds to wait before checking again. Zero when
            the request was admitted.
    """

    limited: bool
    retry_after: float = 0.0


@runtime_checkable
class QuotaStore(Protocol):
    """Protocol for rate limit backing stores.

    Implementations must be safe for concurrent use by many in-flight
    requests. A store that cannot answer (e.g. a remote store is down)
    raises; the gate turns that into `RateLimitError`.
    """

    async def rate_limit(self, key: str) -> RateLimitResult:
        """Consume one unit of the quota for `key` if available.

        Args:
            key: Quota key.

        Returns:
            Whether the request is limited and how long to wait if so.
        """
        ...


class RateLimiter:
    """Keyed rate limiter admitting one request per interval per key.

    Each key is admitted at most once every `60 / rate_per_minute`
    seconds. Requests arriving sooner are told how long remains until the
    next slot. Keys are kept in an LRU map bounded by `max_keys`.

    Attributes:
        _interval: Seconds between admitted requests for one key.
        _last: Monotonic admission time of the most recent request per key.

    Example:
        ```python
        limiter = RateLimiter(rate_per_minute=120)
        result = await limiter.rate_limit("https://api.example.com")
        if result.limited:
            await asyncio.sleep(result.retry_after)
        ```

    Note:
        Uses monotonic time to avoid issues with system clock adjustments.
        The check-and-record step has no await inside it, so concurrent
        coroutines on one event loop never observe a half-updated key.
    """

    def __init__(
        self,
        rate_per_minute: int,
        max_keys: int = MAX_RATE_LIMIT_KEYS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize rate limiter.

        Args:
            rate_per_minute: Maximum requests per minute per key. Must be
                greater than 0.
            max_keys: Maximum number of keys tracked at once. The least
                recently used key is forgotten first.
            clock: Monotonic clock, injectable for tests.

        Raises:
            ValueError: If rate_per_minute or max_keys is not positive.
        """
        if rate_per_minute <= 0:
            raise ValueError("rate_per_minute must be greater than 0")
        if max_keys <= 0:
            raise ValueError("max_keys must be greater than 0")
        self._interval = 60.0 / rate_per_minute
        self._max_keys = max_keys
        self._clock = clock
        self._last: OrderedDict[str, float] = OrderedDict()

    async def rate_limit(self, key: str) -> RateLimitResult:
        """Admit one request for `key` or report how long to wait.

        Args:
            key: Quota key.

        Returns:
            `RateLimitResult(limited=False)` when admitted, otherwise the
            remaining time until the key's next slot.
        """
        now = self._clock()
        last = self._last.get(key)
        if last is not None:
            delta = now - last
            if delta < self._interval:
                self._last.move_to_end(key)
                return RateLimitResult(limited=True, retry_after=self._interval - delta)

        self._last[key] = now
        self._last.move_to_end(key)
        while len(self._last) > self._max_keys:
            self._last.popitem(last=False)
        return RateLimitResult(limited=False)

    def get_rate(self) -> float:
        """Get the configured rate in requests per minute.

        Returns:
            Maximum number of requests per minute for each key.
        """
        return 60.0 / self._interval

    def __len__(self) -> int:
        return len(self._last)


@attrs.define(slots=True)
class RateLimiterGate:
    """Blocks a request until its quota store admits it.

    The wait loop is driven purely by the store's schedule and is not
    capped by the retry budget. Sleeping yields the event loop, so other
    requests keep running and cancellation interrupts the wait.

    Attributes:
        store: Backing quota store.
        sleep: Coroutine used to wait between checks.
    """

    store: QuotaStore
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    async def wait(self, key: str) -> None:
        """Return once `key` has been admitted.

        Args:
            key: Quota key (the client's base URL).

        Raises:
            RateLimitError: If the store fails.
        """
        while True:
            try:
                result = await self.store.rate_limit(key)
            except Exception as e:
                raise RateLimitError(key, str(e)) from e

            if not result.limited:
                return

            logger.debug(
                "Rate limit reached, waiting",
                extra={"key": key, "retry_after": round(result.retry_after, 3)},
            )
            await self.sleep(result.retry_after)

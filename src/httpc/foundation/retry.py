"""Retrying transport with exponential backoff using tenacity.

This module provides `RetryTransport`, an `httpx.AsyncBaseTransport` that
wraps a base transport so one logical send survives transient failures.

## Retry Policy

An attempt is retried when:
- the base transport raised `httpx.TransportError` (connect, read, write,
  timeout, protocol errors), or
- the response status is not 2xx. When `retry_statuses` is set, only
  those statuses are retried.

Any other outcome ends the loop. Up to `retry_limit` retries follow the
first attempt, so at most `retry_limit + 1` attempts are made.

## Backoff

Retry N waits `2 ** (N - 1)` seconds: 1s, 2s, 4s, ... with no jitter and
no cap.

## Outcome

When the loop ends the last response is returned, or the last exception
is re-raised, exactly as the base transport produced it. No synthetic
"retries exhausted" error exists: callers inspect the final status.

## Bodies

The request body is captured once in a `ReplayBuffer` before the first
attempt and replayed on every retry. The body of a discarded response is
drained and closed before the next attempt so its connection can be
reused. If the loop is cancelled during a backoff sleep, the held
response is closed before the cancellation propagates.

## Usage

```python
import httpx
from httpc.foundation.retry import RetryTransport

transport = RetryTransport(httpx.AsyncHTTPTransport(), retry_limit=3)
async with httpx.AsyncClient(transport=transport) as client:
    resp = await client.get("https://api.example.com/resource")
```
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from functools import partial
from typing import Any

import attrs
import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from httpc.config import DEFAULT_RETRY_LIMIT
from httpc.foundation.replay import ReplayBuffer

# Opt-in set for callers who only want to retry transient server errors
TRANSIENT_STATUS_CODES: frozenset[int] = frozenset({429, 500, 502, 503, 504})


def should_retry(response: httpx.Response, retry_statuses: frozenset[int] | None = None) -> bool:
    """Check whether a completed attempt should be retried.

    Args:
        response: Response of the attempt.
        retry_statuses: Statuses worth retrying. None retries every
            non-2xx status.

    Returns:
        True if the attempt failed and its status is retryable.
    """
    if response.is_success:
        return False
    if retry_statuses is None:
        return True
    return response.status_code in retry_statuses


def _last_outcome(retry_state: RetryCallState) -> Any:
    # Returns the last response, or re-raises the last exception.
    if retry_state.outcome is None:
        raise RuntimeError("retry loop ended without an attempt")
    return retry_state.outcome.result()


@attrs.define(slots=True)
class _RetryState:
    """Per-request retry state, never shared across requests."""

    buffer: ReplayBuffer
    attempts: int = 0
    previous: httpx.Response | None = None


class RetryTransport(httpx.AsyncBaseTransport):
    """Transport that retries failed attempts with exponential backoff.

    Attributes:
        retry_limit: Retries after the first attempt (default: 3).
        retry_statuses: Statuses worth retrying; None for every non-2xx.
        logger: Logger for retry attempts.

    Example:
        ```python
        transport = RetryTransport(
            httpx.AsyncHTTPTransport(),
            retry_limit=5,
            retry_statuses=TRANSIENT_STATUS_CODES,
        )
        ```

    Note:
        Each request runs its own retry loop to completion before
        returning. Concurrent requests share only the base transport's
        connection pool.
    """

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport,
        retry_limit: int = DEFAULT_RETRY_LIMIT,
        retry_statuses: Iterable[int] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize retry transport.

        Args:
            transport: Base transport performing each attempt.
            retry_limit: Retries after the first attempt. Must be at least 1.
            retry_statuses: Statuses worth retrying. None retries every
                non-2xx status.
            sleep: Coroutine used for backoff waits.
            logger: Logger instance. If None, uses this module's logger.

        Raises:
            ValueError: If retry_limit is less than 1.
        """
        if retry_limit < 1:
            raise ValueError("retry_limit must be at least 1")
        self._transport = transport
        self.retry_limit = retry_limit
        self.retry_statuses = frozenset(retry_statuses) if retry_statuses is not None else None
        self._sleep = sleep
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def _log_retry(
        retry_state: RetryCallState,
        logger: logging.Logger,
        max_attempts: int,
    ) -> None:
        """Log callback for a failed attempt that is about to be retried.

        Args:
            retry_state: Tenacity retry state object.
            logger: Logger instance for structured logging.
            max_attempts: Maximum number of attempts.
        """
        if retry_state.outcome is None:
            return

        wait_time = retry_state.next_action.sleep if retry_state.next_action else 0
        extra: dict[str, Any] = {
            "attempt": retry_state.attempt_number,
            "max_attempts": max_attempts,
            "wait_seconds": wait_time,
        }
        if retry_state.outcome.failed:
            exception = retry_state.outcome.exception()
            extra["error"] = str(exception)
            extra["error_type"] = type(exception).__name__
        else:
            extra["status_code"] = retry_state.outcome.result().status_code

        logger.warning("HTTP attempt failed, retrying", extra=extra)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        """Send `request`, retrying failed attempts.

        Args:
            request: Outbound request.

        Returns:
            The response of the last attempt, successful or not.

        Raises:
            CopyError: If the request body cannot be captured. No attempt
                has been made.
            httpx.TransportError: If the last attempt failed at the
                transport level.
        """
        state = _RetryState(buffer=await ReplayBuffer.capture(request))
        max_attempts = self.retry_limit + 1

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=1, exp_base=2),
            retry=(
                retry_if_exception_type(httpx.TransportError)
                | retry_if_result(partial(should_retry, retry_statuses=self.retry_statuses))
            ),
            before_sleep=partial(self._log_retry, logger=self.logger, max_attempts=max_attempts),
            retry_error_callback=_last_outcome,
            sleep=self._sleep,
        )
        try:
            response: httpx.Response = await retrying(self._attempt, request, state)
        except BaseException:
            # Cancelled mid-backoff: the held response was never drained.
            if state.previous is not None:
                await state.previous.aclose()
            raise
        return response

    async def _attempt(self, request: httpx.Request, state: _RetryState) -> httpx.Response:
        if state.attempts > 0:
            previous, state.previous = state.previous, None
            if previous is not None:
                await self._drain(previous)
            request = state.buffer.rewind(request)

        state.attempts += 1
        response = await self._transport.handle_async_request(request)
        state.previous = response
        return response

    async def _drain(self, response: httpx.Response) -> None:
        # Reading to EOF lets the pool reuse the connection; failure only costs that reuse.
        try:
            await response.aread()
        except (httpx.HTTPError, httpx.StreamError) as e:
            self.logger.debug(
                "Failed to drain discarded response body",
                extra={"status_code": response.status_code, "error": str(e)},
            )
        finally:
            await response.aclose()

    async def aclose(self) -> None:
        await self._transport.aclose()

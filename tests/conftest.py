"""Shared pytest configuration and fixtures.

This module provides global fixtures and configuration that are available
to all tests in the test suite.

Fixtures defined here are automatically available to all tests without explicit
import statements. Keep fixtures small, composable, and focused on setup/teardown.
Do NOT put business logic in fixtures.

No test touches the network: HTTP goes through `httpx.MockTransport`, and
every wait goes through an injected `sleep` recorder.
"""

# pylint: disable=redefined-outer-name

from collections.abc import Callable
from unittest.mock import AsyncMock

import httpx
import pytest

BASE_URL = "https://api.example.com"


class RecordingHandler:
    """`httpx.MockTransport` handler replaying a script of outcomes.

    Each outcome is an `httpx.Response`, an exception instance to raise, or
    a callable taking the request. The last outcome repeats once the script
    runs out. Every request is recorded together with its body bytes.
    """

    def __init__(self, *outcomes: httpx.Response | Exception | Callable[[httpx.Request], httpx.Response]) -> None:
        self.outcomes = list(outcomes)
        self.requests: list[httpx.Request] = []
        self.bodies: list[bytes] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.bodies.append(request.read())
        index = min(len(self.requests), len(self.outcomes)) - 1
        outcome = self.outcomes[index]
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, httpx.Response):
            return httpx.Response(
                outcome.status_code,
                headers=outcome.headers,
                content=outcome.content,
            )
        return outcome(request)

    @property
    def calls(self) -> int:
        return len(self.requests)


@pytest.fixture
def sleep() -> AsyncMock:
    """Create a recording replacement for `asyncio.sleep`.

    Returns:
        AsyncMock: Records each requested wait without waiting.
    """
    return AsyncMock(return_value=None)


@pytest.fixture
def base_url() -> str:
    """Base URL used by client tests."""
    return BASE_URL


@pytest.fixture
def make_handler() -> type[RecordingHandler]:
    """Expose `RecordingHandler` for building scripted transports.

    Example:
        ```python
        handler = make_handler(httpx.Response(500), httpx.Response(200))
        transport = httpx.MockTransport(handler)
        ```
    """
    return RecordingHandler

"""Shared fixtures for client tests.

This module provides common fixtures used across client test modules,
including a factory that builds an HttpClient over a scripted
`httpx.MockTransport`.
"""

# pylint: disable=redefined-outer-name

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest

from httpc.clients.http_client import HttpClient
from httpc.config import ClientConfig


@pytest.fixture
def client_factory(base_url: str, sleep: AsyncMock) -> Callable[..., HttpClient]:
    """Create HttpClient instances backed by a mock transport.

    Returns:
        Callable taking a MockTransport handler plus ClientConfig field
        overrides (and `from_config` keyword options) and returning a client.

    Example:
        ```python
        client = client_factory(handler, retry_enabled=True)
        ```
    """
    option_names = {"default_headers", "quota_store", "http_client"}

    def factory(handler: Callable[[httpx.Request], Any], **overrides: Any) -> HttpClient:
        options = {k: overrides.pop(k) for k in list(overrides) if k in option_names}
        config = ClientConfig(base_url=overrides.pop("base_url", base_url), **overrides)
        return HttpClient.from_config(
            config,
            transport=httpx.MockTransport(handler),
            sleep=sleep,
            **options,
        )

    return factory

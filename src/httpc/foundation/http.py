"""Shared HTTP utilities for transport construction and connection pooling.

This module builds the transport chain used by every `HttpClient`:

```
AsyncOpenTelemetryTransport      (when telemetry is enabled)
  -> RetryTransport              (when retries are enabled)
    -> httpx.AsyncHTTPTransport  (TLS, connection pool)
```

Telemetry sits outermost so one logical request produces one span no
matter how many attempts the retry layer makes.
"""

import asyncio
import ssl
from collections.abc import Awaitable, Callable

import httpx
from opentelemetry import metrics, trace
from opentelemetry.instrumentation.httpx import AsyncOpenTelemetryTransport

from httpc.config import ClientConfig, TLSConfig
from httpc.foundation.retry import RetryTransport

# Connection pool configuration
MAX_CONNECTIONS = 100
MAX_KEEPALIVE_CONNECTIONS = 100


def create_ssl_context(tls: TLSConfig) -> ssl.SSLContext:
    """Create the SSL context for the base transport.

    Args:
        tls: TLS parameters.

    Returns:
        Context verifying against `tls.ca_file` (or the system store),
        presenting the client certificate when one is configured.
    """
    context = ssl.create_default_context(cafile=tls.ca_file)
    if not tls.verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    if tls.cert_file:
        context.load_cert_chain(certfile=tls.cert_file, keyfile=tls.key_file)
    return context


def create_transport(
    config: ClientConfig,
    base: httpx.AsyncBaseTransport | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> httpx.AsyncBaseTransport:
    """Create the transport chain for a client configuration.

    Args:
        config: Client configuration.
        base: Innermost transport. If None, a pooled `AsyncHTTPTransport`
            is built from `config.tls` and `config.timeout`.
        sleep: Coroutine used for retry backoff waits.

    Returns:
        Outermost transport of the chain.

    Example:
        ```python
        from httpc.foundation.http import create_transport

        transport = create_transport(ClientConfig(base_url=url, retry_enabled=True))
        async with httpx.AsyncClient(transport=transport) as client:
            ...
        ```

    Note:
        Idle keep-alive connections expire after `config.timeout` seconds.
    """
    transport = base
    if transport is None:
        transport = httpx.AsyncHTTPTransport(
            verify=create_ssl_context(config.tls),
            limits=httpx.Limits(
                max_connections=MAX_CONNECTIONS,
                max_keepalive_connections=MAX_KEEPALIVE_CONNECTIONS,
                keepalive_expiry=config.timeout,
            ),
        )

    if config.retry_enabled:
        transport = RetryTransport(
            transport,
            retry_limit=config.retry_limit,
            retry_statuses=config.retry_statuses,
            sleep=sleep,
        )

    if config.telemetry_enabled:
        transport = AsyncOpenTelemetryTransport(
            transport,
            tracer_provider=trace.get_tracer_provider(),
            meter_provider=metrics.get_meter_provider(),
        )

    return transport

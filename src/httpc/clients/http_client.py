"""HTTP client class for calling a single upstream API.

This module provides `HttpClient`, which turns a resource path relative to
a fixed base URL into one logical HTTP exchange:

1. Resolve the resource against the base URL.
2. Wait for the rate limiter (when configured), keyed by base URL.
3. Merge default and per-call headers (per-call wins).
4. Send through the transport chain (telemetry, retries, connection pool).
5. Turn a non-2xx final response into `BadStatusCodeError`, carrying up to
   `read_byte_limit` bytes of its body.
6. Optionally decode a 2xx JSON body into a caller-chosen type.

## Usage

```python
from httpc import ClientConfig, HttpClient

config = ClientConfig(base_url="https://api.example.com", retry_enabled=True)

async with HttpClient.from_config(config) as client:
    resp, user = await client.get("/users/42", decode=User)

    resp = await client.post("/events", json={"kind": "signup"})
    await resp.aclose()

    pipe = await client.stream("GET", "/exports/latest")
    async for chunk in pipe:
        sink.write(chunk)
```

## Design

The client class:
- Is async-only; one awaited call is one logical request
- Never returns a non-2xx response object
- Wraps every failure in an `HttpcError` subclass naming the failed phase
- Leaves `asyncio.CancelledError` untouched, so caller deadlines and task
  cancellation stop the request at the next await point
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable, Iterable, Mapping, Sequence
from functools import lru_cache
from typing import Any, TypeVar, overload

import attrs
import httpx
from pydantic import TypeAdapter, ValidationError

from httpc.clients.auth import ClientCredentialsAuth, TokenSource
from httpc.clients.mixins import LoggerMixin
from httpc.config import DEFAULT_READ_BYTE_LIMIT, ClientConfig
from httpc.exceptions import (
    AuthenticationError,
    BadStatusCodeError,
    CopyError,
    DecodeError,
    InvalidResourceError,
    NewRequestError,
    RequestError,
)
from httpc.foundation.http import create_transport
from httpc.foundation.rate_limiter import QuotaStore, RateLimiter, RateLimiterGate

T = TypeVar("T")

HeaderTypes = httpx.Headers | Mapping[str, str] | Sequence[tuple[str, str]]
RequestContent = str | bytes | Iterable[bytes] | AsyncIterable[bytes]

_EOF = None

stream_logger = logging.getLogger("httpc.stream")


@lru_cache(maxsize=256)
def _adapter(tp: Any) -> TypeAdapter[Any]:
    return TypeAdapter(tp)


async def _aiter_chunks(chunks: Iterable[bytes]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


def _async_content(content: RequestContent | None) -> str | bytes | AsyncIterable[bytes] | None:
    # AsyncClient refuses sync streams.
    if content is None or isinstance(content, (str, bytes, AsyncIterable)):
        return content
    return _aiter_chunks(content)


def resolve_resource(base_url: httpx.URL, resource: str) -> httpx.URL:
    """Resolve `resource` against `base_url`.

    Args:
        base_url: Absolute base URL.
        resource: Absolute path (`/users/42?expand=1`) or absolute URL.

    Returns:
        Absolute request URL. An absolute `resource` replaces the base.

    Raises:
        InvalidResourceError: If `resource` is empty, unparsable, a
            relative reference such as `users/42`, or a network-path
            reference such as `//other.example.com/x`.
    """
    if not resource:
        raise InvalidResourceError(resource, "empty resource")
    if resource.startswith("//"):
        raise InvalidResourceError(resource, "network-path references are not allowed")
    try:
        url = httpx.URL(resource)
    except httpx.InvalidURL as e:
        raise InvalidResourceError(resource, str(e)) from e
    if not (url.is_absolute_url or resource.startswith("/")):
        raise InvalidResourceError(resource, "must be an absolute path or URL")
    return base_url.join(url)


@attrs.define(frozen=False, slots=True)
class ResponsePipe:
    """Read side of a streamed response body.

    Chunks arrive from a background relay task through a one-slot queue.
    Iteration ends at end of body, or early (without raising) if the relay
    failed; relay failures are logged by the `httpc.stream` logger.

    Attributes:
        status_code: Status of the (2xx) response.
        headers: Response headers.
    """

    status_code: int
    headers: httpx.Headers
    _queue: asyncio.Queue[bytes | None]
    _relay: asyncio.Task[None]
    _done: bool = attrs.field(init=False, default=False)

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._chunks()

    async def _chunks(self) -> AsyncIterator[bytes]:
        while not self._done:
            chunk = await self._queue.get()
            if chunk is _EOF:
                self._done = True
                return
            yield chunk

    async def read(self) -> bytes:
        """Read the remaining body into memory."""
        return b"".join([chunk async for chunk in self])

    async def aclose(self) -> None:
        """Stop reading; the relay is cancelled and the response closed."""
        self._done = True
        if not self._relay.done():
            self._relay.cancel()
        await asyncio.gather(self._relay, return_exceptions=True)

    async def __aenter__(self) -> ResponsePipe:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()


def _discard_pending(queue: asyncio.Queue[bytes | None]) -> None:
    while not queue.empty():
        queue.get_nowait()


async def _relay(response: httpx.Response, queue: asyncio.Queue[bytes | None]) -> None:
    try:
        async for chunk in response.aiter_bytes():
            await queue.put(chunk)
    except asyncio.CancelledError:
        _discard_pending(queue)
        queue.put_nowait(_EOF)
        raise
    except Exception:
        stream_logger.exception(
            "Error copying response body to stream",
            extra={"url": str(response.url), "status_code": response.status_code},
        )
    finally:
        await response.aclose()
    await queue.put(_EOF)


@attrs.define(frozen=False, slots=True)
class HttpClient(LoggerMixin):
    """Client for one upstream API rooted at `base_url`.

    Prefer `HttpClient.from_config()`; the constructor takes already-built
    collaborators.

    Attributes:
        base_url: Absolute URL every resource is resolved against. Also the
            rate limiter key.
        default_headers: Headers sent on every request.
        read_byte_limit: Maximum bytes of a non-2xx body kept in
            `BadStatusCodeError.payload`.

    Example:
        ```python
        client = HttpClient.from_config(ClientConfig(base_url="https://api.example.com"))
        try:
            resp, body = await client.get("/status", decode=dict[str, str])
        finally:
            await client.aclose()
        ```

    Note:
        This class is not frozen so relay tasks can be tracked for shutdown.
        Configuration is fixed once built.
    """

    base_url: httpx.URL = attrs.field(converter=httpx.URL)
    _http: httpx.AsyncClient
    default_headers: httpx.Headers = attrs.field(factory=httpx.Headers, converter=httpx.Headers)
    read_byte_limit: int = DEFAULT_READ_BYTE_LIMIT
    _gate: RateLimiterGate | None = None
    _token_source: TokenSource | None = None
    _owns_http: bool = True
    _relays: set[asyncio.Task[None]] = attrs.field(init=False, factory=set)

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        default_headers: HeaderTypes | None = None,
        quota_store: QuotaStore | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> HttpClient:
        """Create HttpClient from ClientConfig.

        Args:
            config: Client configuration.
            http_client: Caller-supplied client used as-is instead of the
                built one. Not closed by `aclose()`.
            transport: Base transport wrapped by the retry and telemetry
                layers instead of a pooled `httpx.AsyncHTTPTransport`.
            default_headers: Replaces `config.default_headers`.
            quota_store: Shared quota store. Defaults to an in-memory
                `RateLimiter` when `config.rate_limit` is set.
            sleep: Coroutine used for rate limiter and backoff waits.

        Returns:
            Configured HttpClient instance.

        Raises:
            ValueError: If `http_client` is combined with `transport` or
                with `config.credentials`.
        """
        if http_client is not None and transport is not None:
            raise ValueError("http_client and transport are mutually exclusive")
        if http_client is not None and config.credentials is not None:
            msg = "credentials require the built client; set auth on a custom http_client instead"
            raise ValueError(msg)

        owns_http = http_client is None
        token_source: TokenSource | None = None
        if http_client is None:
            http_client = httpx.AsyncClient(
                transport=create_transport(config, base=transport, sleep=sleep),
                timeout=config.timeout,
            )
            if config.credentials is not None:
                token_source = TokenSource(config.credentials, http_client)
                http_client.auth = ClientCredentialsAuth(token_source)

        if quota_store is None and config.rate_limit is not None:
            quota_store = RateLimiter(config.rate_limit)
        gate = RateLimiterGate(quota_store, sleep=sleep) if quota_store is not None else None

        return cls(
            base_url=config.base_url,
            http=http_client,
            default_headers=default_headers if default_headers is not None else config.default_headers,
            read_byte_limit=config.read_byte_limit,
            gate=gate,
            token_source=token_source,
            owns_http=owns_http,
        )

    async def authenticate(self) -> None:
        """Fetch an OAuth2 access token now instead of on the first request.

        Raises:
            AuthenticationError: If no credentials are configured or the
                token exchange fails.
        """
        if self._token_source is None:
            raise AuthenticationError("no OAuth2 credentials configured")
        await self._token_source.token()

    @overload
    async def request(
        self,
        method: str,
        resource: str,
        content: RequestContent | None = None,
        *,
        json: Any = None,
        headers: HeaderTypes | None = None,
        decode: None = None,
    ) -> httpx.Response: ...

    @overload
    async def request(
        self,
        method: str,
        resource: str,
        content: RequestContent | None = None,
        *,
        json: Any = None,
        headers: HeaderTypes | None = None,
        decode: type[T],
    ) -> tuple[httpx.Response, T]: ...

    async def request(
        self,
        method: str,
        resource: str,
        content: RequestContent | None = None,
        *,
        json: Any = None,
        headers: HeaderTypes | None = None,
        decode: type[Any] | None = None,
    ) -> httpx.Response | tuple[httpx.Response, Any]:
        """Perform one logical request.

        Args:
            method: HTTP method.
            resource: Absolute path or absolute URL.
            content: Raw request body (bytes, str or an async iterable of
                bytes).
            json: JSON-serializable request body.
            headers: Per-call headers; override default headers with the
                same name.
            decode: Type the 2xx JSON body is validated into.

        Returns:
            The open 2xx response when `decode` is None; the caller must
            read or close it. Otherwise `(response, value)` with the
            response already closed.

        Raises:
            InvalidResourceError: If `resource` cannot be resolved.
            RateLimitError: If the quota store fails.
            NewRequestError: If the request cannot be built.
            CopyError: If a body cannot be copied.
            RequestError: If the exchange fails at the transport level.
            BadStatusCodeError: If the final status is not 2xx.
            DecodeError: If the body does not validate into `decode`.
            AuthenticationError: If the OAuth2 token exchange fails.
        """
        response = await self._execute(method, resource, content=content, json=json, headers=headers)
        if decode is None:
            return response
        return response, await self._decode(response, decode)

    async def get(
        self,
        resource: str,
        *,
        headers: HeaderTypes | None = None,
        decode: type[Any] | None = None,
    ) -> Any:
        """GET `resource`. See `request()`."""
        return await self.request("GET", resource, headers=headers, decode=decode)

    async def post(
        self,
        resource: str,
        content: RequestContent | None = None,
        *,
        json: Any = None,
        headers: HeaderTypes | None = None,
        decode: type[Any] | None = None,
    ) -> Any:
        """POST to `resource`. See `request()`."""
        return await self.request("POST", resource, content, json=json, headers=headers, decode=decode)

    async def put(
        self,
        resource: str,
        content: RequestContent | None = None,
        *,
        json: Any = None,
        headers: HeaderTypes | None = None,
        decode: type[Any] | None = None,
    ) -> Any:
        """PUT to `resource`. See `request()`."""
        return await self.request("PUT", resource, content, json=json, headers=headers, decode=decode)

    async def patch(
        self,
        resource: str,
        content: RequestContent | None = None,
        *,
        json: Any = None,
        headers: HeaderTypes | None = None,
        decode: type[Any] | None = None,
    ) -> Any:
        """PATCH `resource`. See `request()`."""
        return await self.request("PATCH", resource, content, json=json, headers=headers, decode=decode)

    async def delete(
        self,
        resource: str,
        content: RequestContent | None = None,
        *,
        json: Any = None,
        headers: HeaderTypes | None = None,
        decode: type[Any] | None = None,
    ) -> Any:
        """DELETE `resource`. See `request()`."""
        return await self.request("DELETE", resource, content, json=json, headers=headers, decode=decode)

    async def stream(
        self,
        method: str,
        resource: str,
        content: RequestContent | None = None,
        *,
        json: Any = None,
        headers: HeaderTypes | None = None,
    ) -> ResponsePipe:
        """Perform one logical request and stream the 2xx body.

        Errors up to and including the status check are raised exactly as
        in `request()`. After that the body is copied in the background;
        a copy failure is logged and the reader sees end of stream.

        Returns:
            Pipe yielding the body in chunks. Close it to stop early.
        """
        response = await self._execute(method, resource, content=content, json=json, headers=headers)

        queue: asyncio.Queue[bytes | None] = asyncio.Queue(maxsize=1)
        task = asyncio.create_task(_relay(response, queue))
        self._relays.add(task)
        task.add_done_callback(self._relays.discard)
        return ResponsePipe(response.status_code, response.headers, queue, task)

    async def _execute(
        self,
        method: str,
        resource: str,
        *,
        content: RequestContent | None,
        json: Any,
        headers: HeaderTypes | None,
    ) -> httpx.Response:
        url = resolve_resource(self.base_url, resource)

        if self._gate is not None:
            await self._gate.wait(str(self.base_url))

        merged = httpx.Headers(self.default_headers)
        if headers is not None:
            merged.update(headers)

        try:
            request = self._http.build_request(
                method, url, content=_async_content(content), json=json, headers=merged
            )
        except (TypeError, ValueError, httpx.InvalidURL) as e:
            msg = f"error creating {method} request for {url}: {e}"
            raise NewRequestError(msg) from e

        self._logger.debug("Sending HTTP request", extra={"method": request.method, "url": str(url)})
        try:
            response = await self._http.send(request, stream=True)
        except httpx.HTTPError as e:
            raise RequestError(request.method, str(url), str(e)) from e

        if not response.is_success:
            payload = await self._read_error_payload(response)
            raise BadStatusCodeError(response.status_code, payload)

        return response

    async def _read_error_payload(self, response: httpx.Response) -> bytes:
        payload = bytearray()
        try:
            async for chunk in response.aiter_bytes():
                payload += chunk[: self.read_byte_limit - len(payload)]
                if len(payload) >= self.read_byte_limit:
                    break
        except (httpx.HTTPError, httpx.StreamError) as e:
            msg = f"error reading body of {response.status_code} response: {e}"
            raise CopyError(msg) from e
        finally:
            await response.aclose()
        return bytes(payload)

    async def _decode(self, response: httpx.Response, tp: type[T]) -> T:
        try:
            body = await response.aread()
            value: T = _adapter(tp).validate_json(body)
        except (httpx.HTTPError, httpx.StreamError, ValidationError) as e:
            msg = f"error decoding response body into {getattr(tp, '__name__', tp)}: {e}"
            raise DecodeError(msg) from e
        finally:
            await response.aclose()
        return value

    async def aclose(self) -> None:
        """Stop running stream relays and close the owned HTTP client."""
        for task in list(self._relays):
            task.cancel()
        if self._relays:
            await asyncio.gather(*self._relays, return_exceptions=True)
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> HttpClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

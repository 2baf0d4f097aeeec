"""Exception hierarchy for the HTTP client.

Every error raised by the request pipeline inherits from `HttpcError` so
callers can catch the whole family at once, while each subclass names the
phase that failed.

## Exception Hierarchy

- `InvalidResourceError`: The resource argument is not a valid absolute
  path or URL. Raised before anything is sent.
- `NewRequestError`: The outbound request could not be built.
- `RateLimitError`: The rate limiter's quota store failed.
- `CopyError`: A body could not be copied (request body capture for
  retries, or the payload of an error response).
- `RequestError`: The transport failed to complete the exchange.
- `BadStatusCodeError`: The final response status was not 2xx.
- `DecodeError`: A 2xx body could not be decoded into the target type.
- `AuthenticationError`: The OAuth2 token exchange failed.

## Usage

```python
from httpc.exceptions import BadStatusCodeError, HttpcError

try:
    resp = await client.get("/resource")
except BadStatusCodeError as e:
    log.warning("upstream refused", extra={"status": e.status_code})
except HttpcError:
    raise
```

Wrapped errors always chain the underlying exception (`raise ... from e`),
so `__cause__` holds the underlying httpx, pydantic or store error.
"""


class HttpcError(Exception):
    """Base exception class for all client errors."""


class InvalidResourceError(HttpcError):
    """Exception raised when a resource cannot be parsed as a request URI.

    This is a caller bug and is never retried.

    Attributes:
        resource: The rejected resource string.
    """

    def __init__(self, resource: str, reason: str) -> None:
        self.resource = resource
        super().__init__(f"error parsing resource {resource!r}: {reason}")


class NewRequestError(HttpcError):
    """Exception raised when the outbound request cannot be constructed."""


class RateLimitError(HttpcError):
    """Exception raised when the rate limiter's quota store fails.

    Attributes:
        key: Quota key being checked (the client's base URL).
    """

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        super().__init__(f"error checking rate limit for {key}: {reason}")


class CopyError(HttpcError):
    """Exception raised when a request or response body cannot be copied."""


class RequestError(HttpcError):
    """Exception raised when the transport fails to complete a request.

    Attributes:
        method: HTTP method of the failed request.
        url: Absolute URL of the failed request.
    """

    def __init__(self, method: str, url: str, reason: str) -> None:
        self.method = method
        self.url = url
        super().__init__(f"error making HTTP request {method} {url}: {reason}")


class BadStatusCodeError(HttpcError):
    """Exception raised when the final response status is not 2xx.

    The response body has already been read (up to the configured byte
    limit) and closed.

    Attributes:
        status_code: HTTP status of the final response.
        payload: Response body, truncated to the read byte limit.
    """

    def __init__(self, status_code: int, payload: bytes) -> None:
        self.status_code = status_code
        self.payload = payload
        super().__init__(f"received bad status code {status_code}: {self.text}")

    @property
    def text(self) -> str:
        """Payload decoded as UTF-8, with undecodable bytes replaced."""
        return self.payload.decode("utf-8", errors="replace")


class DecodeError(HttpcError):
    """Exception raised when a successful response body cannot be decoded.

    Never retried: the HTTP exchange itself succeeded.
    """


class AuthenticationError(HttpcError):
    """Exception raised when the OAuth2 client-credentials exchange fails."""

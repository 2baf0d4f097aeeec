"""OAuth2 client-credentials authentication for httpx.

`TokenSource` obtains and caches access tokens from the authorization
server; `ClientCredentialsAuth` is an `httpx.Auth` flow that stamps every
outbound request with `Authorization: Bearer <token>`.

## Usage

```python
http = httpx.AsyncClient(transport=transport)
source = TokenSource(credentials, http)
http.auth = ClientCredentialsAuth(source)
```

The token request goes through the same `httpx.AsyncClient` (and so the
same retrying, instrumented transport) as regular requests, authenticated
with HTTP Basic credentials instead of the bearer flow.

A token is fetched lazily on first use and refreshed once it is within
`EXPIRY_LEEWAY` seconds of expiring. Concurrent requests share a single
in-flight fetch.
"""

import asyncio
import time
from collections.abc import AsyncGenerator, Callable

import attrs
import httpx
from pydantic import BaseModel, ValidationError

from httpc.clients.mixins import LoggerMixin
from httpc.config import CredentialsConfig
from httpc.exceptions import AuthenticationError

# Seconds before expiry at which a token is treated as expired
EXPIRY_LEEWAY = 10


class TokenResponse(BaseModel):
    """Successful token endpoint response (RFC 6749 section 5.1)."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int | None = None


@attrs.define(frozen=False, slots=True)
class TokenSource(LoggerMixin):
    """Caching client-credentials token source.

    Attributes:
        credentials: OAuth2 client settings.
        http: Client used to call the token endpoint.
        clock: Monotonic clock, injectable for tests.
    """

    credentials: CredentialsConfig
    http: httpx.AsyncClient
    clock: Callable[[], float] = time.monotonic
    _token: TokenResponse | None = attrs.field(init=False, default=None)
    _expires_at: float | None = attrs.field(init=False, default=None)
    _lock: asyncio.Lock = attrs.field(init=False, factory=asyncio.Lock)

    def valid(self) -> bool:
        """Check whether the cached token can still be used."""
        if self._token is None:
            return False
        if self._expires_at is None:
            return True
        return self.clock() < self._expires_at - EXPIRY_LEEWAY

    async def token(self) -> str:
        """Return a valid access token, fetching a new one if needed.

        Raises:
            AuthenticationError: If the token endpoint fails or returns an
                unusable response.
        """
        cached = self._cached()
        if cached is not None:
            return cached

        async with self._lock:
            cached = self._cached()
            if cached is not None:
                return cached
            token = await self._fetch()
            return token.access_token

    def _cached(self) -> str | None:
        if self._token is None or not self.valid():
            return None
        return self._token.access_token

    async def _fetch(self) -> TokenResponse:
        data = {"grant_type": "client_credentials"}
        if self.credentials.scopes:
            data["scope"] = " ".join(self.credentials.scopes)

        endpoint = self.credentials.token_endpoint
        auth = httpx.BasicAuth(
            self.credentials.client_id,
            self.credentials.client_secret.get_secret_value(),
        )
        try:
            resp = await self.http.post(
                endpoint,
                data=data,
                auth=auth,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            msg = f"token request to {endpoint} failed: {e}"
            raise AuthenticationError(msg) from e

        if not resp.is_success:
            msg = f"token endpoint {endpoint} returned {resp.status_code}: {resp.text[:512]}"
            raise AuthenticationError(msg)

        try:
            token = TokenResponse.model_validate_json(resp.content)
        except ValidationError as e:
            msg = f"invalid token response from {endpoint}: {e}"
            raise AuthenticationError(msg) from e

        if token.token_type.lower() != "bearer":
            msg = f"unsupported token type {token.token_type!r} from {endpoint}"
            raise AuthenticationError(msg)

        self._token = token
        self._expires_at = self.clock() + token.expires_in if token.expires_in else None
        self._logger.info(
            "Fetched OAuth2 access token",
            extra={"token_endpoint": endpoint, "expires_in": token.expires_in},
        )
        return token


class ClientCredentialsAuth(httpx.Auth):
    """Bearer-token auth flow backed by a `TokenSource`.

    Only the async flow is supported; the client is async-only.
    """

    def __init__(self, source: TokenSource) -> None:
        self.source = source

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        token = await self.source.token()
        request.headers["Authorization"] = f"Bearer {token}"
        yield request

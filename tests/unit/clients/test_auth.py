"""Unit tests for clients.auth module.

This file tests the OAuth2 client-credentials TokenSource and the
ClientCredentialsAuth flow, on their own and wired into HttpClient.

# Test Coverage

The tests cover:
  - Token Fetch: Grant form, Basic client authentication, scopes, endpoint
    resolution
  - Caching: Token reuse, refresh near expiry, single fetch under concurrency
  - Errors: Non-2xx token endpoint, malformed body, unsupported token type,
    transport failures
  - Integration: Bearer header on client requests, eager authenticate()

# Running Tests

Run with: pytest tests/unit/clients/test_auth.py
"""

import asyncio
import base64
import json
from collections.abc import Callable
from typing import Any
from urllib.parse import parse_qs

import httpx
import pytest
from pydantic import SecretStr

from httpc.clients.auth import ClientCredentialsAuth, TokenSource
from httpc.config import CredentialsConfig
from httpc.exceptions import AuthenticationError

TOKEN_URL = "https://auth.example.com"


def _credentials(**overrides: Any) -> CredentialsConfig:
    fields: dict[str, Any] = {
        "client_id": "svc",
        "client_secret": SecretStr("s3cret"),
        "token_url": TOKEN_URL,
        "token_resource": "/oauth2/token",
        "scopes": ("read", "write"),
    }
    fields.update(overrides)
    return CredentialsConfig(**fields)


def _token(access_token: str = "tok-1", expires_in: int | None = 3600, token_type: str = "Bearer") -> httpx.Response:
    body: dict[str, Any] = {"access_token": access_token, "token_type": token_type}
    if expires_in is not None:
        body["expires_in"] = expires_in
    return httpx.Response(200, json=body)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


# =============================================================================
# TokenSource Tests
# =============================================================================


class TestTokenSource:
    """Test suite for TokenSource class."""

    @pytest.mark.asyncio
    async def test_fetches_with_client_credentials_grant(self, make_handler: Any) -> None:
        """Test that the token request follows the client-credentials grant.

        **Why this test is important:**
          - Authorization servers reject malformed grant requests
          - The client secret must travel only in the Authorization header

        **What it tests:**
          - POST to the resolved token endpoint
          - Form body with grant_type and space separated scope
          - HTTP Basic client authentication
          - The access token is returned
        """
        handler = make_handler(_token("tok-1"))
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            source = TokenSource(_credentials(), http)

            token = await source.token()

        assert token == "tok-1"
        request = handler.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://auth.example.com/oauth2/token"
        form = parse_qs(handler.bodies[0].decode())
        assert form == {"grant_type": ["client_credentials"], "scope": ["read write"]}
        expected = base64.b64encode(b"svc:s3cret").decode()
        assert request.headers["Authorization"] == f"Basic {expected}"

    @pytest.mark.asyncio
    async def test_omits_scope_when_unset(self, make_handler: Any) -> None:
        """Test that no scope parameter is sent without configured scopes."""
        handler = make_handler(_token())
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            await TokenSource(_credentials(scopes=()), http).token()

        assert parse_qs(handler.bodies[0].decode()) == {"grant_type": ["client_credentials"]}

    @pytest.mark.asyncio
    async def test_reuses_valid_token(self, make_handler: Any) -> None:
        """Test that a cached token is reused until it nears expiry.

        **Why this test is important:**
          - Fetching a token per request would double upstream latency

        **What it tests:**
          - Two calls within the lifetime make one fetch
          - A call within the leeway window fetches a new token
        """
        handler = make_handler(_token("tok-1", expires_in=60), _token("tok-2", expires_in=60))
        clock = FakeClock()
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            source = TokenSource(_credentials(), http, clock=clock)

            first = await source.token()
            clock.now = 30
            second = await source.token()
            clock.now = 55
            third = await source.token()

        assert (first, second, third) == ("tok-1", "tok-1", "tok-2")
        assert handler.calls == 2

    @pytest.mark.asyncio
    async def test_token_without_expiry_never_refreshed(self, make_handler: Any) -> None:
        """Test that a token without expires_in is cached indefinitely."""
        handler = make_handler(_token(expires_in=None))
        clock = FakeClock()
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            source = TokenSource(_credentials(), http, clock=clock)
            await source.token()
            clock.now = 1e9
            await source.token()

        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_fetch(self) -> None:
        """Test that concurrent first requests trigger a single token fetch.

        **Why this test is important:**
          - A burst of requests at startup must not stampede the auth server

        **What it tests:**
          - Ten concurrent token() calls make one token request
        """
        calls = 0

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return _token()

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            source = TokenSource(_credentials(), http)
            tokens = await asyncio.gather(*(source.token() for _ in range(10)))

        assert set(tokens) == {"tok-1"}
        assert calls == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("response", "message"),
        [
            (httpx.Response(401, json={"error": "invalid_client"}), "returned 401"),
            (httpx.Response(200, content=b"not json"), "invalid token response"),
            (httpx.Response(200, json={"token_type": "Bearer"}), "invalid token response"),
            (httpx.Response(200, json={"access_token": "t", "token_type": "mac"}), "unsupported token type"),
        ],
    )
    async def test_bad_token_response_raises(self, make_handler: Any, response: httpx.Response, message: str) -> None:
        """Test that unusable token endpoint responses raise AuthenticationError."""
        handler = make_handler(response)
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            source = TokenSource(_credentials(), http)

            with pytest.raises(AuthenticationError, match=message):
                await source.token()

        assert source.valid() is False

    @pytest.mark.asyncio
    async def test_transport_failure_raises(self, make_handler: Any) -> None:
        """Test that a network failure during the exchange is wrapped."""
        handler = make_handler(httpx.ConnectError("refused"))
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            source = TokenSource(_credentials(), http)

            with pytest.raises(AuthenticationError, match="refused") as exc_info:
                await source.token()

        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)


# =============================================================================
# ClientCredentialsAuth Tests
# =============================================================================


class TestClientCredentialsAuth:
    """Test suite for ClientCredentialsAuth and its HttpClient wiring."""

    @staticmethod
    def _routes(api: Callable[[httpx.Request], httpx.Response]) -> Callable[[httpx.Request], httpx.Response]:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "auth.example.com":
                return _token("tok-1")
            return api(request)

        return handler

    @pytest.mark.asyncio
    async def test_attaches_bearer_token(self) -> None:
        """Test that the flow stamps the Authorization header."""
        seen: list[httpx.Request] = []

        def api(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        async with httpx.AsyncClient(transport=httpx.MockTransport(self._routes(api))) as http:
            http.auth = ClientCredentialsAuth(TokenSource(_credentials(), http))
            await http.get("https://api.example.com/items")

        assert seen[0].headers["Authorization"] == "Bearer tok-1"

    @pytest.mark.asyncio
    async def test_http_client_sends_bearer_token(self, client_factory: Any) -> None:
        """Test that HttpClient built with credentials authenticates requests.

        **Why this test is important:**
          - Credentials in config are the only setup a caller performs
          - The token request must not itself carry a bearer token

        **What it tests:**
          - authenticate() fetches the token eagerly
          - API requests carry the bearer token
          - The token request uses Basic authentication
        """
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.url.host == "auth.example.com":
                return _token("tok-1")
            return httpx.Response(200, json={"ok": True})

        client = client_factory(handler, credentials=_credentials())
        async with client:
            await client.authenticate()
            resp, body = await client.get("/items", decode=dict[str, bool])

        assert body == {"ok": True}
        assert seen[0].headers["Authorization"].startswith("Basic ")
        assert seen[1].headers["Authorization"] == "Bearer tok-1"
        assert json.loads(resp.content) == {"ok": True}

    @pytest.mark.asyncio
    async def test_authenticate_without_credentials_raises(self, client_factory: Any) -> None:
        """Test that authenticate() fails clearly when no credentials exist."""
        client = client_factory(lambda request: httpx.Response(200))

        async with client:
            with pytest.raises(AuthenticationError, match="no OAuth2 credentials configured"):
                await client.authenticate()

    @pytest.mark.asyncio
    async def test_token_failure_surfaces_from_request(self, client_factory: Any) -> None:
        """Test that a failing token exchange fails the API request."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "auth.example.com":
                return httpx.Response(400, json={"error": "invalid_scope"})
            return httpx.Response(200)

        client = client_factory(handler, credentials=_credentials())
        async with client:
            with pytest.raises(AuthenticationError, match="returned 400"):
                await client.get("/items")


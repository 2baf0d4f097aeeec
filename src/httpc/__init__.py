"""Outbound HTTP client for a single upstream API.

`HttpClient` resolves resources against a base URL, throttles per base URL,
retries failed attempts with exponential backoff, and turns non-2xx
responses into `BadStatusCodeError`.

```python
from httpc import ClientConfig, HttpClient

async with HttpClient.from_config(ClientConfig.from_env()) as client:
    resp, items = await client.get("/items", decode=list[Item])
```
"""

from httpc.clients import HttpClient, ResponsePipe
from httpc.config import ClientConfig, CredentialsConfig, TLSConfig
from httpc.exceptions import (
    AuthenticationError,
    BadStatusCodeError,
    CopyError,
    DecodeError,
    HttpcError,
    InvalidResourceError,
    NewRequestError,
    RateLimitError,
    RequestError,
)

__all__ = [
    "AuthenticationError",
    "BadStatusCodeError",
    "ClientConfig",
    "CopyError",
    "CredentialsConfig",
    "DecodeError",
    "HttpClient",
    "HttpcError",
    "InvalidResourceError",
    "NewRequestError",
    "RateLimitError",
    "RequestError",
    "ResponsePipe",
    "TLSConfig",
]

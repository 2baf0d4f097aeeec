"""HTTP client and authentication classes."""

from .auth import ClientCredentialsAuth, TokenSource
from .http_client import HttpClient, ResponsePipe, resolve_resource

__all__ = [
    "ClientCredentialsAuth",
    "HttpClient",
    "ResponsePipe",
    "TokenSource",
    "resolve_resource",
]

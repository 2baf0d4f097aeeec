"""Configuration management for the HTTP client.

This module provides the immutable configuration consumed by
`HttpClient.from_config()`. Models are Pydantic models frozen after
construction, so a client's configuration can never change once it is
built. Every model exposes a `from_env()` classmethod reading environment
variables with sensible defaults.

## Environment Variables

All variables use the `HTTPC_` prefix (overridable via `from_env(prefix=...)`).

**Target**
- `HTTPC_BASE_URL`: Absolute base URL every resource is resolved against
  (required).
- `HTTPC_TIMEOUT`: Request timeout in seconds (default: `10`).
- `HTTPC_DEFAULT_HEADERS`: JSON object of headers sent on every request
  (default: `{}`).
- `HTTPC_READ_BYTE_LIMIT`: Maximum bytes of a non-2xx body kept in the
  error payload (default: `15728640` = 15 MiB).

**TLS**
- `HTTPC_TLS_VERIFY`: Verify server certificates (default: `true`).
- `HTTPC_TLS_CA_FILE`: Custom CA bundle path.
- `HTTPC_TLS_CERT_FILE` / `HTTPC_TLS_KEY_FILE`: Client certificate and key.

**Resilience**
- `HTTPC_RETRY_ENABLED`: Retry failed attempts (default: `false`).
- `HTTPC_RETRY_LIMIT`: Retries after the first attempt (default: `3`).
- `HTTPC_RETRY_STATUSES`: Comma separated statuses worth retrying. Unset
  means every non-2xx status is retried.
- `HTTPC_RATE_LIMIT`: Requests per minute per base URL. Unset disables
  throttling.

**Telemetry**
- `HTTPC_TELEMETRY_ENABLED`: Wrap the transport with OpenTelemetry
  instrumentation (default: `false`).

**OAuth2 client credentials**
- `HTTPC_OAUTH_CLIENT_ID`, `HTTPC_OAUTH_CLIENT_SECRET`,
  `HTTPC_OAUTH_TOKEN_URL`: Enable the client-credentials flow when all
  three are set.
- `HTTPC_OAUTH_TOKEN_RESOURCE`: Optional path resolved against the token URL.
- `HTTPC_OAUTH_SCOPES`: Comma separated scopes.

## Usage

```python
from httpc.config import ClientConfig

config = ClientConfig(base_url="https://api.example.com", retry_enabled=True)
config = ClientConfig.from_env()
```
"""

import json
import os
from typing import Any

import httpx
from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import SettingsConfigDict

KIB = 1 << 10
MIB = 1 << 20
GIB = 1 << 30

DEFAULT_TIMEOUT = 10
DEFAULT_READ_BYTE_LIMIT = 15 * MIB
DEFAULT_RETRY_LIMIT = 3

ENV_PREFIX = "HTTPC"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> list[str]:
    value = os.getenv(name, "")
    return [item.strip() for item in value.split(",") if item.strip()]


def _validate_absolute_url(value: str, field_name: str) -> str:
    try:
        url = httpx.URL(value)
    except httpx.InvalidURL as e:
        msg = f"{field_name} is not a valid URL: {e}"
        raise ValueError(msg) from e
    if url.scheme not in ("http", "https") or not url.host:
        msg = f"{field_name} must be an absolute http(s) URL, got '{value}'"
        raise ValueError(msg)
    return value


class TLSConfig(BaseModel):
    """TLS parameters for the base transport.

    Attributes:
        verify: Whether server certificates are verified. Default: True.
        ca_file: Path to a PEM bundle used instead of the system CAs.
        cert_file: Path to a client certificate (PEM) for mutual TLS.
        key_file: Path to the private key for `cert_file`. Only valid
            together with `cert_file`.
    """

    verify: bool = True
    ca_file: str | None = None
    cert_file: str | None = None
    key_file: str | None = None

    model_config = SettingsConfigDict(frozen=True)

    @model_validator(mode="after")
    def _key_requires_cert(self) -> "TLSConfig":
        if self.key_file and not self.cert_file:
            raise ValueError("key_file requires cert_file")
        return self

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> "TLSConfig":
        """Create TLSConfig from `{prefix}_TLS_*` environment variables."""
        return cls(
            verify=_env_bool(f"{prefix}_TLS_VERIFY", True),
            ca_file=os.getenv(f"{prefix}_TLS_CA_FILE") or None,
            cert_file=os.getenv(f"{prefix}_TLS_CERT_FILE") or None,
            key_file=os.getenv(f"{prefix}_TLS_KEY_FILE") or None,
        )


class CredentialsConfig(BaseModel):
    """OAuth2 client-credentials settings.

    Attributes:
        client_id: OAuth2 client identifier.
        client_secret: OAuth2 client secret. Never logged.
        token_url: Absolute URL of the authorization server.
        token_resource: Optional path of the token endpoint, resolved
            against `token_url`. When unset `token_url` is the endpoint.
        scopes: Scopes requested with the token.
    """

    client_id: str = Field(min_length=1)
    client_secret: SecretStr
    token_url: str
    token_resource: str | None = None
    scopes: tuple[str, ...] = ()

    model_config = SettingsConfigDict(frozen=True)

    @field_validator("token_url")
    @classmethod
    def _check_token_url(cls, value: str) -> str:
        return _validate_absolute_url(value, "token_url")

    @property
    def token_endpoint(self) -> str:
        """Absolute token endpoint after resolving `token_resource`."""
        if not self.token_resource:
            return self.token_url
        return str(httpx.URL(self.token_url).join(self.token_resource))

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> "CredentialsConfig | None":
        """Create CredentialsConfig from environment variables.

        Returns:
            Configured CredentialsConfig, or None when the client id, secret
            and token URL are not all set.
        """
        client_id = os.getenv(f"{prefix}_OAUTH_CLIENT_ID")
        client_secret = os.getenv(f"{prefix}_OAUTH_CLIENT_SECRET")
        token_url = os.getenv(f"{prefix}_OAUTH_TOKEN_URL")
        if not (client_id and client_secret and token_url):
            return None
        return cls(
            client_id=client_id,
            client_secret=SecretStr(client_secret),
            token_url=token_url,
            token_resource=os.getenv(f"{prefix}_OAUTH_TOKEN_RESOURCE") or None,
            scopes=tuple(_env_list(f"{prefix}_OAUTH_SCOPES")),
        )


class ClientConfig(BaseModel):
    """Immutable configuration for `HttpClient`.

    Attributes:
        base_url: Absolute URL all resources are resolved against. Also the
            rate limiter key, so every path under one host shares a quota.
        timeout: Request timeout in seconds. Default: 10.
        tls: TLS parameters for the base transport.
        telemetry_enabled: Wrap the transport with OpenTelemetry
            instrumentation. Default: False.
        retry_enabled: Retry failed attempts with exponential backoff.
            Default: False.
        retry_limit: Retries after the first attempt. Default: 3.
        retry_statuses: Statuses worth retrying. None (default) retries
            every non-2xx status.
        rate_limit: Requests per minute per base URL. None disables
            throttling.
        default_headers: Headers sent on every request. Per-call headers
            win on key collision.
        read_byte_limit: Maximum bytes of a non-2xx body kept in
            `BadStatusCodeError.payload`. Default: 15 MiB.
        credentials: OAuth2 client-credentials settings. None disables
            bearer authentication.
    """

    base_url: str
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)
    tls: TLSConfig = Field(default_factory=TLSConfig)
    telemetry_enabled: bool = False
    retry_enabled: bool = False
    retry_limit: int = Field(default=DEFAULT_RETRY_LIMIT, ge=1)
    retry_statuses: frozenset[int] | None = None
    rate_limit: int | None = Field(default=None, gt=0)
    default_headers: dict[str, str] = Field(default_factory=dict)
    read_byte_limit: int = Field(default=DEFAULT_READ_BYTE_LIMIT, gt=0)
    credentials: CredentialsConfig | None = None

    model_config = SettingsConfigDict(frozen=True)

    @field_validator("base_url")
    @classmethod
    def _check_base_url(cls, value: str) -> str:
        return _validate_absolute_url(value, "base_url")

    @field_validator("retry_statuses")
    @classmethod
    def _check_retry_statuses(cls, value: frozenset[int] | None) -> frozenset[int] | None:
        if value is None:
            return None
        invalid = sorted(s for s in value if not 300 <= s <= 599)
        if invalid:
            msg = f"retry_statuses must be non-2xx HTTP statuses, got {invalid}"
            raise ValueError(msg)
        return value

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> "ClientConfig":
        """Create ClientConfig from environment variables.

        Args:
            prefix: Environment variable prefix. Default: "HTTPC".

        Returns:
            Configured ClientConfig instance.

        Raises:
            ValueError: If `{prefix}_BASE_URL` is missing or a variable
                cannot be parsed.
        """
        base_url = os.getenv(f"{prefix}_BASE_URL")
        if not base_url:
            msg = f"{prefix}_BASE_URL is required"
            raise ValueError(msg)

        raw_headers = os.getenv(f"{prefix}_DEFAULT_HEADERS")
        default_headers: dict[str, Any] = json.loads(raw_headers) if raw_headers else {}
        if not isinstance(default_headers, dict):
            msg = f"{prefix}_DEFAULT_HEADERS must be a JSON object"
            raise ValueError(msg)

        statuses = _env_list(f"{prefix}_RETRY_STATUSES")
        rate_limit = os.getenv(f"{prefix}_RATE_LIMIT")

        return cls(
            base_url=base_url,
            timeout=float(os.getenv(f"{prefix}_TIMEOUT", str(DEFAULT_TIMEOUT))),
            tls=TLSConfig.from_env(prefix),
            telemetry_enabled=_env_bool(f"{prefix}_TELEMETRY_ENABLED", False),
            retry_enabled=_env_bool(f"{prefix}_RETRY_ENABLED", False),
            retry_limit=int(os.getenv(f"{prefix}_RETRY_LIMIT", str(DEFAULT_RETRY_LIMIT))),
            retry_statuses=frozenset(int(s) for s in statuses) if statuses else None,
            rate_limit=int(rate_limit) if rate_limit else None,
            default_headers={str(k): str(v) for k, v in default_headers.items()},
            read_byte_limit=int(os.getenv(f"{prefix}_READ_BYTE_LIMIT", str(DEFAULT_READ_BYTE_LIMIT))),
            credentials=CredentialsConfig.from_env(prefix),
        )

"""Data models for metabase-client.

All models use Pydantic v2. Configuration models are frozen so a client's
configuration can be shared by concurrent calls without copying.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator

from metabase_client import __version__
from metabase_client.auth import Auth, NoAuth


DEFAULT_BODY_SNIPPET_LIMIT = 4 * 1024


# =============================================================================
# Retry Models
# =============================================================================


class Jitter(str, Enum):
    """How a computed backoff delay is randomized."""

    NONE = "none"
    FULL = "full"  # Uniform in [0, delay]


class RetryPolicy(BaseModel):
    """Retry budget and backoff shape for one client.

    Durations are seconds.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    max_retries: int = Field(default=3, ge=0, description="Retries after the first attempt")
    base_delay: float = Field(default=0.2, ge=0, description="Delay before the first retry")
    max_delay: float = Field(default=2.0, ge=0, description="Upper bound for any computed delay")
    jitter: Jitter = Field(default=Jitter.FULL, description="Delay randomization")

    @classmethod
    def disabled(cls) -> RetryPolicy:
        return cls(max_retries=0, base_delay=0.0, max_delay=0.0, jitter=Jitter.NONE)

    @classmethod
    def conservative(cls) -> RetryPolicy:
        return cls(max_retries=3, base_delay=0.2, max_delay=2.0, jitter=Jitter.FULL)


# =============================================================================
# Per-call Models
# =============================================================================


class RequestOptions(BaseModel):
    """Per-call overrides. Create one per call."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    timeout: float | None = Field(
        default=None, gt=0, description="Replaces the client request timeout for this call"
    )
    idempotency_key: str | None = Field(
        default=None,
        description="Sent as Idempotency-Key; makes a POST eligible for retry",
    )


# =============================================================================
# Client Configuration Models
# =============================================================================


class TimeoutConfig(BaseModel):
    """Client-wide timeouts in seconds."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    connect: float = Field(default=10.0, gt=0, description="TCP/TLS connect timeout")
    request: float = Field(
        default=30.0, gt=0, description="Overall per-call timeout, retry waits included"
    )
    read: float = Field(default=30.0, gt=0, description="Read timeout (blocking client only)")


class BodySnippetConfig(BaseModel):
    """Controls the response-body prefix attached to errors."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    capture: bool = Field(default=True, description="Attach a body snippet to errors")
    limit: int = Field(default=DEFAULT_BODY_SNIPPET_LIMIT, ge=0, description="Snippet byte limit")
    redact: bool = Field(default=True, description="Redact snippets that look sensitive")


class TlsConfig(BaseModel):
    """Server verification and client certificate settings."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    verify_ssl: bool = Field(default=True, description="Verify the server certificate")
    ca_bundle: str | None = Field(default=None, description="Path to a CA bundle")
    cert: str | None = Field(default=None, description="Client certificate (mTLS)")
    key: str | None = Field(default=None, description="Client private key (mTLS)")
    key_password: SecretStr | None = Field(default=None, description="Password for the key")
    ciphers: str | None = Field(default=None, description="OpenSSL cipher string")

    @model_validator(mode="after")
    def check_cert_pair(self) -> Self:
        if (self.cert is None) != (self.key is None):
            raise ValueError("cert and key must be given together")
        return self


class ClientConfig(BaseModel):
    """Read-only configuration shared by every call a client makes."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    body_snippet: BodySnippetConfig = Field(default_factory=BodySnippetConfig)
    retry: RetryPolicy = Field(default_factory=RetryPolicy.conservative)
    tls: TlsConfig = Field(default_factory=TlsConfig)
    user_agent: str = Field(
        default=f"metabase-client/{__version__}", min_length=1, description="User-Agent header"
    )
    headers: dict[str, str] = Field(
        default_factory=dict, description="Extra headers sent with every request"
    )


class ClientProfile(ClientConfig):
    """A complete client definition, as loaded from a YAML profile."""

    base_url: str = Field(description="Metabase base URL, e.g. https://metabase.example.com")
    auth: Auth = Field(default_factory=NoAuth, description="Authentication mode")

    def client_config(self) -> ClientConfig:
        """The profile without base_url and auth."""
        return ClientConfig(**{name: getattr(self, name) for name in ClientConfig.model_fields})


# =============================================================================
# Sample Endpoint Models
# =============================================================================


class HealthResponse(BaseModel):
    """Response from GET /api/health."""

    model_config = ConfigDict(extra="allow")

    status: str


class CreateSessionRequest(BaseModel):
    """Request body for POST /api/session."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    username: str
    password: SecretStr

    def to_body(self) -> dict[str, Any]:
        return {"username": self.username, "password": self.password.get_secret_value()}


class CreateSessionResponse(BaseModel):
    """Response from POST /api/session."""

    model_config = ConfigDict(extra="allow")

    id: SecretStr

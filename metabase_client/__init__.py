"""metabase-client: HTTP client for the Metabase API.

Quick start (blocking):
    from metabase_client import MetabaseClient, auth

    with MetabaseClient("https://metabase.example.com", auth.session(token)) as client:
        print(client.health().get())

Quick start (asyncio):
    from metabase_client import AsyncMetabaseClient, auth

    async with AsyncMetabaseClient("https://metabase.example.com", auth.api_key(key)) as client:
        print(await client.health().get())
"""

__version__ = "0.1.0"

from metabase_client import auth
from metabase_client.auth import ApiKeyAuth, Auth, NoAuth, SessionAuth
from metabase_client.client import AsyncMetabaseClient, MetabaseClient
from metabase_client.config_loader import load_client_profile
from metabase_client.errors import (
    ApiError,
    AuthError,
    BuildError,
    ConfigError,
    ConflictError,
    DecodeError,
    InvalidConfigError,
    MetabaseError,
    NotFoundError,
    RateLimitedError,
    ResponseError,
    SerializeError,
    TransportError,
)
from metabase_client.instrumentation import Instrumentation, LoggingInstrumentation
from metabase_client.models import (
    BodySnippetConfig,
    ClientConfig,
    ClientProfile,
    Jitter,
    RequestOptions,
    RetryPolicy,
    TimeoutConfig,
    TlsConfig,
)
from metabase_client.multipart import FilePart, MultipartForm

__all__ = [
    "ApiError",
    "ApiKeyAuth",
    "AsyncMetabaseClient",
    "Auth",
    "AuthError",
    "BodySnippetConfig",
    "BuildError",
    "ClientConfig",
    "ClientProfile",
    "ConfigError",
    "ConflictError",
    "DecodeError",
    "FilePart",
    "Instrumentation",
    "InvalidConfigError",
    "Jitter",
    "LoggingInstrumentation",
    "MetabaseClient",
    "MetabaseError",
    "MultipartForm",
    "NoAuth",
    "NotFoundError",
    "RateLimitedError",
    "RequestOptions",
    "ResponseError",
    "RetryPolicy",
    "SerializeError",
    "SessionAuth",
    "TimeoutConfig",
    "TlsConfig",
    "TransportError",
    "__version__",
    "auth",
    "load_client_profile",
]

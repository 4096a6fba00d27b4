"""Blocking and asyncio clients for the Metabase API.

Both clients share one executor algorithm and differ only in their I/O
strategy. A client's configuration (base URL, auth, retry policy, timeouts)
is fixed at construction; with_auth() returns a new client with its own
connection pool instead of changing the existing one.

Usage:
    with MetabaseClient("https://metabase.example.com", auth.api_key(key)) as client:
        health = client.health().get()

    async with AsyncMetabaseClient("https://metabase.example.com") as client:
        cards = await client.get_json(["api", "card"])
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable

import httpx

from metabase_client.api import (
    AsyncHealthService,
    AsyncSessionService,
    HealthService,
    SessionService,
)
from metabase_client.auth import Auth, NoAuth
from metabase_client.config_loader import load_client_profile
from metabase_client.executor import RequestExecutor, run_async, run_blocking
from metabase_client.instrumentation import Instrumentation
from metabase_client.models import ClientConfig, ClientProfile, RequestOptions
from metabase_client.multipart import MultipartForm
from metabase_client.transport import AsyncTransport, SyncTransport
from metabase_client.urls import normalize_base_url, validate_base_url


class _ClientBase:
    """Validated, read-only settings shared by both client flavors."""

    def __init__(
        self,
        base_url: str,
        auth: Auth | None = None,
        config: ClientConfig | None = None,
        instrumentation: Instrumentation | None = None,
    ) -> None:
        self._base_url = normalize_base_url(validate_base_url(base_url))
        self._auth = auth if auth is not None else NoAuth()
        self._config = config if config is not None else ClientConfig()
        self._instrumentation = instrumentation
        self._executor = RequestExecutor(
            self._base_url, self._auth, self._config, instrumentation
        )

    @property
    def base_url(self) -> str:
        """Base URL, always ending with '/'."""
        return self._base_url

    @property
    def auth(self) -> Auth:
        return self._auth

    @property
    def config(self) -> ClientConfig:
        return self._config

    def __repr__(self) -> str:
        return f"{type(self).__name__}(base_url={self._base_url!r}, auth={self._auth.type!r})"


class MetabaseClient(_ClientBase):
    """Blocking client. Each call holds its thread until done, retry waits included.

    Safe to share between threads: calls keep all their state on their own
    stack and only read the client's configuration.
    """

    def __init__(
        self,
        base_url: str,
        auth: Auth | None = None,
        *,
        config: ClientConfig | None = None,
        instrumentation: Instrumentation | None = None,
        http_transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Metabase base URL (absolute http(s), no query or fragment).
            auth: Authentication mode; no authentication if None.
            config: Timeouts, retry policy, snippet and TLS settings.
            instrumentation: Per-attempt hooks.
            http_transport: httpx transport to send through (e.g. httpx.MockTransport).
            sleep: Blocking wait used between retries.

        Raises:
            InvalidConfigError: If base_url or the TLS settings are invalid.
        """
        super().__init__(base_url, auth, config, instrumentation)
        self._http_transport = http_transport
        self._sleep = sleep
        self._transport = SyncTransport(self._config, http_transport, sleep)

    @classmethod
    def from_profile(cls, profile: ClientProfile, **kwargs: Any) -> MetabaseClient:
        return cls(profile.base_url, profile.auth, config=profile.client_config(), **kwargs)

    @classmethod
    def from_config_file(cls, config_path: Path | str, **kwargs: Any) -> MetabaseClient:
        return cls.from_profile(load_client_profile(config_path), **kwargs)

    def with_auth(self, auth: Auth) -> MetabaseClient:
        """A new client with the same settings and a different auth mode."""
        return type(self)(
            self._base_url,
            auth,
            config=self._config,
            instrumentation=self._instrumentation,
            http_transport=self._http_transport,
            sleep=self._sleep,
        )

    def __enter__(self) -> MetabaseClient:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.close()

    def close(self) -> None:
        self._transport.close()

    # --- Executor entry points ---

    def execute_json(
        self,
        method: str,
        segments: Iterable[Any],
        query: Any = None,
        body: Any = None,
        options: RequestOptions | None = None,
        *,
        response_type: Any = Any,
    ) -> Any:
        """Send a JSON request and decode the success body as response_type.

        Raises:
            MetabaseError: One of the taxonomy subclasses in metabase_client.errors.
        """
        plan = self._executor.json_call(method, segments, query, body, options, response_type)
        return run_blocking(plan, self._transport)

    def execute_bytes(
        self,
        method: str,
        segments: Iterable[Any],
        query: Any = None,
        body: Any = None,
        options: RequestOptions | None = None,
    ) -> bytes:
        """Send a request and return the raw success body (exports, images)."""
        plan = self._executor.bytes_call(method, segments, query, body, options)
        return run_blocking(plan, self._transport)

    def execute_multipart_json(
        self,
        method: str,
        segments: Iterable[Any],
        query: Any,
        form: MultipartForm,
        options: RequestOptions | None = None,
        *,
        response_type: Any = Any,
    ) -> Any:
        """Upload a multipart form and decode the success body as response_type."""
        plan = self._executor.multipart_json_call(
            method, segments, query, form, options, response_type
        )
        return run_blocking(plan, self._transport)

    def get_json(
        self,
        segments: Iterable[Any],
        query: Any = None,
        *,
        response_type: Any = Any,
    ) -> Any:
        return self.execute_json("GET", segments, query, response_type=response_type)

    def post_json(
        self,
        segments: Iterable[Any],
        body: Any,
        options: RequestOptions | None = None,
        *,
        response_type: Any = Any,
    ) -> Any:
        return self.execute_json("POST", segments, None, body, options, response_type=response_type)

    # --- Services ---

    def health(self) -> HealthService:
        return HealthService(self)

    def session(self) -> SessionService:
        return SessionService(self)


class AsyncMetabaseClient(_ClientBase):
    """asyncio client. Many calls may be in flight at once on one event loop.

    A call suspends only while waiting for a response or for a retry delay;
    cancelling the awaiting task abandons the call.
    """

    def __init__(
        self,
        base_url: str,
        auth: Auth | None = None,
        *,
        config: ClientConfig | None = None,
        instrumentation: Instrumentation | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the client. Arguments as for MetabaseClient."""
        super().__init__(base_url, auth, config, instrumentation)
        self._http_transport = http_transport
        self._sleep = sleep
        self._transport = AsyncTransport(self._config, http_transport, sleep)

    @classmethod
    def from_profile(cls, profile: ClientProfile, **kwargs: Any) -> AsyncMetabaseClient:
        return cls(profile.base_url, profile.auth, config=profile.client_config(), **kwargs)

    @classmethod
    def from_config_file(cls, config_path: Path | str, **kwargs: Any) -> AsyncMetabaseClient:
        return cls.from_profile(load_client_profile(config_path), **kwargs)

    def with_auth(self, auth: Auth) -> AsyncMetabaseClient:
        """A new client with the same settings and a different auth mode."""
        return type(self)(
            self._base_url,
            auth,
            config=self._config,
            instrumentation=self._instrumentation,
            http_transport=self._http_transport,
            sleep=self._sleep,
        )

    async def __aenter__(self) -> AsyncMetabaseClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._transport.aclose()

    # --- Executor entry points ---

    async def execute_json(
        self,
        method: str,
        segments: Iterable[Any],
        query: Any = None,
        body: Any = None,
        options: RequestOptions | None = None,
        *,
        response_type: Any = Any,
    ) -> Any:
        """Send a JSON request and decode the success body as response_type."""
        plan = self._executor.json_call(method, segments, query, body, options, response_type)
        return await run_async(plan, self._transport)

    async def execute_bytes(
        self,
        method: str,
        segments: Iterable[Any],
        query: Any = None,
        body: Any = None,
        options: RequestOptions | None = None,
    ) -> bytes:
        plan = self._executor.bytes_call(method, segments, query, body, options)
        return await run_async(plan, self._transport)

    async def execute_multipart_json(
        self,
        method: str,
        segments: Iterable[Any],
        query: Any,
        form: MultipartForm,
        options: RequestOptions | None = None,
        *,
        response_type: Any = Any,
    ) -> Any:
        plan = self._executor.multipart_json_call(
            method, segments, query, form, options, response_type
        )
        return await run_async(plan, self._transport)

    async def get_json(
        self,
        segments: Iterable[Any],
        query: Any = None,
        *,
        response_type: Any = Any,
    ) -> Any:
        return await self.execute_json("GET", segments, query, response_type=response_type)

    async def post_json(
        self,
        segments: Iterable[Any],
        body: Any,
        options: RequestOptions | None = None,
        *,
        response_type: Any = Any,
    ) -> Any:
        return await self.execute_json(
            "POST", segments, None, body, options, response_type=response_type
        )

    # --- Services ---

    def health(self) -> AsyncHealthService:
        return AsyncHealthService(self)

    def session(self) -> AsyncSessionService:
        return AsyncSessionService(self)

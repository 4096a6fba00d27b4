"""I/O strategies: blocking (httpx.Client) and asyncio (httpx.AsyncClient).

A strategy knows how to send one prepared request and how to wait; the retry
and classification logic lives in the executor and is shared by both.
"""

from __future__ import annotations

import asyncio
import ssl
import time
from typing import Any, Awaitable, Callable

import httpx

from metabase_client.errors import BuildError, InvalidConfigError
from metabase_client.executor import OutgoingRequest
from metabase_client.models import ClientConfig


def build_client_kwargs(config: ClientConfig) -> dict[str, Any]:
    """Build kwargs shared by httpx.Client and httpx.AsyncClient, including TLS.

    Raises:
        InvalidConfigError: If the cipher string is rejected by OpenSSL.
    """
    tls = config.tls
    headers = {"User-Agent": config.user_agent}
    headers.update(config.headers)
    kwargs: dict[str, Any] = {
        "headers": headers,
        "follow_redirects": False,
    }

    # Client certificate (mTLS)
    if tls.cert and tls.key:
        if tls.key_password is not None:
            kwargs["cert"] = (tls.cert, tls.key, tls.key_password.get_secret_value())
        else:
            kwargs["cert"] = (tls.cert, tls.key)

    # Ciphers require a custom SSL context
    if tls.ciphers:
        ssl_context = ssl.create_default_context()
        try:
            ssl_context.set_ciphers(tls.ciphers)
        except ssl.SSLError as e:
            raise InvalidConfigError(f"Invalid cipher string '{tls.ciphers}': {e}") from e

        if tls.ca_bundle:
            ssl_context.load_verify_locations(tls.ca_bundle)
        elif not tls.verify_ssl:
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE

        kwargs["verify"] = ssl_context
    elif tls.ca_bundle:
        kwargs["verify"] = tls.ca_bundle
    elif not tls.verify_ssl:
        kwargs["verify"] = False

    return kwargs


def _request_kwargs(
    request: OutgoingRequest, default: httpx.Timeout, budget: float | None
) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"headers": request.headers}
    timeout = default
    if request.timeout is not None:
        # A per-call timeout replaces the client default for every phase.
        timeout = httpx.Timeout(request.timeout, connect=min(request.timeout, default.connect))
    if budget is not None:
        # No single phase may outlast what is left of the call.
        timeout = httpx.Timeout(
            connect=_cap(timeout.connect, budget),
            read=_cap(timeout.read, budget),
            write=_cap(timeout.write, budget),
            pool=_cap(timeout.pool, budget),
        )
    kwargs["timeout"] = timeout
    if request.form is not None:
        kwargs["files"] = request.form.httpx_files()
    elif request.content is not None:
        kwargs["content"] = request.content
    return kwargs


def _cap(phase: float | None, budget: float) -> float:
    return budget if phase is None else min(phase, budget)


def _build_request(
    client: httpx.Client | httpx.AsyncClient,
    request: OutgoingRequest,
    default: httpx.Timeout,
    budget: float | None,
) -> httpx.Request:
    try:
        return client.build_request(
            request.method, request.url, **_request_kwargs(request, default, budget)
        )
    except httpx.InvalidURL as e:
        raise BuildError(
            "failed to build request url", method=request.method, path=request.path
        ) from e


def _deadline_exceeded(request: httpx.Request, budget: float) -> httpx.TimeoutException:
    return httpx.TimeoutException(f"call did not complete within {budget:.2f}s", request=request)


class SyncTransport:
    """Blocking strategy. Each call occupies its thread, retry waits included.

    The body is streamed so the call's deadline is checked between reads;
    each read is also bounded by the remaining budget.
    """

    def __init__(
        self,
        config: ClientConfig,
        http_transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._sleep = sleep
        kwargs = build_client_kwargs(config)
        if http_transport is not None:
            kwargs["transport"] = http_transport
        self._client = httpx.Client(timeout=self.default_timeout(), **kwargs)

    def default_timeout(self) -> httpx.Timeout:
        timeouts = self._config.timeouts
        return httpx.Timeout(timeouts.request, connect=timeouts.connect, read=timeouts.read)

    def send(self, request: OutgoingRequest, budget: float | None = None) -> httpx.Response:
        deadline = None if budget is None else time.monotonic() + budget
        http_request = _build_request(self._client, request, self.default_timeout(), budget)
        response = self._client.send(http_request, stream=True)
        chunks: list[bytes] = []
        try:
            if deadline is not None and time.monotonic() > deadline:
                raise _deadline_exceeded(http_request, budget)
            for chunk in response.iter_bytes():
                chunks.append(chunk)
                if deadline is not None and time.monotonic() > deadline:
                    raise _deadline_exceeded(http_request, budget)
        finally:
            response.close()
        # The body is already decoded; drop the headers that describe the wire form.
        headers = response.headers.copy()
        headers.pop("Content-Encoding", None)
        headers.pop("Content-Length", None)
        return httpx.Response(
            response.status_code,
            headers=headers,
            content=b"".join(chunks),
            request=http_request,
            extensions=response.extensions,
        )

    def sleep(self, seconds: float) -> None:
        self._sleep(seconds)

    def close(self) -> None:
        self._client.close()


class AsyncTransport:
    """asyncio strategy. Only the network wait and the retry wait suspend."""

    def __init__(
        self,
        config: ClientConfig,
        http_transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._sleep = sleep
        kwargs = build_client_kwargs(config)
        if http_transport is not None:
            kwargs["transport"] = http_transport
        self._client = httpx.AsyncClient(timeout=self.default_timeout(), **kwargs)

    def default_timeout(self) -> httpx.Timeout:
        timeouts = self._config.timeouts
        return httpx.Timeout(timeouts.request, connect=timeouts.connect)

    async def send(self, request: OutgoingRequest, budget: float | None = None) -> httpx.Response:
        http_request = _build_request(self._client, request, self.default_timeout(), budget)
        if budget is None:
            return await self._client.send(http_request)
        try:
            async with asyncio.timeout(budget):
                return await self._client.send(http_request)
        except TimeoutError as e:
            raise _deadline_exceeded(http_request, budget) from e

    async def sleep(self, seconds: float) -> None:
        await self._sleep(seconds)

    async def aclose(self) -> None:
        await self._client.aclose()

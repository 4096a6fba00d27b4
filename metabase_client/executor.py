"""Executor - Builds API requests, sends them with retries, classifies results.

Every client call funnels through here. The call itself is a generator that
yields I/O effects instead of performing them:

    Send(request, timeout) -> the driver replies with an httpx.Response, or
                              with the httpx.RequestError the send raised
    Sleep(seconds)         -> the driver waits, then replies with None

The request timeout is one deadline for the whole call. Each Send carries
what is left of it, and a retry wait longer than what is left is not taken.

The generator's return value is the call's result; errors are raised out of
it. run_blocking() and run_async() are the two drivers, so the retry and
classification logic exists once and the blocking and asyncio clients only
differ in how they send and wait.

Per-call state (attempt counter, headers, URL) lives in the generator frame.
The executor itself only holds the client's read-only configuration.
"""

from __future__ import annotations

import json
import logging
import random
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Generator, Iterable, TypeVar
from urllib.parse import urlsplit

import httpx
from pydantic import TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError, to_json

from metabase_client.auth import Auth, NoAuth, validate_header_value
from metabase_client.diagnostics import capture_body_snippet, extract_request_id
from metabase_client.errors import (
    BuildError,
    DecodeError,
    ResponseError,
    SerializeError,
    TransportError,
    error_for_status,
)
from metabase_client.instrumentation import (
    Instrumentation,
    notify_finished,
    notify_started,
    status_class,
)
from metabase_client.models import ClientConfig, RequestOptions
from metabase_client.multipart import MultipartForm
from metabase_client.retry import (
    RetryDecision,
    evaluate_response,
    evaluate_transport_error,
    is_retry_eligible,
    parse_retry_after,
)
from metabase_client.urls import build_url, with_query


logger = logging.getLogger(__name__)

T = TypeVar("T")

ACCEPT_JSON = "application/json"
ACCEPT_ANY = "*/*"
IDEMPOTENCY_HEADER = "Idempotency-Key"
MULTIPART_METHODS = frozenset({"POST", "PUT", "PATCH"})


@dataclass(frozen=True)
class OutgoingRequest:
    """A fully built request, resent unchanged on every attempt.

    path is the percent-encoded URL path, used in errors and logs.
    timeout is the per-call override in seconds (None: client default).
    """

    method: str
    url: str
    path: str
    headers: dict[str, str]
    content: bytes | None = None
    form: MultipartForm | None = None
    timeout: float | None = None


@dataclass(frozen=True)
class Send:
    """Send one attempt. timeout is what remains of the call's budget."""

    request: OutgoingRequest
    timeout: float | None = None


@dataclass(frozen=True)
class Sleep:
    seconds: float


CallPlan = Generator["Send | Sleep", Any, T]


class RequestExecutor:
    """Builds, sends, retries and classifies calls for one client.

    Usage (blocking):
        executor = RequestExecutor(base_url, auth, config)
        data = run_blocking(executor.json_call("GET", ["api", "health"]), transport)

    Usage (asyncio):
        data = await run_async(executor.json_call("GET", ["api", "health"]), transport)
    """

    def __init__(
        self,
        base_url: str,
        auth: Auth | None,
        config: ClientConfig,
        instrumentation: Instrumentation | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            base_url: Validated base URL ending with '/'.
            auth: Authentication mode applied to every request.
            config: Read-only client configuration.
            instrumentation: Per-attempt hooks (no-op if None).
            rng: Random source for backoff jitter.
        """
        self._base_url = base_url
        self._auth = auth if auth is not None else NoAuth()
        self._config = config
        self._instrumentation = instrumentation or Instrumentation()
        self._rng = rng

    # -------------------------------------------------------------------------
    # Call plans
    # -------------------------------------------------------------------------

    def json_call(
        self,
        method: str,
        segments: Iterable[Any],
        query: Any = None,
        body: Any = None,
        options: RequestOptions | None = None,
        response_type: Any = Any,
    ) -> CallPlan[Any]:
        """Plan a JSON request whose success body decodes to response_type.

        Raises (when built, before anything is sent):
            InvalidConfigError: Header values HTTP cannot carry.
            BuildError, SerializeError: URL, query or body cannot be assembled.
        """
        options = options or RequestOptions()
        content = None if body is None else _serialize_body(body)
        request = self._prepare(method, segments, query, options, ACCEPT_JSON, content=content)
        return self._attempts(
            request,
            options,
            lambda response, request_id: self._decode(request, response, request_id, response_type),
        )

    def bytes_call(
        self,
        method: str,
        segments: Iterable[Any],
        query: Any = None,
        body: Any = None,
        options: RequestOptions | None = None,
    ) -> CallPlan[bytes]:
        """Plan a request whose success body is returned as raw bytes."""
        options = options or RequestOptions()
        content = None if body is None else _serialize_body(body)
        request = self._prepare(method, segments, query, options, ACCEPT_ANY, content=content)
        return self._attempts(request, options, lambda response, request_id: response.content)

    def multipart_json_call(
        self,
        method: str,
        segments: Iterable[Any],
        query: Any,
        form: MultipartForm,
        options: RequestOptions | None = None,
        response_type: Any = Any,
    ) -> CallPlan[Any]:
        """Plan a multipart/form-data upload whose success body is JSON."""
        options = options or RequestOptions()
        if method.upper() not in MULTIPART_METHODS:
            raise BuildError(
                f"unsupported multipart request method: {method.upper()}", method=method.upper()
            )
        if form.is_empty:
            raise BuildError("multipart form has no parts", method=method.upper())
        request = self._prepare(method, segments, query, options, ACCEPT_JSON, form=form)
        return self._attempts(
            request,
            options,
            lambda response, request_id: self._decode(request, response, request_id, response_type),
        )

    # -------------------------------------------------------------------------
    # Build
    # -------------------------------------------------------------------------

    def _prepare(
        self,
        method: str,
        segments: Iterable[Any],
        query: Any,
        options: RequestOptions,
        accept: str,
        content: bytes | None = None,
        form: MultipartForm | None = None,
    ) -> OutgoingRequest:
        method = method.upper()
        url = with_query(build_url(self._base_url, segments), query)

        headers: dict[str, str] = {}
        self._auth.apply(headers)
        headers["Accept"] = accept
        if options.idempotency_key is not None:
            headers[IDEMPOTENCY_HEADER] = validate_header_value(
                IDEMPOTENCY_HEADER, options.idempotency_key
            )
        if content is not None:
            headers["Content-Type"] = "application/json"

        return OutgoingRequest(
            method=method,
            url=url,
            path=urlsplit(url).path,
            headers=headers,
            content=content,
            form=form,
            timeout=options.timeout,
        )

    # -------------------------------------------------------------------------
    # Send / Evaluate / Retry
    # -------------------------------------------------------------------------

    def _attempts(
        self,
        request: OutgoingRequest,
        options: RequestOptions,
        on_success: Callable[[httpx.Response, str | None], T],
    ) -> CallPlan[T]:
        policy = self._config.retry
        eligible = is_retry_eligible(request.method, options)
        timeout = request.timeout if request.timeout is not None else self._config.timeouts.request
        deadline = time.monotonic() + timeout
        method, path = request.method, request.path
        attempt = 0

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning("%s %s timed out after %d attempt(s)", method, path, attempt)
                raise TransportError(method=method, path=path) from httpx.TimeoutException(
                    f"call did not complete within {timeout:.2f}s"
                )

            notify_started(self._instrumentation, method, path, attempt)
            started = time.perf_counter()
            outcome = yield Send(request, remaining)
            elapsed = time.perf_counter() - started

            if isinstance(outcome, BaseException):
                decision = evaluate_transport_error(policy, eligible, attempt, outcome, self._rng)
                if self._should_wait(request, decision, deadline - time.monotonic()):
                    notify_finished(self._instrumentation, method, path, attempt, "retry", elapsed)
                    self._log_retry(request, attempt, decision, type(outcome).__name__)
                    if decision.delay > 0:
                        yield Sleep(decision.delay)
                    attempt += 1
                    continue

                notify_finished(self._instrumentation, method, path, attempt, "transport_error", elapsed)
                logger.warning(
                    "%s %s failed after %d attempt(s): %s",
                    method,
                    path,
                    attempt + 1,
                    type(outcome).__name__,
                )
                raise TransportError(method=method, path=path) from outcome

            response: httpx.Response = outcome
            decision = evaluate_response(
                policy, eligible, attempt, response.status_code, response.headers, self._rng
            )
            if self._should_wait(request, decision, deadline - time.monotonic()):
                notify_finished(self._instrumentation, method, path, attempt, "retry", elapsed)
                self._log_retry(request, attempt, decision, f"status {response.status_code}")
                if decision.delay > 0:
                    yield Sleep(decision.delay)
                attempt += 1
                continue

            request_id = extract_request_id(response.headers)

            if response.is_success:
                try:
                    result = on_success(response, request_id)
                except DecodeError:
                    notify_finished(self._instrumentation, method, path, attempt, "decode_error", elapsed)
                    raise
                notify_finished(self._instrumentation, method, path, attempt, "ok", elapsed)
                return result

            notify_finished(
                self._instrumentation, method, path, attempt, status_class(response.status_code), elapsed
            )
            raise self._response_error(request, response, request_id)

    def _should_wait(
        self, request: OutgoingRequest, decision: RetryDecision, remaining: float
    ) -> bool:
        if not decision.retry:
            return False
        if remaining <= 0 or decision.delay > remaining:
            # The call's timeout would fire during the wait.
            logger.info(
                "Not retrying %s %s: delay %.2fs exceeds remaining timeout %.2fs",
                request.method,
                request.path,
                decision.delay,
                max(remaining, 0.0),
            )
            return False
        return True

    def _log_retry(
        self, request: OutgoingRequest, attempt: int, decision: RetryDecision, reason: str
    ) -> None:
        logger.info(
            "Retrying %s %s in %.2fs (retry %d of %d, %s)",
            request.method,
            request.path,
            decision.delay,
            attempt + 1,
            self._config.retry.max_retries,
            reason,
        )

    # -------------------------------------------------------------------------
    # Classify
    # -------------------------------------------------------------------------

    def _snippet(self, data: bytes) -> str | None:
        snippet_config = self._config.body_snippet
        if not snippet_config.capture:
            return None
        return capture_body_snippet(data, snippet_config.limit, snippet_config.redact)

    def _decode(
        self,
        request: OutgoingRequest,
        response: httpx.Response,
        request_id: str | None,
        response_type: Any,
    ) -> Any:
        """Decode a success body. Empty or whitespace-only bodies decode as JSON null."""
        data = response.content
        try:
            return _type_adapter(response_type).validate_json(data if data.strip() else b"null")
        except ValidationError as e:
            errors = e.errors(include_url=False)
            first = errors[0] if errors else {}
            raise DecodeError(
                status=response.status_code,
                method=request.method,
                path=request.path,
                decode_path=_render_loc(first.get("loc", ())),
                reason=first.get("msg", "response body does not match the expected type"),
                request_id=request_id,
                body_snippet=self._snippet(data),
            ) from e

    def _response_error(
        self,
        request: OutgoingRequest,
        response: httpx.Response,
        request_id: str | None,
    ) -> ResponseError:
        data = response.content
        body: Any = None
        if data.strip():
            try:
                body = json.loads(data)
            except ValueError:
                body = None

        message = None
        if isinstance(body, dict) and isinstance(body.get("message"), str):
            message = body["message"]

        return error_for_status(
            response.status_code,
            method=request.method,
            path=request.path,
            request_id=request_id,
            message=message,
            body=body,
            body_snippet=self._snippet(data),
            retry_after=parse_retry_after(response.headers),
        )


# =============================================================================
# Drivers
# =============================================================================


def run_blocking(plan: CallPlan[T], transport: Any) -> T:
    """Drive a call plan with a blocking transport (send/sleep)."""
    outcome: Any = None
    try:
        while True:
            try:
                effect = plan.send(outcome)
            except StopIteration as stop:
                return stop.value
            if isinstance(effect, Sleep):
                transport.sleep(effect.seconds)
                outcome = None
                continue
            try:
                outcome = transport.send(effect.request, effect.timeout)
            except httpx.RequestError as e:
                outcome = e
    finally:
        plan.close()


async def run_async(plan: CallPlan[T], transport: Any) -> T:
    """Drive a call plan with an asyncio transport (async send/sleep).

    Cancelling the awaiting task aborts the call, including a pending retry
    wait.
    """
    outcome: Any = None
    try:
        while True:
            try:
                effect = plan.send(outcome)
            except StopIteration as stop:
                return stop.value
            if isinstance(effect, Sleep):
                await transport.sleep(effect.seconds)
                outcome = None
                continue
            try:
                outcome = await transport.send(effect.request, effect.timeout)
            except httpx.RequestError as e:
                outcome = e
    finally:
        plan.close()


# =============================================================================
# Helpers
# =============================================================================


def _serialize_body(body: Any) -> bytes:
    try:
        return to_json(body)
    except PydanticSerializationError as e:
        raise SerializeError(f"failed to serialize request body: {e}") from e


@lru_cache(maxsize=256)
def _cached_adapter(response_type: Any) -> TypeAdapter[Any]:
    return TypeAdapter(response_type)


def _type_adapter(response_type: Any) -> TypeAdapter[Any]:
    try:
        return _cached_adapter(response_type)
    except TypeError:
        # Unhashable type expression
        return TypeAdapter(response_type)


def _render_loc(loc: tuple[Any, ...]) -> str:
    """Render a Pydantic error location like 'items[0].name'; '.' for the root."""
    rendered = ""
    for part in loc:
        if isinstance(part, int):
            rendered += f"[{part}]"
        elif rendered:
            rendered += f".{part}"
        else:
            rendered = str(part)
    return rendered or "."

"""Error taxonomy for metabase-client.

Every failure a client call can produce is a MetabaseError subclass. Callers
branch on the subclass; all of them expose the same accessors (status, method,
path, request_id, message, body, body_snippet, retry_after) so handlers do
not need to know which kind they caught.

str() never includes the response body or the captured snippet, and repr()
replaces both with "<redacted>".
"""

from __future__ import annotations

from typing import Any


_REDACTED = "<redacted>"


class MetabaseError(Exception):
    """Base class for all client errors."""

    kind = "error"

    def __init__(
        self,
        detail: str | None = None,
        *,
        method: str | None = None,
        path: str | None = None,
        status: int | None = None,
        request_id: str | None = None,
        message: str | None = None,
        body: Any = None,
        body_snippet: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(detail or self.kind)
        self.detail = detail
        self.method = method
        self.path = path
        self.status = status
        self.request_id = request_id
        self.message = message
        self.body = body
        self.body_snippet = body_snippet
        self.retry_after = retry_after

    def _context(self) -> list[str]:
        parts = []
        if self.status is not None:
            parts.append(f"status={self.status}")
        if self.method is not None:
            parts.append(f"method={self.method}")
        if self.path is not None:
            parts.append(f"path={self.path}")
        if self.request_id is not None:
            parts.append(f"request_id={self.request_id}")
        if self.message is not None:
            parts.append(f"message={self.message}")
        return parts

    def __str__(self) -> str:
        head = self.kind if self.detail is None else f"{self.kind}: {self.detail}"
        parts = self._context()
        if not parts:
            return head
        return f"{head} ({', '.join(parts)})"

    def __repr__(self) -> str:
        fields = [
            f"status={self.status!r}",
            f"method={self.method!r}",
            f"path={self.path!r}",
            f"request_id={self.request_id!r}",
            f"message={self.message!r}",
            f"body={_REDACTED if self.body is not None else None!r}",
            f"body_snippet={_REDACTED if self.body_snippet is not None else None!r}",
        ]
        if self.retry_after is not None:
            fields.append(f"retry_after={self.retry_after!r}")
        return f"{type(self).__name__}({', '.join(fields)})"


# =============================================================================
# Local failures (never retried)
# =============================================================================


class InvalidConfigError(MetabaseError):
    """Bad base URL, header value that HTTP cannot carry, bad TLS settings."""

    kind = "invalid config"


class ConfigError(InvalidConfigError):
    """Raised when a client profile cannot be loaded."""

    kind = "config error"


class BuildError(MetabaseError):
    """The request URL or request shape could not be assembled."""

    kind = "build error"


class SerializeError(MetabaseError):
    """Query parameters or the request body could not be serialized."""

    kind = "serialize error"


# =============================================================================
# Transport failures
# =============================================================================


class TransportError(MetabaseError):
    """Connection, timeout or other I/O failure. Carries no status.

    The underlying httpx exception is chained as __cause__; its text is kept
    out of str() because it can echo request details.
    """

    kind = "transport error"

    def __init__(self, *, method: str | None = None, path: str | None = None) -> None:
        super().__init__(method=method, path=path)

    def __str__(self) -> str:
        if self.method is not None and self.path is not None:
            return f"{self.kind} (method={self.method}, path={self.path})"
        return self.kind


# =============================================================================
# Response-classified failures
# =============================================================================


class ResponseError(MetabaseError):
    """Base for errors derived from a non-success HTTP status."""

    kind = "api error"

    def __init__(
        self,
        *,
        status: int,
        method: str,
        path: str,
        request_id: str | None = None,
        message: str | None = None,
        body: Any = None,
        body_snippet: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(
            method=method,
            path=path,
            status=status,
            request_id=request_id,
            message=message,
            body=body,
            body_snippet=body_snippet,
            retry_after=retry_after,
        )


class AuthError(ResponseError):
    """401 or 403."""

    kind = "auth error"


class NotFoundError(ResponseError):
    """404."""

    kind = "not found"


class ConflictError(ResponseError):
    """409 or 412."""

    kind = "conflict"


class RateLimitedError(ResponseError):
    """429. retry_after is the resolved Retry-After delay in seconds, if sent."""

    kind = "rate limited"

    def __str__(self) -> str:
        text = super().__str__()
        if self.retry_after is None:
            return text
        return f"{text} (retry_after={self.retry_after:g}s)"


class ApiError(ResponseError):
    """Any other non-success status."""

    kind = "api error"


class DecodeError(MetabaseError):
    """A success response whose body does not parse into the expected type."""

    kind = "decode error"

    def __init__(
        self,
        *,
        status: int,
        method: str,
        path: str,
        decode_path: str | None,
        reason: str,
        request_id: str | None = None,
        body_snippet: str | None = None,
    ) -> None:
        super().__init__(
            reason,
            method=method,
            path=path,
            status=status,
            request_id=request_id,
            body_snippet=body_snippet,
        )
        self.decode_path = decode_path

    def _context(self) -> list[str]:
        parts = super()._context()
        if self.decode_path is not None:
            parts.append(f"decode_path={self.decode_path}")
        return parts


# =============================================================================
# Classification
# =============================================================================


def error_for_status(
    status: int,
    *,
    method: str,
    path: str,
    request_id: str | None = None,
    message: str | None = None,
    body: Any = None,
    body_snippet: str | None = None,
    retry_after: float | None = None,
) -> ResponseError:
    """Map a non-success status to its taxonomy member.

    Checked in order: 401/403, 404, 409/412, 429, then everything else.
    retry_after is only kept for 429.
    """
    context: dict[str, Any] = {
        "status": status,
        "method": method,
        "path": path,
        "request_id": request_id,
        "message": message,
        "body": body,
        "body_snippet": body_snippet,
    }
    if status in (401, 403):
        return AuthError(**context)
    if status == 404:
        return NotFoundError(**context)
    if status in (409, 412):
        return ConflictError(**context)
    if status == 429:
        return RateLimitedError(retry_after=retry_after, **context)
    return ApiError(**context)

"""Diagnostics attached to errors: body snippets and request ids."""

from __future__ import annotations

import json
from typing import Any, Mapping

import httpx


REDACTED = "<redacted>"

REQUEST_ID_HEADERS = ("x-request-id", "x-amzn-requestid", "x-correlation-id")

# Any of these (case-insensitive) anywhere in the snippet triggers redaction.
_SENSITIVE_MARKERS = (
    "token",
    "password",
    "secret",
    "api_key",
    "api-key",
    "authorization",
    "cookie",
    "session",
)

# JSON object keys containing any of these have their values replaced.
_SENSITIVE_KEYS = ("password", "token", "secret", "api_key", "api-key", "session")


def body_snippet(data: bytes, limit: int) -> str:
    """UTF-8 decode of at most limit bytes; invalid sequences become U+FFFD."""
    return data[:limit].decode("utf-8", errors="replace")


def capture_body_snippet(data: bytes, limit: int, redact: bool = True) -> str:
    """Bounded, optionally redacted, prefix of a response body.

    When redaction is on and the snippet looks sensitive, JSON snippets keep
    their shape with sensitive values replaced by "<redacted>"; anything that
    does not parse as JSON (including JSON cut off by the limit) is replaced
    whole.
    """
    snippet = body_snippet(data, limit)
    if not redact or not looks_sensitive(snippet):
        return snippet
    return redact_snippet(snippet)


def looks_sensitive(snippet: str) -> bool:
    lower = snippet.lower()
    return any(marker in lower for marker in _SENSITIVE_MARKERS)


def redact_snippet(snippet: str) -> str:
    try:
        value = json.loads(snippet)
    except ValueError:
        return REDACTED
    return json.dumps(_redact_value(value), separators=(",", ":"), ensure_ascii=False)


def _redact_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTED if _is_sensitive_key(key) else _redact_value(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_redact_value(item) for item in value]
    return value


def _is_sensitive_key(key: str) -> bool:
    lower = key.lower()
    return any(name in lower for name in _SENSITIVE_KEYS)


def extract_request_id(headers: Mapping[str, str] | httpx.Headers) -> str | None:
    """First non-empty correlation id among the known response headers."""
    if not isinstance(headers, httpx.Headers):
        headers = httpx.Headers(headers)
    for name in REQUEST_ID_HEADERS:
        value = headers.get(name)
        if value is None:
            continue
        value = value.strip()
        if value:
            return value
    return None

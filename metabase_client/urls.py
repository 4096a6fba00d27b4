"""URL and query-string construction.

Base URLs are validated once, at client construction, and normalized to end
with '/'. Request URLs append percent-encoded path segments to that base, so
a segment containing '/' stays one segment ('%2F'), never a sub-path, and
the dot segments '.' and '..' are encoded so they never move up the path.
"""

from __future__ import annotations

import json
import math
from typing import Any, Iterable
from urllib.parse import quote, urlencode, urlsplit, urlunsplit

from pydantic_core import PydanticSerializationError, to_jsonable_python

from metabase_client.errors import BuildError, InvalidConfigError, SerializeError


# RFC 3986 pchar minus '/': sub-delims, ':' and '@' are legal inside a segment.
_SEGMENT_SAFE = "!$&'()*+,;=:@"

# Dot segments are removed by URL normalization unless percent-encoded.
_DOT_SEGMENTS = {".": "%2E", "..": "%2E%2E"}


def validate_base_url(base_url: str) -> str:
    """Check that base_url can serve as a base for API paths.

    Raises:
        InvalidConfigError: If the URL is not absolute http(s), has no host,
            or carries a query string or fragment.
    """
    try:
        parts = urlsplit(base_url)
    except ValueError as e:
        raise InvalidConfigError(f"invalid base url: {base_url}") from e

    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise InvalidConfigError(
            f"invalid base url: {base_url} (base_url must be an absolute http(s) url)"
        )
    if parts.query or base_url.rstrip().endswith("?"):
        raise InvalidConfigError(
            f"invalid base url: {base_url} (base_url must not include a query string)"
        )
    if parts.fragment or base_url.rstrip().endswith("#"):
        raise InvalidConfigError(
            f"invalid base url: {base_url} (base_url must not include a fragment)"
        )
    return base_url


def normalize_base_url(base_url: str) -> str:
    """Return base_url with exactly one trailing '/' on its path. Idempotent."""
    parts = urlsplit(base_url)
    path = parts.path.rstrip("/") + "/"
    return urlunsplit((parts.scheme, parts.netloc, path, "", ""))


def build_url(base_url: str, segments: Iterable[Any]) -> str:
    """Append percent-encoded path segments to a normalized base URL.

    Segments may be strings or anything with a useful str() (ids are ints).
    """
    encoded = []
    for segment in segments:
        if segment is None:
            raise BuildError("path segment must not be None")
        text = str(segment)
        encoded.append(_DOT_SEGMENTS.get(text) or quote(text, safe=_SEGMENT_SAFE))
    return base_url + "/".join(encoded)


def with_query(url: str, query: Any = None) -> str:
    """Return url with the serialized query string attached (or none at all)."""
    pairs = serialize_query(query)
    if not pairs:
        return url
    return f"{url}?{urlencode(pairs)}"


def serialize_query(query: Any) -> list[tuple[str, str]]:
    """Flatten a structured query value into ordered key/value pairs.

    Accepted shapes:
        None                      -> no pairs
        mapping / Pydantic model  -> key=scalar, or one pair per array element
                                     (None values and None elements skipped)
        list of [key, value]      -> the pairs, in order

    Raises:
        SerializeError: For nested objects, non-scalar array elements,
            malformed pair lists, or any other top-level shape.
    """
    if query is None:
        return []

    try:
        value = to_jsonable_python(query)
    except PydanticSerializationError as e:
        raise SerializeError(f"failed to serialize query parameters: {e}") from e

    if value is None:
        return []
    if isinstance(value, dict):
        return _pairs_from_object(value)
    if isinstance(value, list):
        return _pairs_from_pair_list(value)
    raise SerializeError(
        "query parameters must serialize to an object or a list of key/value pairs"
    )


def _pairs_from_object(mapping: dict[str, Any]) -> list[tuple[str, str]]:
    pairs: list[tuple[str, str]] = []
    for key, value in mapping.items():
        if value is None:
            continue
        if isinstance(value, list):
            for item in value:
                if item is None:
                    continue
                text = _scalar_to_string(item)
                if text is None:
                    raise SerializeError(
                        "query arrays must contain only strings, numbers, or booleans"
                    )
                pairs.append((str(key), text))
            continue
        if isinstance(value, dict):
            raise SerializeError("nested query objects are not supported")
        text = _scalar_to_string(value)
        if text is None:
            raise SerializeError("query values must be strings, numbers, or booleans")
        pairs.append((str(key), text))
    return pairs


def _pairs_from_pair_list(items: list[Any]) -> list[tuple[str, str]]:
    # Escape hatch for callers that need explicit ordering or repeated keys.
    pairs: list[tuple[str, str]] = []
    for item in items:
        if not isinstance(item, list):
            raise SerializeError("query pair list must be a list of [key, value] arrays")
        if len(item) != 2:
            raise SerializeError("query pair list entries must have length 2")
        key = _scalar_to_string(item[0])
        if key is None:
            raise SerializeError("query pair keys must be strings, numbers, or booleans")
        value = _scalar_to_string(item[1])
        if value is None:
            raise SerializeError("query pair values must be strings, numbers, or booleans")
        pairs.append((key, value))
    return pairs


def _scalar_to_string(value: Any) -> str | None:
    """Render a JSON scalar the way it appears in JSON; None for non-scalars."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return json.dumps(value)
    return None

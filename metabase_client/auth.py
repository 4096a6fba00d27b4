"""Authentication modes for the Metabase API.

Auth is a closed set of variants, each a frozen Pydantic model with a
``type`` discriminator so profiles can declare it in YAML. Secrets are
SecretStr values: they render as '**********' and are only exposed while
building the request header.
"""

from __future__ import annotations

import re
from typing import Annotated, Literal, MutableMapping

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from metabase_client.errors import InvalidConfigError


SESSION_HEADER = "X-Metabase-Session"
API_KEY_HEADER = "X-API-KEY"

# Visible ASCII, space and horizontal tab. Anything else (CR, LF, NUL,
# other control characters, non-ASCII) cannot be carried in a header value.
_HEADER_VALUE = re.compile(r"[\t\x20-\x7e]*")


def validate_header_value(header: str, value: str) -> str:
    """Return value unchanged, or raise InvalidConfigError naming the header."""
    if not _HEADER_VALUE.fullmatch(value):
        raise InvalidConfigError(f"invalid header value for {header}")
    return value


class NoAuth(BaseModel):
    """No authentication (public endpoints only)."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["none"] = "none"

    def apply(self, headers: MutableMapping[str, str]) -> None:
        return None


class SessionAuth(BaseModel):
    """Metabase session token, sent as X-Metabase-Session."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["session"] = "session"
    token: SecretStr

    def apply(self, headers: MutableMapping[str, str]) -> None:
        headers[SESSION_HEADER] = validate_header_value(
            SESSION_HEADER, self.token.get_secret_value()
        )


class ApiKeyAuth(BaseModel):
    """Metabase API key, sent as X-API-KEY."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["api_key"] = "api_key"
    key: SecretStr

    def apply(self, headers: MutableMapping[str, str]) -> None:
        headers[API_KEY_HEADER] = validate_header_value(
            API_KEY_HEADER, self.key.get_secret_value()
        )


Auth = Annotated[NoAuth | SessionAuth | ApiKeyAuth, Field(discriminator="type")]


def no_auth() -> NoAuth:
    return NoAuth()


def session(token: str) -> SessionAuth:
    """Auth from a session token (the ``id`` returned by POST /api/session)."""
    return SessionAuth(token=SecretStr(token))


def api_key(key: str) -> ApiKeyAuth:
    """Auth from a Metabase API key."""
    return ApiKeyAuth(key=SecretStr(key))

"""Endpoint services.

Per-endpoint methods are thin: a path, optionally a query or body, and one
executor entry point. Only the endpoints needed to check connectivity and to
log in are provided here.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import SecretStr

from metabase_client import auth
from metabase_client.models import (
    CreateSessionRequest,
    CreateSessionResponse,
    HealthResponse,
    RequestOptions,
)

if TYPE_CHECKING:
    from metabase_client.client import AsyncMetabaseClient, MetabaseClient


class HealthService:
    def __init__(self, client: MetabaseClient) -> None:
        self._client = client

    def get(self) -> HealthResponse:
        """GET /api/health"""
        return self._client.get_json(["api", "health"], response_type=HealthResponse)


class SessionService:
    def __init__(self, client: MetabaseClient) -> None:
        self._client = client

    def create(
        self,
        username: str,
        password: str | SecretStr,
        options: RequestOptions | None = None,
    ) -> CreateSessionResponse:
        """POST /api/session"""
        request = CreateSessionRequest(username=username, password=password)
        return self._client.post_json(
            ["api", "session"], request.to_body(), options, response_type=CreateSessionResponse
        )

    def login(
        self,
        username: str,
        password: str | SecretStr,
        options: RequestOptions | None = None,
    ) -> MetabaseClient:
        """Create a session and return a client authenticated with it."""
        session = self.create(username, password, options)
        return self._client.with_auth(auth.session(session.id.get_secret_value()))


class AsyncHealthService:
    def __init__(self, client: AsyncMetabaseClient) -> None:
        self._client = client

    async def get(self) -> HealthResponse:
        """GET /api/health"""
        return await self._client.get_json(["api", "health"], response_type=HealthResponse)


class AsyncSessionService:
    def __init__(self, client: AsyncMetabaseClient) -> None:
        self._client = client

    async def create(
        self,
        username: str,
        password: str | SecretStr,
        options: RequestOptions | None = None,
    ) -> CreateSessionResponse:
        """POST /api/session"""
        request = CreateSessionRequest(username=username, password=password)
        return await self._client.post_json(
            ["api", "session"], request.to_body(), options, response_type=CreateSessionResponse
        )

    async def login(
        self,
        username: str,
        password: str | SecretStr,
        options: RequestOptions | None = None,
    ) -> AsyncMetabaseClient:
        """Create a session and return a client authenticated with it."""
        session = await self.create(username, password, options)
        return self._client.with_auth(auth.session(session.id.get_secret_value()))

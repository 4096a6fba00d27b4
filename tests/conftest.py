"""Pytest configuration and fixtures for metabase-client tests.

This file provides:
- ScriptedServer: Replays canned responses through httpx.MockTransport
- RecordingSleep / AsyncRecordingSleep: Retry waits that only record
- PortReservation: Race-free port allocation for test servers
- MockServer: Subprocess management for the mock Metabase server
- Fixtures: Shared test infrastructure
"""

from __future__ import annotations

import socket
import subprocess
import sys
import time
from pathlib import Path
from typing import Any, Generator

import httpx
import pytest

from metabase_client import AsyncMetabaseClient, MetabaseClient
from metabase_client.auth import Auth
from metabase_client.instrumentation import Instrumentation
from metabase_client.models import ClientConfig, Jitter, RetryPolicy

PROJECT_ROOT = Path(__file__).parent.parent
MOCK_SERVER_MODULE = "tests.integration.mock_server"

BASE_URL = "https://metabase.example.com"

# Deterministic backoff: 0.1s, 0.2s, 0.4s
FIXED_RETRY = RetryPolicy(max_retries=3, base_delay=0.1, max_delay=1.0, jitter=Jitter.NONE)


# =============================================================================
# Scripted HTTP
# =============================================================================


class ScriptedServer:
    """Replays a fixed sequence of outcomes and records every request.

    Each outcome is an httpx.Response or an httpx.RequestError subclass to
    raise. The last outcome repeats once the script runs out, so a single
    Response(503) means "always 503".

    Usage:
        server = ScriptedServer(httpx.Response(503), httpx.Response(200, json={}))
        client = make_client(server)
    """

    def __init__(self, *outcomes: httpx.Response | type[httpx.RequestError]) -> None:
        if not outcomes:
            raise ValueError("ScriptedServer needs at least one outcome")
        self._outcomes = list(outcomes)
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self._outcomes.pop(0) if len(self._outcomes) > 1 else self._outcomes[0]
        if isinstance(outcome, type) and issubclass(outcome, httpx.RequestError):
            raise outcome("scripted failure", request=request)
        # Fresh copy: httpx binds a response's stream to the client that sent it.
        return httpx.Response(outcome.status_code, headers=outcome.headers, content=outcome.content)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def request_count(self) -> int:
        return len(self.requests)


class RecordingSleep:
    """Blocking sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class AsyncRecordingSleep:
    """asyncio sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class RecordingInstrumentation(Instrumentation):
    """Collects hook calls as tuples for assertions."""

    def __init__(self) -> None:
        self.started: list[tuple[str, str, int]] = []
        self.finished: list[tuple[str, str, int, str]] = []

    def attempt_started(self, method: str, path: str, attempt: int) -> None:
        self.started.append((method, path, attempt))

    def attempt_finished(
        self, method: str, path: str, attempt: int, outcome: str, elapsed: float
    ) -> None:
        assert elapsed >= 0
        self.finished.append((method, path, attempt, outcome))


def make_config(**overrides: Any) -> ClientConfig:
    """ClientConfig with deterministic retries unless overridden."""
    overrides.setdefault("retry", FIXED_RETRY)
    return ClientConfig(**overrides)


def make_client(
    server: ScriptedServer,
    *,
    auth: Auth | None = None,
    config: ClientConfig | None = None,
    instrumentation: Instrumentation | None = None,
    sleep: RecordingSleep | None = None,
) -> MetabaseClient:
    """Blocking client wired to a ScriptedServer."""
    return MetabaseClient(
        BASE_URL,
        auth,
        config=config or make_config(),
        instrumentation=instrumentation,
        http_transport=server.transport(),
        sleep=sleep or RecordingSleep(),
    )


def make_async_client(
    server: ScriptedServer,
    *,
    auth: Auth | None = None,
    config: ClientConfig | None = None,
    instrumentation: Instrumentation | None = None,
    sleep: AsyncRecordingSleep | None = None,
) -> AsyncMetabaseClient:
    """asyncio client wired to a ScriptedServer."""
    return AsyncMetabaseClient(
        BASE_URL,
        auth,
        config=config or make_config(),
        instrumentation=instrumentation,
        http_transport=server.transport(),
        sleep=sleep or AsyncRecordingSleep(),
    )


# =============================================================================
# Mock Server Process
# =============================================================================


class PortReservation:
    """Holds a reserved port with socket kept open to prevent races.

    The socket stays bound until just before the server starts, so no other
    process can take the port in between.

    Usage:
        reservation = PortReservation()
        server = MockServer(reservation)
        server.start()  # calls release() internally, then binds
    """

    def __init__(self) -> None:
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._socket.bind(("127.0.0.1", 0))  # Port 0 = OS assigns ephemeral port
        self._port = self._socket.getsockname()[1]
        self._released = False

    @property
    def port(self) -> int:
        return self._port

    def release(self) -> int:
        """Release the socket and return the port. Safe to call multiple times."""
        if not self._released:
            self._socket.close()
            self._released = True
        return self._port

    def __enter__(self) -> PortReservation:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.release()


def wait_for_server_ready(host: str, port: int, timeout: float = 10.0) -> bool:
    """Block until server accepts TCP connections, or timeout expires."""
    start = time.time()
    while time.time() - start < timeout:
        try:
            with socket.create_connection((host, port), timeout=1.0):
                return True
        except OSError:
            time.sleep(0.1)
    return False


class MockServer:
    """Runs tests/integration/mock_server.py as a subprocess."""

    def __init__(self, port: int | PortReservation) -> None:
        if isinstance(port, PortReservation):
            self._reservation: PortReservation | None = port
            self.port = port.port
        else:
            self._reservation = None
            self.port = port
        self.host = "127.0.0.1"
        self.base_url = f"http://{self.host}:{self.port}"
        self._process: subprocess.Popen | None = None

    def start(self) -> None:
        """Start the mock server subprocess.

        Raises:
            RuntimeError: If server fails to start within 10 seconds.
        """
        if self._reservation:
            self._reservation.release()

        self._process = subprocess.Popen(
            [
                sys.executable, "-m", MOCK_SERVER_MODULE,
                "--host", self.host,
                "--port", str(self.port),
            ],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=PROJECT_ROOT,
        )

        if not wait_for_server_ready(self.host, self.port):
            stderr = ""
            if self._process and self._process.stderr:
                stderr = self._process.stderr.read().decode(errors="replace")
            self.stop()
            raise RuntimeError(
                f"MockServer failed to start on port {self.port}. "
                f"stderr: {stderr or '(empty)'}"
            )

    def stop(self) -> None:
        """Stop the subprocess: SIGTERM, then SIGKILL after 5s. Safe to call twice."""
        if self._process:
            self._process.terminate()
            try:
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._process.kill()
                try:
                    self._process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    pass  # Unkillable; nothing more to do
            self._process = None

    def __enter__(self) -> MockServer:
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()


# =============================================================================
# Pytest Fixtures
# =============================================================================


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def async_recording_sleep() -> AsyncRecordingSleep:
    return AsyncRecordingSleep()


@pytest.fixture(scope="session")
def mock_server() -> Generator[MockServer, None, None]:
    """Mock Metabase server, started once per test session.

    Example:
        def test_health(mock_server):
            with MetabaseClient(mock_server.base_url) as client:
                ...
    """
    with MockServer(PortReservation()) as server:
        yield server


# =============================================================================
# Pytest Hooks
# =============================================================================


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Tag tests with markers based on their directory.

        pytest -m integration  # only integration tests
        pytest -m unit         # only unit tests
    """
    for item in items:
        test_path = Path(item.fspath)
        if "integration" in test_path.parts:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)

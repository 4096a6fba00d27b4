"""Optional per-attempt instrumentation hooks.

Hooks are advisory: the executor calls them around every attempt, and a hook
that raises is logged and ignored so it can never change retry behavior or
the call's result.
"""

from __future__ import annotations

import logging


logger = logging.getLogger(__name__)


def status_class(status: int) -> str:
    """Outcome label for a final response status."""
    if 200 <= status < 300:
        return "2xx"
    if 400 <= status < 500:
        return "4xx"
    if 500 <= status < 600:
        return "5xx"
    return "other"


class Instrumentation:
    """No-op hooks. Subclass and override to emit spans or metrics."""

    def attempt_started(self, method: str, path: str, attempt: int) -> None:
        """Called before each attempt is sent. attempt is 0-based."""

    def attempt_finished(
        self,
        method: str,
        path: str,
        attempt: int,
        outcome: str,
        elapsed: float,
    ) -> None:
        """Called once per attempt with its outcome label and elapsed seconds.

        Outcome is one of: ok, decode_error, transport_error, retry, 2xx, 4xx,
        5xx, other.
        """


class LoggingInstrumentation(Instrumentation):
    """Writes one DEBUG record per attempt."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def attempt_started(self, method: str, path: str, attempt: int) -> None:
        self._log.debug(
            "metabase.request start method=%s path=%s retry_count=%d", method, path, attempt
        )

    def attempt_finished(
        self,
        method: str,
        path: str,
        attempt: int,
        outcome: str,
        elapsed: float,
    ) -> None:
        self._log.debug(
            "metabase.request done method=%s path=%s retry_count=%d outcome=%s duration=%.3fs",
            method,
            path,
            attempt,
            outcome,
            elapsed,
        )


def notify_started(hooks: Instrumentation, method: str, path: str, attempt: int) -> None:
    try:
        hooks.attempt_started(method, path, attempt)
    except Exception:
        logger.warning("Instrumentation hook attempt_started failed", exc_info=True)


def notify_finished(
    hooks: Instrumentation,
    method: str,
    path: str,
    attempt: int,
    outcome: str,
    elapsed: float,
) -> None:
    try:
        hooks.attempt_finished(method, path, attempt, outcome, elapsed)
    except Exception:
        logger.warning("Instrumentation hook attempt_finished failed", exc_info=True)

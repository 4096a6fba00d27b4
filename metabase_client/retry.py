"""Retry policy engine.

Pure decision logic, no I/O: whether an attempt's outcome should be retried
and how long to wait first. The executor owns the loop and the waiting.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Mapping

import httpx

from metabase_client.models import Jitter, RequestOptions, RetryPolicy


IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "PUT", "DELETE", "OPTIONS"})
RETRYABLE_STATUSES = frozenset({429, 502, 503, 504})

# 2**31 * base_delay is already far beyond any sane max_delay.
_MAX_SHIFT = 31


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of evaluating one attempt. delay is in seconds."""

    retry: bool
    delay: float = 0.0


STOP = RetryDecision(retry=False)


def is_idempotent_method(method: str) -> bool:
    return method.upper() in IDEMPOTENT_METHODS


def is_retry_eligible(method: str, options: RequestOptions) -> bool:
    """Idempotent methods always; POST only with a caller-supplied idempotency key."""
    if is_idempotent_method(method):
        return True
    return method.upper() == "POST" and options.idempotency_key is not None


def is_retryable_status(status: int) -> bool:
    return status in RETRYABLE_STATUSES


def is_retryable_transport_error(error: BaseException) -> bool:
    """Connect failures and timeouts are transient; other I/O failures are not."""
    return isinstance(error, (httpx.ConnectError, httpx.TimeoutException))


def next_delay(policy: RetryPolicy, attempt: int, rng: random.Random | None = None) -> float:
    """Backoff before retry number attempt+1: min(base * 2**attempt, max), jittered.

    Args:
        policy: The client's retry policy.
        attempt: 0-based count of retries already made.
        rng: Random source for full jitter (module random if None).

    Returns:
        Delay in seconds. Always 0 when the policy allows no retries.
    """
    if policy.max_retries == 0:
        return 0.0

    shift = min(max(attempt, 0), _MAX_SHIFT)
    delay = min(policy.base_delay * (1 << shift), policy.max_delay)

    if policy.jitter == Jitter.FULL:
        if delay <= 0:
            return 0.0
        return (rng or random).uniform(0.0, delay)
    return delay


def parse_retry_after(
    headers: Mapping[str, str] | httpx.Headers,
    now: datetime | None = None,
) -> float | None:
    """Resolve a Retry-After header to a delay in seconds.

    Delta-seconds ("120") are taken as is. An HTTP-date is converted to the
    time remaining from now, clamped at 0 for dates in the past. Anything
    else, including a missing or empty header, yields None.
    """
    value = _get_header(headers, "retry-after")
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None

    if value.isascii() and value.isdigit():
        return float(int(value))

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)

    current = now or datetime.now(timezone.utc)
    return max(0.0, (when - current).total_seconds())


def evaluate_response(
    policy: RetryPolicy,
    eligible: bool,
    attempts_made: int,
    status: int,
    headers: Mapping[str, str] | httpx.Headers,
    rng: random.Random | None = None,
) -> RetryDecision:
    """Decide whether a received response should be retried.

    A Retry-After header on a retryable response takes precedence over the
    computed backoff.
    """
    if not eligible or attempts_made >= policy.max_retries or not is_retryable_status(status):
        return STOP
    retry_after = parse_retry_after(headers)
    if retry_after is not None:
        return RetryDecision(retry=True, delay=retry_after)
    return RetryDecision(retry=True, delay=next_delay(policy, attempts_made, rng))


def evaluate_transport_error(
    policy: RetryPolicy,
    eligible: bool,
    attempts_made: int,
    error: BaseException,
    rng: random.Random | None = None,
) -> RetryDecision:
    """Decide whether an I/O failure should be retried."""
    if not eligible or attempts_made >= policy.max_retries:
        return STOP
    if not is_retryable_transport_error(error):
        return STOP
    return RetryDecision(retry=True, delay=next_delay(policy, attempts_made, rng))


def _get_header(headers: Mapping[str, str] | httpx.Headers, name: str) -> str | None:
    if isinstance(headers, httpx.Headers):
        return headers.get(name)
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None

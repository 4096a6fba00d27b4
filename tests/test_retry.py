"""Tests for the retry policy engine.

Tests cover:
- Method and idempotency-key eligibility
- Retryable statuses and transport errors
- Backoff growth, capping and jitter bounds
- Retry-After parsing (delta-seconds and HTTP-date)
- Response and transport-error decisions
"""

import random
from datetime import datetime, timezone

import httpx
import pytest
from hypothesis import given
from hypothesis import strategies as st

from metabase_client.models import Jitter, RequestOptions, RetryPolicy
from metabase_client.retry import (
    STOP,
    RetryDecision,
    evaluate_response,
    evaluate_transport_error,
    is_retry_eligible,
    is_retryable_status,
    is_retryable_transport_error,
    next_delay,
    parse_retry_after,
)

FIXED = RetryPolicy(max_retries=3, base_delay=0.1, max_delay=1.0, jitter=Jitter.NONE)
NOW = datetime(2024, 1, 1, 0, 0, 0, tzinfo=timezone.utc)


class TestEligibility:
    """Tests for is_retry_eligible."""

    @pytest.mark.parametrize("method", ["GET", "get", "HEAD", "PUT", "DELETE", "OPTIONS"])
    def test_idempotent_methods(self, method: str) -> None:
        assert is_retry_eligible(method, RequestOptions())

    def test_post_without_key(self) -> None:
        assert not is_retry_eligible("POST", RequestOptions())

    def test_post_with_key(self) -> None:
        assert is_retry_eligible("POST", RequestOptions(idempotency_key="k-1"))

    def test_patch_never_eligible(self) -> None:
        assert not is_retry_eligible("PATCH", RequestOptions(idempotency_key="k-1"))


class TestRetryableOutcomes:
    """Tests for status and transport error classification."""

    @pytest.mark.parametrize("status", [429, 502, 503, 504])
    def test_retryable_statuses(self, status: int) -> None:
        assert is_retryable_status(status)

    @pytest.mark.parametrize("status", [200, 400, 401, 404, 409, 500, 501])
    def test_non_retryable_statuses(self, status: int) -> None:
        assert not is_retryable_status(status)

    @pytest.mark.parametrize(
        "error",
        [
            httpx.ConnectError("refused"),
            httpx.ConnectTimeout("slow connect"),
            httpx.ReadTimeout("slow read"),
            httpx.PoolTimeout("pool"),
        ],
    )
    def test_connect_and_timeout_errors_retryable(self, error: Exception) -> None:
        assert is_retryable_transport_error(error)

    @pytest.mark.parametrize(
        "error",
        [httpx.ReadError("reset"), httpx.RemoteProtocolError("garbage"), ValueError("x")],
    )
    def test_other_errors_not_retryable(self, error: Exception) -> None:
        assert not is_retryable_transport_error(error)


class TestNextDelay:
    """Tests for next_delay backoff computation."""

    @pytest.mark.parametrize("attempt, expected", [(0, 0.1), (1, 0.2), (2, 0.4), (3, 0.8)])
    def test_exponential_growth(self, attempt: int, expected: float) -> None:
        assert next_delay(FIXED, attempt) == pytest.approx(expected)

    @pytest.mark.parametrize(
        "attempt, expected", [(0, 0.1), (1, 0.2), (2, 0.4), (3, 0.5), (10, 0.5)]
    )
    def test_clamped_sequence(self, attempt: int, expected: float) -> None:
        policy = RetryPolicy(base_delay=0.1, max_delay=0.5, jitter=Jitter.NONE)
        assert next_delay(policy, attempt) == pytest.approx(expected)

    @given(
        base=st.floats(min_value=0, max_value=5),
        cap=st.floats(min_value=0, max_value=60),
        retries=st.integers(min_value=1, max_value=40),
    )
    def test_non_decreasing_without_jitter(self, base: float, cap: float, retries: int) -> None:
        policy = RetryPolicy(max_retries=retries, base_delay=base, max_delay=cap, jitter=Jitter.NONE)
        delays = [next_delay(policy, attempt) for attempt in range(retries + 1)]
        assert delays == sorted(delays)
        assert all(delay <= cap for delay in delays)

    def test_capped_at_max_delay(self) -> None:
        assert next_delay(FIXED, 4) == pytest.approx(1.0)

    def test_huge_attempt_does_not_overflow(self) -> None:
        assert next_delay(FIXED, 10_000) == pytest.approx(1.0)

    def test_zero_when_retries_disabled(self) -> None:
        assert next_delay(RetryPolicy.disabled(), 0) == 0.0

    def test_full_jitter_uses_rng(self) -> None:
        policy = RetryPolicy(base_delay=0.5, max_delay=2.0, jitter=Jitter.FULL)
        expected = random.Random(7).uniform(0.0, 0.5)
        assert next_delay(policy, 0, random.Random(7)) == expected

    @given(
        attempt=st.integers(min_value=0, max_value=200),
        base=st.floats(min_value=0, max_value=10),
        cap=st.floats(min_value=0, max_value=10),
        jitter=st.sampled_from(list(Jitter)),
    )
    def test_delay_within_bounds(self, attempt: int, base: float, cap: float, jitter: Jitter) -> None:
        policy = RetryPolicy(max_retries=5, base_delay=base, max_delay=cap, jitter=jitter)
        delay = next_delay(policy, attempt, random.Random(attempt))
        assert 0.0 <= delay <= cap


class TestParseRetryAfter:
    """Tests for parse_retry_after."""

    def test_delta_seconds(self) -> None:
        assert parse_retry_after({"Retry-After": "120"}) == 120.0

    def test_delta_seconds_with_whitespace(self) -> None:
        assert parse_retry_after({"Retry-After": " 5 "}) == 5.0

    def test_header_lookup_is_case_insensitive(self) -> None:
        assert parse_retry_after({"RETRY-AFTER": "3"}) == 3.0
        assert parse_retry_after(httpx.Headers({"retry-after": "4"})) == 4.0

    def test_http_date_in_future(self) -> None:
        headers = {"Retry-After": "Mon, 01 Jan 2024 00:00:30 GMT"}
        assert parse_retry_after(headers, now=NOW) == 30.0

    def test_http_date_in_past_is_zero(self) -> None:
        headers = {"Retry-After": "Sun, 31 Dec 2023 23:59:00 GMT"}
        assert parse_retry_after(headers, now=NOW) == 0.0

    def test_epoch_is_zero(self) -> None:
        assert parse_retry_after({"Retry-After": "Thu, 01 Jan 1970 00:00:00 GMT"}) == 0.0

    @pytest.mark.parametrize("value", ["", "   ", "soon", "-5", "1.5"])
    def test_unparseable_is_none(self, value: str) -> None:
        assert parse_retry_after({"Retry-After": value}) is None

    def test_missing_is_none(self) -> None:
        assert parse_retry_after({}) is None


class TestEvaluateResponse:
    """Tests for evaluate_response decisions."""

    def test_retryable_status_uses_backoff(self) -> None:
        assert evaluate_response(FIXED, True, 1, 503, {}) == RetryDecision(retry=True, delay=0.2)

    def test_retry_after_takes_precedence(self) -> None:
        decision = evaluate_response(FIXED, True, 0, 429, {"Retry-After": "7"})
        assert decision == RetryDecision(retry=True, delay=7.0)

    def test_not_eligible(self) -> None:
        assert evaluate_response(FIXED, False, 0, 503, {}) == STOP

    def test_budget_exhausted(self) -> None:
        assert evaluate_response(FIXED, True, 3, 503, {}) == STOP

    @pytest.mark.parametrize("status", [200, 404, 500])
    def test_non_retryable_status(self, status: int) -> None:
        assert evaluate_response(FIXED, True, 0, status, {"Retry-After": "1"}) == STOP

    def test_disabled_policy_never_retries(self) -> None:
        assert evaluate_response(RetryPolicy.disabled(), True, 0, 503, {}) == STOP


class TestEvaluateTransportError:
    """Tests for evaluate_transport_error decisions."""

    def test_connect_error_retried(self) -> None:
        decision = evaluate_transport_error(FIXED, True, 0, httpx.ConnectError("refused"))
        assert decision == RetryDecision(retry=True, delay=0.1)

    def test_read_error_not_retried(self) -> None:
        assert evaluate_transport_error(FIXED, True, 0, httpx.ReadError("reset")) == STOP

    def test_not_eligible(self) -> None:
        assert evaluate_transport_error(FIXED, False, 0, httpx.ConnectError("refused")) == STOP

    def test_budget_exhausted(self) -> None:
        assert evaluate_transport_error(FIXED, True, 3, httpx.ConnectError("refused")) == STOP

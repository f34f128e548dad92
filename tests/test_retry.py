"""Tests for call_with_retry and error classification."""

from __future__ import annotations

import asyncio

import pytest

from chunkscribe.domain.errors import (
    FatalError, MalformedOutputError, PipelineCancelled, RetryableError, actionable_message, classify_error,
)
from chunkscribe.use_cases.concurrency import CancelToken
from chunkscribe.use_cases.retry import RetryPolicy, call_with_retry

FAST = RetryPolicy(max_attempts=3, base_delay=0.0, jitter=0.0)


def flaky(failures: list[Exception], value: str = "ok"):
    calls = {"count": 0}

    async def operation() -> str:
        calls["count"] += 1
        if failures:
            raise failures.pop(0)
        return value

    return operation, calls


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class TestClassifyError:
    def test_pipeline_errors_pass_through(self) -> None:
        error = FatalError("invalid_api_key")
        assert classify_error(error) is error

    def test_timeouts_are_retryable(self) -> None:
        assert isinstance(classify_error(asyncio.TimeoutError()), RetryableError)
        assert isinstance(classify_error(ConnectionResetError()), RetryableError)

    def test_transient_markers_are_retryable(self) -> None:
        assert isinstance(classify_error(RuntimeError("HTTP 503 Service Unavailable")), RetryableError)

    def test_unknown_errors_are_fatal(self) -> None:
        error = classify_error(ValueError("bad things"))
        assert isinstance(error, FatalError)
        assert error.code == "unknown"

    def test_cancelled_error_maps_to_pipeline_cancelled(self) -> None:
        assert isinstance(classify_error(asyncio.CancelledError()), PipelineCancelled)

    def test_malformed_output_is_retryable(self) -> None:
        assert isinstance(MalformedOutputError("not json"), RetryableError)

    def test_actionable_message_for_fatal_codes(self) -> None:
        message = actionable_message(FatalError("invalid_api_key"))
        assert "API key" in message


# ---------------------------------------------------------------------------
# Retry loop
# ---------------------------------------------------------------------------


class TestCallWithRetry:
    def test_recovers_from_transient_failures(self) -> None:
        operation, calls = flaky([RetryableError("503"), RetryableError("503")])
        assert asyncio.run(call_with_retry(operation, FAST)) == "ok"
        assert calls["count"] == 3

    def test_gives_up_after_max_attempts(self) -> None:
        operation, calls = flaky([RetryableError("503")] * 5)
        with pytest.raises(RetryableError):
            asyncio.run(call_with_retry(operation, FAST))
        assert calls["count"] == 3

    def test_fatal_errors_are_not_retried(self) -> None:
        operation, calls = flaky([FatalError("quota_exceeded")])
        with pytest.raises(FatalError):
            asyncio.run(call_with_retry(operation, FAST))
        assert calls["count"] == 1

    def test_unclassified_errors_surface_as_fatal(self) -> None:
        operation, calls = flaky([ValueError("schema mismatch")])
        with pytest.raises(FatalError):
            asyncio.run(call_with_retry(operation, FAST))
        assert calls["count"] == 1

    def test_cancel_during_backoff(self) -> None:
        operation, calls = flaky([RetryableError("503")] * 5)
        policy = RetryPolicy(max_attempts=3, base_delay=5.0, jitter=0.0)

        async def scenario() -> None:
            token = CancelToken()
            asyncio.get_running_loop().call_later(0.02, token.cancel)
            await asyncio.wait_for(call_with_retry(operation, policy, token), timeout=2)

        with pytest.raises(PipelineCancelled):
            asyncio.run(scenario())
        assert calls["count"] == 1

    def test_backoff_grows_exponentially(self) -> None:
        policy = RetryPolicy(base_delay=1.0, jitter=0.0)
        assert [policy.delay_for(a) for a in (1, 2, 3)] == [2.0, 4.0, 8.0]

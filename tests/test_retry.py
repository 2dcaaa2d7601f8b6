"""Tests for backoff calculation and the retry executor."""

from __future__ import annotations

import asyncio

import pytest

from gitbuddy.engine.cancellation import Cancellation
from gitbuddy.engine.errors import LLMAPIError
from gitbuddy.engine.models import RetryConfig
from gitbuddy.engine.retry import calculate_backoff, with_retry


class _Counter:
    def __init__(self, error: Exception | None = None, fail_times: int = 10**6) -> None:
        self.calls = 0
        self.error = error
        self.fail_times = fail_times

    async def __call__(self) -> str:
        self.calls += 1
        if self.error is not None and self.calls <= self.fail_times:
            raise self.error
        return "ok"


class TestBackoff:
    @pytest.mark.parametrize("attempt,expected", [(1, 1), (2, 2), (3, 4), (10, 8), (0, 1), (-3, 1)])
    def test_exponential_and_capped(self, attempt, expected):
        assert calculate_backoff(attempt, 1.0, 8.0) == expected


class TestWithRetry:
    async def test_success_first_try(self, no_wait_retry):
        op = _Counter()
        assert await with_retry(op, no_wait_retry) == "ok"
        assert op.calls == 1

    async def test_retryable_failure_runs_max_attempts_plus_one(self, no_wait_retry):
        err = LLMAPIError("service unavailable", status_code=503)
        op = _Counter(err)
        with pytest.raises(LLMAPIError) as exc_info:
            await with_retry(op, no_wait_retry)
        assert op.calls == 3
        assert exc_info.value is err
        assert exc_info.value.attempts == 3

    async def test_recovers_after_transient_failures(self, no_wait_retry):
        op = _Counter(TimeoutError("slow"), fail_times=2)
        assert await with_retry(op, no_wait_retry) == "ok"
        assert op.calls == 3

    async def test_non_retryable_failure_runs_once(self, no_wait_retry):
        op = _Counter(LLMAPIError("invalid api key", status_code=401))
        with pytest.raises(LLMAPIError):
            await with_retry(op, no_wait_retry)
        assert op.calls == 1

    async def test_unknown_failure_runs_once(self, no_wait_retry):
        op = _Counter(ValueError("odd"))
        with pytest.raises(ValueError):
            await with_retry(op, no_wait_retry)
        assert op.calls == 1

    async def test_disabled_runs_once(self):
        op = _Counter(TimeoutError("slow"))
        with pytest.raises(TimeoutError):
            await with_retry(op, RetryConfig(enabled=False))
        assert op.calls == 1

    async def test_zero_attempts_runs_once(self):
        op = _Counter(TimeoutError("slow"))
        with pytest.raises(TimeoutError):
            await with_retry(op, RetryConfig(max_attempts=0))
        assert op.calls == 1

    async def test_cancelled_before_first_attempt(self, no_wait_retry):
        cancellation = Cancellation()
        cancellation.cancel("interrupted by user")
        op = _Counter()
        with pytest.raises(asyncio.CancelledError):
            await with_retry(op, no_wait_retry, cancellation)
        assert op.calls == 0

    async def test_cancel_interrupts_backoff_sleep(self):
        cancellation = Cancellation()
        config = RetryConfig(max_attempts=3, backoff_base=30, backoff_max=30)
        op = _Counter(TimeoutError("slow"))

        async def cancel_soon():
            await asyncio.sleep(0.05)
            cancellation.cancel()

        canceller = asyncio.create_task(cancel_soon())
        with pytest.raises(asyncio.CancelledError):
            await with_retry(op, config, cancellation)
        await canceller
        assert op.calls == 1


class TestRetryConfig:
    def test_backoff_max_must_not_be_below_base(self):
        with pytest.raises(ValueError):
            RetryConfig(backoff_base=5, backoff_max=1)

    def test_negative_attempts_rejected(self):
        with pytest.raises(ValueError):
            RetryConfig(max_attempts=-1)

"""Tests for the error classifier."""

from __future__ import annotations

import asyncio
import errno
import socket

import pytest

from gitbuddy.engine.errors import (
    ErrorType,
    LLMAPIError,
    LLMConnectionError,
    SessionNotFoundError,
    classify_error,
    classify_status,
    is_retryable,
)


class _StatusError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


class _Response:
    def __init__(self, status_code: int) -> None:
        self.status_code = status_code


class _ResponseError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__("request failed")
        self.response = _Response(status_code)


class TestClassifyStatus:
    @pytest.mark.parametrize("status", [429, 500, 502, 503, 504, 599])
    def test_retryable_statuses(self, status):
        assert classify_status(status) == ErrorType.RETRYABLE

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 409, 422])
    def test_non_retryable_statuses(self, status):
        assert classify_status(status) == ErrorType.NON_RETRYABLE

    def test_non_error_status_is_unknown(self):
        assert classify_status(302) == ErrorType.UNKNOWN


class TestClassifyError:
    def test_none_is_non_retryable(self):
        assert classify_error(None) == ErrorType.NON_RETRYABLE

    def test_cancellation_is_non_retryable(self):
        assert classify_error(asyncio.CancelledError()) == ErrorType.NON_RETRYABLE

    def test_timeouts_are_retryable(self):
        assert classify_error(asyncio.TimeoutError()) == ErrorType.RETRYABLE
        assert classify_error(TimeoutError("deadline exceeded")) == ErrorType.RETRYABLE

    def test_network_errors_are_retryable(self):
        assert classify_error(ConnectionResetError("reset by peer")) == ErrorType.RETRYABLE
        assert classify_error(socket.gaierror("name resolution failed")) == ErrorType.RETRYABLE
        assert classify_error(OSError(errno.ECONNREFUSED, "refused")) == ErrorType.RETRYABLE
        assert classify_error(LLMConnectionError("connection error")) == ErrorType.RETRYABLE

    def test_status_code_attribute(self):
        assert classify_error(LLMAPIError("rate limited", status_code=429)) == ErrorType.RETRYABLE
        assert classify_error(LLMAPIError("bad key", status_code=401)) == ErrorType.NON_RETRYABLE
        assert classify_error(_StatusError(503)) == ErrorType.RETRYABLE
        assert classify_error(_ResponseError(404)) == ErrorType.NON_RETRYABLE

    @pytest.mark.parametrize("text", [
        "This model's maximum context length is 8192 tokens",
        "context_length_exceeded",
        "request exceeds token limit",
        "tokens exceeded for this model",
    ])
    def test_context_window_overflow_is_never_retried(self, text):
        assert classify_error(LLMAPIError(text, status_code=503)) == ErrorType.NON_RETRYABLE
        assert classify_error(TimeoutError(text)) == ErrorType.NON_RETRYABLE

    def test_timeout_text_fallback(self):
        assert classify_error(RuntimeError("upstream Timeout while reading")) == ErrorType.RETRYABLE

    def test_anything_else_is_unknown_and_not_retried(self):
        err = ValueError("something odd")
        assert classify_error(err) == ErrorType.UNKNOWN
        assert not is_retryable(err)


class TestExceptionTypes:
    def test_session_not_found_is_a_key_error(self):
        err = SessionNotFoundError("chat-2025-01-01-000000-abcd")
        assert isinstance(err, KeyError)
        assert str(err) == "session not found: chat-2025-01-01-000000-abcd"

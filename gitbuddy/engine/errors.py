"""Exception hierarchy and the retry error classifier.

``classify_error`` is a pure function: it inspects an exception and
decides whether the retry executor may try the operation again.

    Retryable      timeouts, network failures, 429 and 5xx responses
    NonRetryable   cancellation, 4xx responses, context-window overflow
    Unknown        anything else; treated as not retryable
"""

from __future__ import annotations

import asyncio
import errno
import socket
from enum import Enum


class GitBuddyError(Exception):
    """Base class for every error raised by gitbuddy."""


class ConfigError(GitBuddyError):
    pass


class LLMAPIError(GitBuddyError):
    """An HTTP-level failure reported by the model provider."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LLMConnectionError(GitBuddyError, ConnectionError):
    pass


class ToolError(GitBuddyError):
    pass


class ToolNotFoundError(ToolError):
    def __init__(self, name: str) -> None:
        super().__init__(f"unknown tool: {name}")
        self.name = name


class IterationBudgetExhausted(GitBuddyError):
    def __init__(self, max_iterations: int) -> None:
        super().__init__(f"agent loop exceeded maximum iterations ({max_iterations})")
        self.max_iterations = max_iterations


class NoStructuredOutputError(GitBuddyError):
    """The model answered in free text where a terminal tool call was required."""


class SessionNotFoundError(GitBuddyError, KeyError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"session not found: {session_id}")
        self.session_id = session_id

    def __str__(self) -> str:
        return str(self.args[0])


class GitError(GitBuddyError):
    def __init__(self, message: str, stderr: str = "") -> None:
        super().__init__(message)
        self.stderr = stderr


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

class ErrorType(str, Enum):
    RETRYABLE = "retryable"
    NON_RETRYABLE = "non_retryable"
    UNKNOWN = "unknown"


_CONTEXT_LIMIT_PHRASES = (
    "context length",
    "context_length",
    "maximum context",
    "token limit",
    "tokens exceeded",
)

_RETRYABLE_STATUS = {429, 502, 503, 504}
_NON_RETRYABLE_STATUS = {400, 401, 403, 404}

_NETWORK_ERRNOS = {
    errno.ECONNRESET,
    errno.ECONNREFUSED,
    errno.ECONNABORTED,
    errno.ENETUNREACH,
    errno.EHOSTUNREACH,
    errno.ETIMEDOUT,
    errno.EPIPE,
}


def classify_status(status_code: int) -> ErrorType:
    if status_code in _RETRYABLE_STATUS:
        return ErrorType.RETRYABLE
    if status_code in _NON_RETRYABLE_STATUS:
        return ErrorType.NON_RETRYABLE
    if status_code >= 500:
        return ErrorType.RETRYABLE
    if status_code >= 400:
        return ErrorType.NON_RETRYABLE
    return ErrorType.UNKNOWN


def _status_code_of(err: BaseException) -> int | None:
    for attr in ("status_code", "http_status"):
        value = getattr(err, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(err, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int):
        return value
    return None


def _is_network_error(err: BaseException) -> bool:
    if isinstance(err, (ConnectionError, socket.gaierror, socket.herror)):
        return True
    return isinstance(err, OSError) and err.errno in _NETWORK_ERRNOS


def classify_error(err: BaseException | None) -> ErrorType:
    if err is None:
        return ErrorType.NON_RETRYABLE

    if isinstance(err, asyncio.CancelledError):
        return ErrorType.NON_RETRYABLE

    message = str(err).lower()

    # An oversized prompt stays oversized however often it is resent.
    if any(phrase in message for phrase in _CONTEXT_LIMIT_PHRASES):
        return ErrorType.NON_RETRYABLE

    if isinstance(err, (asyncio.TimeoutError, TimeoutError)):
        return ErrorType.RETRYABLE

    if _is_network_error(err):
        return ErrorType.RETRYABLE

    status = _status_code_of(err)
    if status is not None:
        return classify_status(status)

    if "timeout" in message:
        return ErrorType.RETRYABLE

    return ErrorType.UNKNOWN


def is_retryable(err: BaseException | None) -> bool:
    return classify_error(err) == ErrorType.RETRYABLE

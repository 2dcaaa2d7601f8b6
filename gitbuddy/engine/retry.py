"""Classification-driven retry with bounded exponential backoff."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

from gitbuddy.engine.cancellation import Cancellation
from gitbuddy.engine.errors import ErrorType, classify_error
from gitbuddy.engine.models import RetryConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


def calculate_backoff(attempt: int, base: float, maximum: float) -> float:
    """Return ``min(base * 2**(attempt-1), maximum)`` seconds, attempt clamped to >= 1."""
    attempt = max(attempt, 1)
    return min(base * (2 ** (attempt - 1)), maximum)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig,
    cancellation: Cancellation | None = None,
) -> T:
    """Run ``operation`` up to ``max_attempts + 1`` times.

    Only errors classified as retryable are retried; the last error is
    re-raised with an ``attempts`` attribute once the budget is spent.
    """
    cancellation = cancellation or Cancellation()

    if not config.enabled or config.max_attempts <= 0:
        cancellation.check()
        return await operation()

    total = config.max_attempts + 1
    for attempt in range(1, total + 1):
        cancellation.check()
        try:
            return await operation()
        except Exception as exc:
            kind = classify_error(exc)
            if kind != ErrorType.RETRYABLE:
                logger.debug("attempt=%d error=%s kind=%s, not retrying", attempt, exc, kind.value)
                raise
            if attempt == total:
                exc.attempts = attempt  # type: ignore[attr-defined]
                logger.warning("giving up after %d attempts: %s", attempt, exc)
                raise
            delay = calculate_backoff(attempt, config.backoff_base, config.backoff_max)
            logger.warning("attempt=%d error=%s backoff=%.2fs", attempt, exc, delay)
            await cancellation.sleep(delay)

    raise AssertionError("unreachable")  # pragma: no cover

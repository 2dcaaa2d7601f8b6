"""Cooperative cancellation token shared by the host and the agent loop."""

from __future__ import annotations

import asyncio


class Cancellation:
    """Set once by the interrupt listener, observed by the running loop.

    ``check()`` and ``sleep()`` raise :class:`asyncio.CancelledError`, the
    same exception task cancellation produces, so callers handle both
    paths with one ``except`` clause.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def check(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError(self.reason)

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless cancelled first."""
        self.check()
        if seconds <= 0:
            await asyncio.sleep(0)
            self.check()
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise asyncio.CancelledError(self.reason)

    async def wait(self) -> None:
        await self._event.wait()

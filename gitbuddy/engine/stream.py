"""Stream accumulator: folds streamed deltas into one assistant message.

Models stream tool-call arguments a few tokens at a time, so the JSON is
only valid once every fragment for an ``index`` has been concatenated.
The accumulator owns that reassembly; progress display is the caller's
business (see ``accumulate(on_delta=...)``).
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Callable

from gitbuddy.engine.cancellation import Cancellation
from gitbuddy.engine.models import (
    AccumulatedResponse,
    Message,
    StreamDelta,
    TokenUsage,
    ToolCallDelta,
    ToolCallRequest,
)

logger = logging.getLogger(__name__)


class StreamAccumulator:
    def __init__(self) -> None:
        self._content: list[str] = []
        self._slots: list[ToolCallRequest | None] = []
        self._usage = TokenUsage()

    @property
    def content(self) -> str:
        return "".join(self._content)

    @property
    def usage(self) -> TokenUsage:
        return self._usage.model_copy()

    def feed(self, delta: StreamDelta) -> None:
        if delta.content:
            self._content.append(delta.content)
        for fragment in delta.tool_calls:
            self._feed_tool_call(fragment)
        if delta.usage is not None:
            self._usage.observe(delta.usage)

    def _feed_tool_call(self, fragment: ToolCallDelta) -> None:
        idx = max(fragment.index, 0)
        while len(self._slots) <= idx:
            self._slots.append(None)
        slot = self._slots[idx]
        if slot is None:
            slot = ToolCallRequest(index=idx)
            self._slots[idx] = slot
        if fragment.id and not slot.id:
            slot.id = fragment.id
        if fragment.name and not slot.name:
            slot.name = fragment.name
        if fragment.arguments:
            slot.arguments += fragment.arguments

    def tool_calls(self) -> list[ToolCallRequest]:
        """Fully-formed calls in index order; nameless slots are dropped."""
        calls: list[ToolCallRequest] = []
        for slot in self._slots:
            if slot is None or not slot.name:
                continue
            call = slot.model_copy()
            if not call.id:
                # Some OpenAI-compatible backends never send an id.
                call.id = f"call_{call.index}"
            calls.append(call)
        dropped = sum(1 for s in self._slots if s is not None and not s.name)
        if dropped:
            logger.debug("dropped %d tool-call slot(s) without a name", dropped)
        return calls

    def result(self) -> AccumulatedResponse:
        return AccumulatedResponse(
            message=Message.assistant(self.content, self.tool_calls()),
            usage=self.usage,
        )


async def accumulate(
    stream: AsyncIterator[StreamDelta],
    on_delta: Callable[[StreamDelta], None] | None = None,
    cancellation: Cancellation | None = None,
) -> AccumulatedResponse:
    """Drain ``stream`` and return the assembled response.

    A mid-stream error or cancellation propagates and the partial state
    is discarded with the accumulator.
    """
    acc = StreamAccumulator()
    try:
        async for delta in stream:
            if cancellation is not None:
                cancellation.check()
            acc.feed(delta)
            if on_delta is not None:
                on_delta(delta)
    finally:
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()
    return acc.result()

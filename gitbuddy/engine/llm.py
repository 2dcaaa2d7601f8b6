"""LLM client: ABC, OpenAI streaming implementation, and a scripted mock."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Sequence, Union

from gitbuddy.engine.errors import LLMAPIError, LLMConnectionError
from gitbuddy.engine.models import Message, StreamDelta, TokenUsage, ToolCallDelta

logger = logging.getLogger(__name__)


class LLMClient(ABC):
    """Streaming chat interface.

    ``stream_chat`` returns a lazy, finite, non-restartable sequence of
    deltas; the caller folds them with :func:`gitbuddy.engine.stream.accumulate`.
    """

    model: str = ""

    @abstractmethod
    def stream_chat(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[StreamDelta]: ...


# ---------------------------------------------------------------------------
# OpenAI implementation (also serves OpenAI-compatible endpoints)
# ---------------------------------------------------------------------------

class OpenAILLMClient(LLMClient):
    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        timeout: float = 300.0,
    ) -> None:
        # Late import so the rest of the package works without openai installed
        from openai import AsyncOpenAI

        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)
        self.model = model

    async def stream_chat(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[StreamDelta]:
        import openai

        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_openai() for m in messages],
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            kwargs["tools"] = tools

        try:
            stream = await self._client.chat.completions.create(**kwargs)
            async for chunk in stream:
                yield _delta_from_chunk(chunk)
        except openai.APITimeoutError as exc:
            raise TimeoutError(f"model request timed out: {exc}") from exc
        except openai.APIConnectionError as exc:
            raise LLMConnectionError(f"connection error: {exc}") from exc
        except openai.APIStatusError as exc:
            raise LLMAPIError(str(exc), status_code=exc.status_code) from exc


def _delta_from_chunk(chunk: Any) -> StreamDelta:
    delta = StreamDelta()
    if chunk.choices:
        choice_delta = chunk.choices[0].delta
        if choice_delta is not None:
            delta.content = choice_delta.content or ""
            for tc in choice_delta.tool_calls or []:
                fn = tc.function
                delta.tool_calls.append(ToolCallDelta(
                    index=tc.index or 0,
                    id=tc.id or "",
                    name=(fn.name if fn else None) or "",
                    arguments=(fn.arguments if fn else None) or "",
                ))
    usage = getattr(chunk, "usage", None)
    if usage is not None:
        delta.usage = TokenUsage(
            prompt_tokens=usage.prompt_tokens or 0,
            completion_tokens=usage.completion_tokens or 0,
            total_tokens=usage.total_tokens or 0,
        )
    return delta


# ---------------------------------------------------------------------------
# Test mock: deterministic, pre-scripted delta streams
# ---------------------------------------------------------------------------

ScriptItem = Union[StreamDelta, BaseException]
Script = Union[Sequence[ScriptItem], BaseException]


def text_script(text: str, usage: TokenUsage | None = None, chunk_size: int = 8) -> list[StreamDelta]:
    """Script that streams ``text`` in ``chunk_size`` pieces."""
    deltas = [StreamDelta(content=text[i:i + chunk_size]) for i in range(0, len(text), chunk_size)]
    if usage is not None:
        deltas.append(StreamDelta(usage=usage))
    return deltas


def tool_call_script(
    name: str,
    arguments: dict[str, Any] | str,
    call_id: str = "call_1",
    index: int = 0,
    usage: TokenUsage | None = None,
    chunk_size: int = 6,
) -> list[StreamDelta]:
    """Script that streams one tool call with its arguments split into fragments."""
    raw = arguments if isinstance(arguments, str) else json.dumps(arguments)
    deltas = [StreamDelta(tool_calls=[ToolCallDelta(index=index, id=call_id, name=name)])]
    for i in range(0, len(raw), chunk_size):
        deltas.append(StreamDelta(tool_calls=[ToolCallDelta(index=index, arguments=raw[i:i + chunk_size])]))
    if usage is not None:
        deltas.append(StreamDelta(usage=usage))
    return deltas


class MockLLMClient(LLMClient):
    """Replays pre-configured scripts in order. Used in unit tests.

    A script is a list of deltas (an exception inside the list is raised
    mid-stream) or a bare exception raised before the first delta.
    """

    model = "mock"

    def __init__(self, scripts: list[Script]) -> None:
        self._scripts = list(scripts)
        self._call_index = 0
        self.calls: list[dict[str, Any]] = []

    async def stream_chat(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[StreamDelta]:
        self.calls.append({
            "messages": [m.model_copy(deep=True) for m in messages],
            "tools": tools,
        })
        if self._call_index >= len(self._scripts):
            script: Script = text_script("[mock responses exhausted]")
        else:
            script = self._scripts[self._call_index]
        self._call_index += 1

        if isinstance(script, BaseException):
            raise script
        for item in script:
            if isinstance(item, BaseException):
                raise item
            yield item

    @property
    def call_count(self) -> int:
        return self._call_index

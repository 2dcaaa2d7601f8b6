"""History pipeline: composable transforms over the message list.

Each transform is a plain callable ``list[Message] -> list[Message]`` that
returns a new list and never mutates the messages it was given. Transforms
compose left to right with :class:`HistoryPipeline`.
"""

from __future__ import annotations

import logging
import math
from typing import Callable, Iterable

from gitbuddy.engine.models import Message, Role

logger = logging.getLogger(__name__)

Transform = Callable[[list[Message]], list[Message]]

RECENT_CONTEXT_MARKER = "[RECENT CONTEXT STARTS HERE]\n\n"


class HistoryPipeline:
    """Ordered list of transforms; later transforms see earlier output."""

    def __init__(self, transforms: Iterable[Transform | None] = ()) -> None:
        self._transforms: list[Transform] = [t for t in transforms if t is not None]

    def __call__(self, messages: list[Message]) -> list[Message]:
        result = list(messages)
        for transform in self._transforms:
            result = transform(result)
        return result

    def then(self, *transforms: Transform | None) -> HistoryPipeline:
        return HistoryPipeline([*self._transforms, *transforms])

    def __len__(self) -> int:
        return len(self._transforms)


def chain(*transforms: Transform | None) -> HistoryPipeline:
    return HistoryPipeline(transforms)


# ---------------------------------------------------------------------------
# Token estimation
# ---------------------------------------------------------------------------

_CJK_RANGES = (
    (0x3400, 0x4DBF),
    (0x4E00, 0x9FFF),
    (0xF900, 0xFAFF),
    (0x20000, 0x2A6DF),
    (0x2A700, 0x2EBEF),
)


def _is_cjk(ch: str) -> bool:
    code = ord(ch)
    return any(lo <= code <= hi for lo, hi in _CJK_RANGES)


def estimate_tokens(text: str) -> int:
    """Cheap heuristic: ~1.5 chars/token for CJK ideographs, ~4 otherwise."""
    if not text:
        return 0
    cjk = sum(1 for ch in text if _is_cjk(ch))
    other = len(text) - cjk
    return max(1, math.ceil(cjk / 1.5 + other / 4))


def estimate_message_tokens(message: Message) -> int:
    tokens = estimate_tokens(message.content)
    for call in message.tool_calls:
        tokens += estimate_tokens(call.name) + estimate_tokens(call.arguments)
    return tokens


# ---------------------------------------------------------------------------
# Transforms
# ---------------------------------------------------------------------------

def limit_tokens(max_tokens: int) -> Transform:
    """Keep the system and first user message, then the newest messages that fit."""

    def transform(messages: list[Message]) -> list[Message]:
        if len(messages) <= 2:
            return list(messages)
        if sum(estimate_message_tokens(m) for m in messages) <= max_tokens:
            return list(messages)

        pinned: list[int] = []
        if messages[0].role == Role.SYSTEM:
            pinned.append(0)
        first_user = next((i for i, m in enumerate(messages) if m.role == Role.USER), None)
        if first_user is not None:
            pinned.append(first_user)

        budget = max_tokens - sum(estimate_message_tokens(messages[i]) for i in pinned)
        kept: list[int] = []
        for i in range(len(messages) - 1, -1, -1):
            if i in pinned:
                continue
            cost = estimate_message_tokens(messages[i])
            if cost > budget:
                break
            kept.append(i)
            budget -= cost

        keep = set(pinned) | set(kept)
        result = [m for i, m in enumerate(messages) if i in keep]
        logger.debug("token limit %d: %d -> %d messages", max_tokens, len(messages), len(result))
        return result

    return transform


def filter_tool_results(keep_tools: Iterable[str]) -> Transform:
    """Drop tool calls (and their results) whose tool is not in ``keep_tools``."""
    keep = set(keep_tools)

    def transform(messages: list[Message]) -> list[Message]:
        if not keep:
            return list(messages)

        kept_ids = {
            tc.id
            for m in messages
            if m.role == Role.ASSISTANT
            for tc in m.tool_calls
            if tc.name in keep
        }

        result: list[Message] = []
        for m in messages:
            if m.role in (Role.SYSTEM, Role.USER):
                result.append(m)
            elif m.role == Role.ASSISTANT:
                if not m.tool_calls:
                    result.append(m)
                    continue
                calls = [tc for tc in m.tool_calls if tc.id in kept_ids]
                if calls:
                    result.append(m.model_copy(update={"tool_calls": calls}))
            elif m.role == Role.TOOL:
                if m.tool_call_id in kept_ids:
                    result.append(m)
        return result

    return transform


def summarize_tool_results(max_length: int) -> Transform:
    """Truncate long tool results; the cut is permanent once persisted."""

    def transform(messages: list[Message]) -> list[Message]:
        result: list[Message] = []
        for m in messages:
            if m.role == Role.TOOL and len(m.content) > max_length:
                elided = len(m.content) - max_length
                content = (
                    f"{m.content[:max_length]}\n\n"
                    f"[... {elided} more characters truncated for brevity ...]"
                )
                result.append(m.model_copy(update={"content": content}))
            else:
                result.append(m)
        return result

    return transform


def highlight_recent(recent_count: int) -> Transform:
    """Prefix the first user/assistant message of the last ``recent_count`` with a marker."""

    def transform(messages: list[Message]) -> list[Message]:
        if recent_count <= 0 or len(messages) <= recent_count:
            return list(messages)
        result = list(messages)
        for i in range(len(result) - recent_count, len(result)):
            m = result[i]
            if m.role in (Role.USER, Role.ASSISTANT):
                result[i] = m.model_copy(update={"content": RECENT_CONTEXT_MARKER + m.content})
                break
        return result

    return transform


def deduplicate(messages: list[Message]) -> list[Message]:
    """Collapse consecutive messages with equal role, content and tool-call count.

    Tool results answering different calls are never merged.
    """
    result: list[Message] = []
    for m in messages:
        if result:
            prev = result[-1]
            if (
                prev.role == m.role
                and prev.content == m.content
                and len(prev.tool_calls) == len(m.tool_calls)
                and prev.tool_call_id == m.tool_call_id
            ):
                continue
        result.append(m)
    return result


def add_system_context(context_fn: Callable[[list[Message]], str]) -> Transform:
    """Append ``context_fn(messages)`` to the leading system message (not persisted)."""

    def transform(messages: list[Message]) -> list[Message]:
        if not messages:
            return []
        result = list(messages)
        if result[0].role != Role.SYSTEM:
            return result
        extra = context_fn(messages)
        if not extra:
            return result
        result[0] = result[0].model_copy(update={"content": f"{result[0].content}\n\n{extra}"})
        return result

    return transform


def progress_context(
    iteration: int,
    max_iterations: int,
    task_counts: Callable[[], dict[str, int]] | None = None,
    current_tasks: Callable[[], list[str]] | None = None,
) -> Transform:
    """Inject the current iteration and plan progress into the system message."""

    def build(messages: list[Message]) -> str:
        lines = [
            "## Current Progress",
            "",
            f"- Iteration: {iteration} / {max_iterations}",
            f"- Messages in history: {len(messages)}",
        ]
        if task_counts is not None:
            counts = task_counts()
            if sum(counts.values()):
                lines.append(
                    f"- Tasks: {counts.get('completed', 0)} completed, "
                    f"{counts.get('in_progress', 0)} in progress, "
                    f"{counts.get('pending', 0)} pending"
                )
        if current_tasks is not None:
            active = current_tasks()
            if active:
                lines.append("")
                lines.append("Current task(s):")
                lines.extend(f"  - {desc}" for desc in active)
        return "\n".join(lines)

    return add_system_context(build)


def needs_compression(messages: list[Message], threshold: int) -> bool:
    return len(messages) > threshold


def compress(messages: list[Message], keep_recent: int) -> list[Message]:
    """Keep every system message plus the ``keep_recent`` newest other messages."""
    others = [i for i, m in enumerate(messages) if m.role != Role.SYSTEM]
    recent = set(others[-keep_recent:]) if keep_recent > 0 else set()
    return [m for i, m in enumerate(messages) if m.role == Role.SYSTEM or i in recent]


def compress_when(threshold: int, keep_recent: int) -> Transform:
    def transform(messages: list[Message]) -> list[Message]:
        if not needs_compression(messages, threshold):
            return list(messages)
        result = compress(messages, keep_recent)
        logger.info("history compressed (%d -> %d messages)", len(messages), len(result))
        return result

    return transform


def repair_tool_pairs(messages: list[Message]) -> list[Message]:
    """Drop orphaned tool results and tool calls that never got a result.

    Tool results must follow the assistant message that requested them;
    providers reject a conversation that violates this.
    """
    answered = {m.tool_call_id for m in messages if m.role == Role.TOOL}
    requested: set[str] = set()
    result: list[Message] = []
    for m in messages:
        if m.role == Role.ASSISTANT and m.tool_calls:
            calls = [tc for tc in m.tool_calls if tc.id in answered]
            if len(calls) != len(m.tool_calls):
                if not calls and not m.content:
                    continue
                m = m.model_copy(update={"tool_calls": calls})
            requested.update(tc.id for tc in calls)
            result.append(m)
        elif m.role == Role.TOOL:
            if m.tool_call_id in requested:
                result.append(m)
        else:
            result.append(m)
    return result

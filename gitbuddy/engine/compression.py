"""History compression strategies used by the agent loop between iterations."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum

from gitbuddy.engine.history import compress, needs_compression, repair_tool_pairs
from gitbuddy.engine.llm import LLMClient
from gitbuddy.engine.models import Message, Role, TokenUsage
from gitbuddy.engine.stream import accumulate

logger = logging.getLogger(__name__)

SUMMARY_PREFIX = "[Previous Session Summary]"

_SUMMARY_REQUEST = (
    "Please summarize the following session history. Focus on:\n"
    "1. Key findings and observations\n"
    "2. Important tool results and their implications\n"
    "3. Decisions made and reasoning\n"
    "4. Current understanding of the task\n\n"
    "Keep the summary concise but preserve all critical information.\n\n"
    "History to summarize:\n---\n"
)

_IMPORTANT_MARKERS = ("error", "Error", "failed", "Failed", ".go:", ".py:", ".js:", ".ts:")
_IMPORTANT_PREFIXES = ("func ", "type ", "class ", "def ")
_ANALYSIS_WORDS = ("found", "discovered", "issue", "problem", "conclusion", "summary")


class CompressionStrategy(str, Enum):
    TRUNCATE = "truncate"
    SUMMARIZE = "summarize"


@dataclass
class CompressionResult:
    messages: list[Message]
    before: int
    after: int
    summary: str = ""
    usage: TokenUsage = field(default_factory=TokenUsage)

    @property
    def compressed(self) -> bool:
        return self.after < self.before


def _clip(text: str, limit: int) -> str:
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class HistoryCompressor:
    """Bound the conversation once it grows past ``threshold`` messages.

    ``truncate`` keeps every system message plus the ``keep_recent`` newest
    messages. ``summarize`` keeps the system message, the first user
    message (the task), a summary of the dropped middle and the recent
    window; the summary comes from the model and falls back to a
    rule-based digest when that call fails.
    """

    def __init__(
        self,
        threshold: int = 20,
        keep_recent: int = 10,
        strategy: CompressionStrategy | str = CompressionStrategy.TRUNCATE,
        llm: LLMClient | None = None,
    ) -> None:
        self.threshold = threshold
        self.keep_recent = keep_recent
        self.strategy = CompressionStrategy(strategy)
        self._llm = llm

    def needed(self, messages: list[Message]) -> bool:
        return needs_compression(messages, self.threshold)

    async def compress(self, messages: list[Message]) -> CompressionResult:
        before = len(messages)
        if not self.needed(messages):
            return CompressionResult(list(messages), before, before)

        if self.strategy == CompressionStrategy.SUMMARIZE:
            result = await self._summarize(messages)
        else:
            result = CompressionResult(compress(messages, self.keep_recent), before, 0)

        result.messages = repair_tool_pairs(result.messages)
        result.after = len(result.messages)
        logger.info(
            "history compressed strategy=%s (%d -> %d messages)",
            self.strategy.value, result.before, result.after,
        )
        return result

    # ------------------------------------------------------------------
    # Summarize strategy
    # ------------------------------------------------------------------

    async def _summarize(self, messages: list[Message]) -> CompressionResult:
        before = len(messages)
        head_end = self._head_end(messages)
        if before <= head_end + self.keep_recent:
            return CompressionResult(list(messages), before, before)

        head = messages[:head_end]
        old = messages[head_end:before - self.keep_recent]
        recent = messages[before - self.keep_recent:]

        usage = TokenUsage()
        summary = ""
        if self._llm is not None:
            try:
                summary, usage = await self._llm_summary(old)
            except Exception as exc:
                logger.warning("summary generation failed, using rule-based digest: %s", exc)
                summary = ""

        if summary:
            content = f"{SUMMARY_PREFIX}\n{summary}\n\n[Continuing from here...]"
        else:
            summary = rule_based_summary(old)
            content = summary

        compressed = [*head, Message.user(content), *recent]
        return CompressionResult(compressed, before, 0, summary=summary, usage=usage)

    @staticmethod
    def _head_end(messages: list[Message]) -> int:
        """Index just past the pinned prefix (system message + first user message)."""
        end = 0
        if messages and messages[0].role == Role.SYSTEM:
            end = 1
        if len(messages) > end and messages[end].role == Role.USER:
            end += 1
        return end

    async def _llm_summary(self, old: list[Message]) -> tuple[str, TokenUsage]:
        assert self._llm is not None
        response = await accumulate(self._llm.stream_chat([Message.user(summary_request(old))], None))
        text = response.message.content.strip()
        if not text:
            raise ValueError("empty summary generated")
        return text, response.usage


def summary_request(old: list[Message]) -> str:
    parts = [_SUMMARY_REQUEST]
    for m in old:
        if m.role == Role.USER:
            parts.append(f"USER: {m.content}\n")
        elif m.role == Role.ASSISTANT:
            parts.append(f"ASSISTANT: {m.content}\n")
            if m.tool_calls:
                parts.append("  Tool calls: " + ", ".join(tc.name for tc in m.tool_calls) + "\n")
        elif m.role == Role.TOOL:
            content = m.content
            if len(content) > 500:
                content = content[:500] + "... (truncated)"
            parts.append(f"TOOL RESULT: {content}\n")
    parts.append("---\n")
    return "".join(parts)


def rule_based_summary(old: list[Message]) -> str:
    """Digest of the dropped messages: tools used, paths touched, key findings."""
    tool_usage: dict[str, list[str]] = {}
    paths: list[str] = []
    findings: list[str] = []

    for m in old:
        if m.role == Role.ASSISTANT:
            for tc in m.tool_calls:
                try:
                    params = json.loads(tc.arguments) if tc.arguments else {}
                except json.JSONDecodeError:
                    params = {}
                if not isinstance(params, dict):
                    params = {}
                for key in ("file_path", "directory", "path"):
                    value = params.get(key)
                    if isinstance(value, str) and value and value not in paths:
                        paths.append(value)
                brief = tc.name
                pattern = params.get("pattern")
                if isinstance(pattern, str) and pattern:
                    brief += f" (pattern: {pattern})"
                tool_usage.setdefault(tc.name, []).append(brief)
            if m.content and any(w in m.content for w in _ANALYSIS_WORDS):
                findings.append(_clip(m.content, 200))
        elif m.role == Role.TOOL and m.content:
            if len(m.content) > 500:
                important = []
                for line in m.content.splitlines():
                    line = line.strip()
                    if any(k in line for k in _IMPORTANT_MARKERS) or line.startswith(_IMPORTANT_PREFIXES):
                        important.append(line)
                        if len(important) >= 5:
                            break
                if important:
                    findings.append("\n  ".join(important))
            else:
                findings.append(_clip(m.content, 200))

    out = [f"[Note: {len(old)} earlier messages were compressed for context management]\n\n"]
    out.append("=== Summary of Earlier Investigation ===\n\n")

    if tool_usage:
        out.append("## Tools Used:\n")
        total = 0
        for name, calls in tool_usage.items():
            out.append(f"- {name}: {len(calls)} calls\n")
            total += len(calls)
            for i, call in enumerate(calls):
                if i >= 3:
                    out.append(f"  ... and {len(calls) - i} more\n")
                    break
                out.append(f"  • {call}\n")
        out.append(f"\nTotal tool calls: {total}\n\n")

    if paths:
        out.append("## Files/Directories Investigated:\n")
        for i, path in enumerate(paths):
            if i >= 10:
                out.append(f"... and {len(paths) - i} more\n")
                break
            out.append(f"- {path}\n")
        out.append("\n")

    if findings:
        out.append("## Key Findings & Analysis:\n")
        for i, finding in enumerate(findings):
            if i >= 8:
                out.append(f"... and {len(findings) - i} more findings\n")
                break
            out.append(f"{i + 1}. {finding}\n\n")

    out.append("=== End of Summary ===\n")
    out.append("\nContinuing with recent context...\n")
    return "".join(out)

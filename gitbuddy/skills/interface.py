"""Skill ABC: prompts, tool allowlist, terminal tool and output policy of one agent type."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable

from gitbuddy.engine.history import Transform, summarize_tool_results
from gitbuddy.engine.models import AgentRequest

LANGUAGE_NAMES = {
    "en": "English",
    "zh": "Chinese",
    "ja": "Japanese",
    "ko": "Korean",
    "de": "German",
    "fr": "French",
    "es": "Spanish",
}


def language_instruction(language: str) -> str:
    name = LANGUAGE_NAMES.get(language.lower(), language)
    return f"Write all human-readable output in {name}."


class Skill(ABC):
    """One agent type.

    ``terminal_tool`` names the submit tool that ends a run with a
    structured payload. When the model answers in plain text instead,
    ``accepts_text_answer`` decides whether that text is the result
    (``finalize_text``) or a hard failure.
    """

    terminal_tool: str | None = None
    accepts_text_answer: bool = False
    default_max_iterations: int = 10
    tool_result_limit: int = 20000

    def __init__(self, accepts_text_answer: bool | None = None) -> None:
        if accepts_text_answer is not None:
            self.accepts_text_answer = accepts_text_answer

    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def system_prompt(self, request: AgentRequest) -> str: ...

    @abstractmethod
    def allowed_tools(self) -> list[str]: ...

    @abstractmethod
    async def build_user_message(self, request: AgentRequest) -> str:
        """First user message of a fresh run; may pre-gather git context."""

    def finalize(self, payload: dict[str, Any]) -> str:
        """Render the terminal tool's payload as the artifact text."""
        return str(payload)

    def finalize_text(self, text: str) -> tuple[str, dict[str, Any] | None]:
        """Turn a toolless answer into ``(artifact text, payload)``."""
        return text.strip(), None

    def history_transforms(self) -> list[Transform]:
        """Transforms applied to the persisted history after each iteration."""
        return [summarize_tool_results(self.tool_result_limit)]

    def progress_sources(self) -> tuple[Callable[[], dict[str, int]] | None, Callable[[], list[str]] | None]:
        """Callables feeding task counts and active tasks into the progress context."""
        return None, None

    def save_state(self) -> dict[str, str]:
        """Extra state persisted in ``Session.metadata`` at each checkpoint."""
        return {}

    def load_state(self, metadata: dict[str, str]) -> None:
        """Restore what :meth:`save_state` stored, when resuming."""
        return None


def context_section(context: str) -> str:
    if not context.strip():
        return ""
    return (
        "\n\n## Additional Context\n"
        "The developer has provided the following context:\n"
        f'"{context.strip()}"\n'
        "Take it into account; it may carry information the diff alone does not show."
    )

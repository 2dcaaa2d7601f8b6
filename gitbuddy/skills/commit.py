"""commit skill: Conventional Commits message for the staged changes."""

from __future__ import annotations

from typing import Any

from gitbuddy.engine.errors import GitBuddyError, NoStructuredOutputError
from gitbuddy.engine.models import AgentRequest
from gitbuddy.git.executor import GitExecutor
from gitbuddy.skills.interface import Skill, context_section, language_instruction
from gitbuddy.tools.submit_tools import CommitInfo, parse_commit_text

_PROMPT = """You are a Git commit message generator. Analyze the staged changes and produce a commit message following the Conventional Commits specification.

## Format
<type>[optional scope]: <description>

[optional body]

[optional footer(s)]

## Types
- feat: a new feature
- fix: a bug fix
- docs: documentation only changes
- style: changes that do not affect the meaning of the code
- refactor: a change that neither fixes a bug nor adds a feature
- perf: a performance improvement
- test: adding or correcting tests
- chore: build process or auxiliary tool changes
- build: build system or external dependency changes
- ci: CI configuration changes
- revert: reverts a previous commit

## Rules
1. Keep the description short (50 characters or less preferred).
2. Use the imperative mood ("add", not "added").
3. Do not end the description with a period.
4. The body explains what and why, not how.

## Process
Read the status overview first to see which files changed, then the diff to understand the intent, then decide type, scope and description.

If you need more detail you may call the git tools. When you are done, call submit_commit exactly once with the structured result.

{language}"""


class CommitSkill(Skill):
    terminal_tool = "submit_commit"
    accepts_text_answer = True
    default_max_iterations = 5

    def __init__(self, git: GitExecutor, accepts_text_answer: bool | None = None) -> None:
        super().__init__(accepts_text_answer)
        self._git = git

    @property
    def name(self) -> str:
        return "commit"

    def system_prompt(self, request: AgentRequest) -> str:
        return _PROMPT.format(language=language_instruction(request.language)) + context_section(request.context)

    def allowed_tools(self) -> list[str]:
        return ["git_status", "git_diff_cached", "git_log", "git_show", "submit_commit"]

    async def build_user_message(self, request: AgentRequest) -> str:
        status = await self._git.status()
        diff = await self._git.diff_cached()
        if not diff:
            raise GitBuddyError("no staged changes found")
        return (
            "Please analyze the following staged changes and generate a commit message.\n\n"
            "## Git Status Overview\n"
            f"```\n{status}\n```\n\n"
            "## Staged Changes (Diff)\n"
            f"```diff\n{diff}\n```\n"
        )

    def finalize(self, payload: dict[str, Any]) -> str:
        return CommitInfo.model_validate(payload).format_message()

    def finalize_text(self, text: str) -> tuple[str, dict[str, Any] | None]:
        try:
            info = parse_commit_text(text)
        except ValueError as exc:
            raise NoStructuredOutputError(f"could not parse commit message from text response: {exc}") from exc
        return info.format_message(), info.model_dump()

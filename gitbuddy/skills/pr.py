"""pr skill: pull request title and description for a branch."""

from __future__ import annotations

from typing import Any

from gitbuddy.engine.errors import GitBuddyError
from gitbuddy.engine.models import AgentRequest
from gitbuddy.git.executor import GitExecutor
from gitbuddy.skills.interface import Skill, context_section, language_instruction
from gitbuddy.tools.submit_tools import PRInfo

_PROMPT = """You write pull request descriptions. From the commits and the diff between two branches, produce:

- title: a short, specific PR title
- summary: two or three sentences on what the PR does
- changes: the main changes as a list, one item per logical change
- why: the motivation
- impact: optional, risks, migrations or behaviour changes reviewers should know about
- testing_note: optional, how the change was or should be tested

Group related commits into one change item. Do not list files one by one. If the diff is large, use git_show or git_diff_branches to look at specific parts.

Finish by calling submit_pr exactly once.

{language}"""


class PRSkill(Skill):
    terminal_tool = "submit_pr"
    default_max_iterations = 8

    def __init__(self, git: GitExecutor, accepts_text_answer: bool | None = None) -> None:
        super().__init__(accepts_text_answer)
        self._git = git

    @property
    def name(self) -> str:
        return "pr"

    def system_prompt(self, request: AgentRequest) -> str:
        return _PROMPT.format(language=language_instruction(request.language)) + context_section(request.context)

    def allowed_tools(self) -> list[str]:
        return ["git_log_range", "git_diff_branches", "git_show", "git_branch", "submit_pr"]

    async def build_user_message(self, request: AgentRequest) -> str:
        base = request.options.get("base") or "main"
        head = request.options.get("head") or await self._git.current_branch()
        if base == head:
            raise GitBuddyError(f"base and head branch are the same ({base})")
        log = await self._git.log_range(base, head)
        diff = await self._git.diff_branches(base, head)
        if not log and not diff:
            raise GitBuddyError(f"no changes between {base} and {head}")
        return (
            "Please write a pull request description for the following branch.\n\n"
            "## Branch Information\n"
            f"- Source branch: {head}\n"
            f"- Target branch: {base}\n\n"
            "## Commits in this PR\n"
            f"```\n{log}\n```\n\n"
            "## Code Changes (Diff)\n"
            f"```diff\n{diff}\n```\n"
        )

    def finalize(self, payload: dict[str, Any]) -> str:
        info = PRInfo.model_validate(payload)
        return f"# {info.title}\n\n{info.format_description()}"

"""report skill: work report over a period of commit history."""

from __future__ import annotations

from typing import Any

from gitbuddy.engine.errors import GitBuddyError
from gitbuddy.engine.models import AgentRequest
from gitbuddy.git.executor import GitExecutor, LogOptions
from gitbuddy.skills.interface import Skill, context_section, language_instruction
from gitbuddy.tools.submit_tools import ReportInfo

LOG_FORMAT = "%h %ad %an%n    %s%n%b"

_PROMPT = """You write work reports from git history. Read the commits for the period and summarise the work:

- group commits into features, fixes, refactoring and other work
- merge commits that belong to the same piece of work into one item
- write items for a reader who did not see the code; name the user-visible effect
- add highlights for the most important outcomes and, if the history suggests it, next steps

Use git_show to look at a commit whose message is unclear. Finish by calling submit_report exactly once.

{language}"""


class ReportSkill(Skill):
    terminal_tool = "submit_report"
    default_max_iterations = 8

    def __init__(self, git: GitExecutor, accepts_text_answer: bool | None = None) -> None:
        super().__init__(accepts_text_answer)
        self._git = git

    @property
    def name(self) -> str:
        return "report"

    def system_prompt(self, request: AgentRequest) -> str:
        return _PROMPT.format(language=language_instruction(request.language)) + context_section(request.context)

    def allowed_tools(self) -> list[str]:
        return ["git_log", "git_show", "submit_report"]

    async def build_user_message(self, request: AgentRequest) -> str:
        since = request.options.get("since") or "1 week ago"
        until = request.options.get("until") or ""
        author = request.options.get("author")
        if author is None:
            author = await self._git.current_user()

        log = await self._git.log(LogOptions(author=author, since=since, until=until, format=LOG_FORMAT))
        if not log:
            raise GitBuddyError(f"no commits found since {since}" + (f" by {author}" if author else ""))

        period = f"{since} - {until or 'now'}"
        return (
            "Please write a work report for the following commits.\n\n"
            "## Report Parameters\n"
            f"- Period: {period}\n"
            f"- Author: {author or 'all authors'}\n\n"
            "## Commits\n"
            f"```\n{log}\n```\n"
        )

    def finalize(self, payload: dict[str, Any]) -> str:
        return ReportInfo.model_validate(payload).format_report()

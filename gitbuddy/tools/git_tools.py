"""Git tools: thin wrappers binding a :class:`GitExecutor` into tool handlers."""

from __future__ import annotations

from pydantic import BaseModel, Field

from gitbuddy.git.executor import GitExecutor, LogOptions
from gitbuddy.tools.registry import ToolDef

NO_OUTPUT = "(no output)"


class NoInput(BaseModel):
    pass


class DiffBranchesInput(BaseModel):
    base: str = Field(description="Base branch or ref, e.g. main")
    head: str = Field(description="Head branch or ref")


class GitLogInput(BaseModel):
    max_count: int = Field(default=20, ge=1, le=500)
    since: str = ""
    until: str = ""
    author: str = ""


class LogRangeInput(BaseModel):
    base: str
    head: str


class ShowInput(BaseModel):
    commit: str = "HEAD"


def _or_placeholder(text: str) -> str:
    return text if text else NO_OUTPUT


def make_git_tools(git: GitExecutor) -> list[ToolDef]:
    """Factory: binds a *GitExecutor* instance into each handler."""

    async def git_status(inp: NoInput) -> str:
        return _or_placeholder(await git.status())

    async def git_diff_cached(inp: NoInput) -> str:
        diff = await git.diff_cached()
        return diff if diff else "No staged changes."

    async def git_diff_branches(inp: DiffBranchesInput) -> str:
        return _or_placeholder(await git.diff_branches(inp.base, inp.head))

    async def git_log(inp: GitLogInput) -> str:
        opts = LogOptions(count=inp.max_count, since=inp.since, until=inp.until, author=inp.author)
        log = await git.log(opts)
        return log if log else "No commits found."

    async def git_log_range(inp: LogRangeInput) -> str:
        log = await git.log_range(inp.base, inp.head)
        return log if log else f"No commits between {inp.base} and {inp.head}."

    async def git_show(inp: ShowInput) -> str:
        return _or_placeholder(await git.show(inp.commit))

    async def git_branch(inp: NoInput) -> str:
        return _or_placeholder(await git.list_branches())

    return [
        ToolDef("git_status", "Show the working tree status (git status).", NoInput, git_status),
        ToolDef("git_diff_cached", "Show the diff of staged changes (git diff --cached).", NoInput, git_diff_cached),
        ToolDef(
            "git_diff_branches",
            "Show the diff between two branches or refs (git diff base..head).",
            DiffBranchesInput,
            git_diff_branches,
        ),
        ToolDef(
            "git_log",
            "Show commit history, optionally filtered by date range and author.",
            GitLogInput,
            git_log,
        ),
        ToolDef("git_log_range", "List commits in base..head.", LogRangeInput, git_log_range),
        ToolDef("git_show", "Show a commit with its file statistics (git show <commit> --stat).", ShowInput, git_show),
        ToolDef("git_branch", "List local and remote branches with their last commit.", NoInput, git_branch),
    ]


GIT_READ_TOOLS = [
    "git_status",
    "git_diff_cached",
    "git_diff_branches",
    "git_log",
    "git_log_range",
    "git_show",
    "git_branch",
]

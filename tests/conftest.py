"""Shared fixtures for gitbuddy tests."""

from __future__ import annotations

import pytest

from gitbuddy import build_registry
from gitbuddy.engine.models import RetryConfig
from gitbuddy.engine.session import InMemorySessionStore
from gitbuddy.git.executor import GitExecutor
from gitbuddy.tools.plan import ExecutionPlan
from gitbuddy.tracing.jsonl_tracer import JSONLTraceCollector

STATUS = "On branch main\nChanges to be committed:\n\tmodified:   app/api.py"
DIFF = (
    "diff --git a/app/api.py b/app/api.py\n"
    "--- a/app/api.py\n"
    "+++ b/app/api.py\n"
    "@@ -1,2 +1,3 @@\n"
    " def handle(body):\n"
    "+    if not body:\n"
    "+        return None"
)


class FakeGitExecutor(GitExecutor):
    """GitExecutor that answers from canned output instead of spawning git.

    ``outputs`` is looked up by the full argument string first, then by the
    git sub-command. An exception value is raised instead of returned.
    """

    def __init__(self, work_dir=".", outputs: dict | None = None) -> None:
        super().__init__(work_dir)
        self.outputs = dict(outputs or {})
        self.commands: list[tuple[str, ...]] = []

    async def run(self, *args: str) -> str:
        self.commands.append(args)
        key = " ".join(args)
        value = self.outputs.get(key, self.outputs.get(args[0], ""))
        if isinstance(value, BaseException):
            raise value
        return value


@pytest.fixture
def git(tmp_path):
    return FakeGitExecutor(
        tmp_path,
        {
            "status": STATUS,
            "diff --cached": DIFF,
            "log": "a1b2c3d Add request validation",
            "rev-parse": "feature/validation",
            "config": "Ada",
        },
    )


@pytest.fixture
def plan():
    return ExecutionPlan()


@pytest.fixture
def issues_dir(tmp_path):
    return tmp_path / "issues"


@pytest.fixture
def tool_registry(git, plan, issues_dir):
    return build_registry(git, plan, str(issues_dir))


@pytest.fixture
def ses_store():
    return InMemorySessionStore()


@pytest.fixture
def trace_collector(tmp_path):
    return JSONLTraceCollector(trace_dir=str(tmp_path / "traces"))


@pytest.fixture
def no_wait_retry():
    return RetryConfig(max_attempts=2, backoff_base=0, backoff_max=0)


@pytest.fixture
def make_git(tmp_path):
    """Factory for a FakeGitExecutor with custom canned output."""

    def factory(outputs: dict | None = None) -> FakeGitExecutor:
        return FakeGitExecutor(tmp_path, outputs)

    return factory

"""debug skill: structured investigation ending in a saved Markdown report."""

from __future__ import annotations

import logging
from typing import Any, Callable

from pydantic import ValidationError

from gitbuddy.engine.errors import GitBuddyError
from gitbuddy.engine.history import Transform, deduplicate, summarize_tool_results
from gitbuddy.engine.models import AgentRequest
from gitbuddy.skills.interface import Skill, context_section, language_instruction
from gitbuddy.tools.git_tools import GIT_READ_TOOLS
from gitbuddy.tools.plan import ExecutionPlan

logger = logging.getLogger(__name__)

PLAN_METADATA_KEY = "execution_plan"

_PROMPT = """You are a senior engineer investigating a problem in the repository in the current working directory. Work methodically through these phases:

1. problem_definition: restate the symptoms, expected behaviour and context
2. impact_analysis: work out which components and users are affected
3. root_cause_hypothesis: list plausible causes, most likely first
4. investigation_plan: turn the hypotheses into concrete checks with update_execution_plan
5. execution: carry out the checks with the file, search and git tools; mark tasks in_progress / completed as you go
6. verification: confirm the root cause with evidence (file paths, line numbers, commits)
7. reporting: call submit_debug_report with a complete Markdown report

Announce every phase change with transition_phase. Prefer grep_directory and list_files to locate code before reading whole files, and read files in sections.

The report must contain: Problem Description, Analysis Process, Conclusions, Solutions, Verification Plan and, if any, Unresolved Items.

Always respond with tool calls. The investigation ends only when you call submit_debug_report.

{language}"""


class DebugSkill(Skill):
    terminal_tool = "submit_debug_report"
    default_max_iterations = 30
    tool_result_limit = 5000

    def __init__(self, plan: ExecutionPlan | None = None, accepts_text_answer: bool | None = None) -> None:
        super().__init__(accepts_text_answer)
        self.plan = plan if plan is not None else ExecutionPlan()

    @property
    def name(self) -> str:
        return "debug"

    def system_prompt(self, request: AgentRequest) -> str:
        return _PROMPT.format(language=language_instruction(request.language)) + context_section(request.context)

    def allowed_tools(self) -> list[str]:
        return [
            "read_file",
            "list_directory",
            "list_files",
            "grep_file",
            "grep_directory",
            *GIT_READ_TOOLS,
            "update_execution_plan",
            "transition_phase",
            "submit_debug_report",
        ]

    async def build_user_message(self, request: AgentRequest) -> str:
        if not request.query.strip():
            raise GitBuddyError("debug needs a problem description")
        return f"## Problem\n{request.query.strip()}\n\nStart with the problem_definition phase."

    def finalize(self, payload: dict[str, Any]) -> str:
        path = payload.get("file_path")
        content = payload.get("content", "")
        if path:
            return f"{content}\n\nReport saved to {path}"
        return content

    def history_transforms(self) -> list[Transform]:
        # Consecutive repeats add nothing to the next prompt.
        return [summarize_tool_results(self.tool_result_limit), deduplicate]

    def progress_sources(self) -> tuple[Callable[[], dict[str, int]] | None, Callable[[], list[str]] | None]:
        return self.plan.counts, self.plan.current_tasks

    def save_state(self) -> dict[str, str]:
        return {PLAN_METADATA_KEY: self.plan.model_dump_json()}

    def load_state(self, metadata: dict[str, str]) -> None:
        raw = metadata.get(PLAN_METADATA_KEY)
        if not raw:
            return
        try:
            restored = ExecutionPlan.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("ignoring unreadable execution plan in session metadata: %s", exc)
            return
        # Update in place: the plan tools hold a reference to this object.
        for field_name in ExecutionPlan.model_fields:
            setattr(self.plan, field_name, getattr(restored, field_name))

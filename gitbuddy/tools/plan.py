"""Execution plan kept by the debug agent, and the tools that edit it."""

from __future__ import annotations

import time
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from gitbuddy.engine.errors import ToolError
from gitbuddy.tools.registry import ToolDef


class Phase(str, Enum):
    PROBLEM_DEFINITION = "problem_definition"
    IMPACT_ANALYSIS = "impact_analysis"
    ROOT_CAUSE_HYPOTHESIS = "root_cause_hypothesis"
    INVESTIGATION_PLAN = "investigation_plan"
    EXECUTION = "execution"
    VERIFICATION = "verification"
    REPORTING = "reporting"


PHASE_DESCRIPTIONS = {
    Phase.PROBLEM_DEFINITION: "Problem definition - pin down symptoms, impact and background",
    Phase.IMPACT_ANALYSIS: "Impact analysis - determine scope and severity",
    Phase.ROOT_CAUSE_HYPOTHESIS: "Root cause hypothesis - propose likely causes from what is known",
    Phase.INVESTIGATION_PLAN: "Investigation plan - decide what to check and in which order",
    Phase.EXECUTION: "Execution - carry out the plan and collect evidence",
    Phase.VERIFICATION: "Verification - confirm the root cause and the fix",
    Phase.REPORTING: "Reporting - organise the findings into a report",
}

TaskStatus = Literal["pending", "in_progress", "completed", "skipped"]

_STATUS_MARK = {
    "pending": "[ ]",
    "in_progress": "[~]",
    "completed": "[x]",
    "skipped": "[-]",
}


class PlanTask(BaseModel):
    id: str
    description: str
    status: TaskStatus = "pending"
    created_at: float = Field(default_factory=time.time)
    completed_at: float | None = None


class PhaseTransition(BaseModel):
    from_phase: Phase
    to_phase: Phase
    reason: str
    at: float = Field(default_factory=time.time)


class ExecutionPlan(BaseModel):
    tasks: list[PlanTask] = Field(default_factory=list)
    current_phase: Phase = Phase.PROBLEM_DEFINITION
    phase_history: list[PhaseTransition] = Field(default_factory=list)
    last_updated: float = Field(default_factory=time.time)

    # -- tasks ---------------------------------------------------------------

    def find(self, task_id: str) -> PlanTask | None:
        return next((t for t in self.tasks if t.id == task_id), None)

    def add_task(self, task_id: str, description: str) -> None:
        if self.find(task_id) is not None:
            raise ToolError(f"task '{task_id}' already exists")
        self.tasks.append(PlanTask(id=task_id, description=description))
        self.last_updated = time.time()

    def update_task(self, task_id: str, status: TaskStatus) -> bool:
        """Set a task's status; returns False when the task is missing or unchanged."""
        task = self.find(task_id)
        if task is None or task.status == status:
            return False
        task.status = status
        if status in ("completed", "skipped"):
            task.completed_at = time.time()
        self.last_updated = time.time()
        return True

    def remove_task(self, task_id: str) -> bool:
        task = self.find(task_id)
        if task is None:
            return False
        self.tasks.remove(task)
        self.last_updated = time.time()
        return True

    def counts(self) -> dict[str, int]:
        result = {status: 0 for status in _STATUS_MARK}
        for task in self.tasks:
            result[task.status] += 1
        return result

    def current_tasks(self) -> list[str]:
        return [t.description for t in self.tasks if t.status == "in_progress"]

    # -- phases --------------------------------------------------------------

    def transition(self, new_phase: Phase, reason: str) -> bool:
        if new_phase == self.current_phase:
            return False
        self.phase_history.append(
            PhaseTransition(from_phase=self.current_phase, to_phase=new_phase, reason=reason)
        )
        self.current_phase = new_phase
        self.last_updated = time.time()
        return True

    # -- rendering -----------------------------------------------------------

    def summary(self) -> str:
        lines = [f"Phase: {PHASE_DESCRIPTIONS[self.current_phase]}", ""]
        if not self.tasks:
            lines.append("No tasks defined yet.")
            return "\n".join(lines)
        lines.append("Current Tasks:")
        for i, task in enumerate(self.tasks, 1):
            lines.append(f"  {i}. {_STATUS_MARK[task.status]} {task.description} (id: {task.id})")
        c = self.counts()
        progress = f"Progress: {c['completed']} completed, {c['in_progress']} in progress, {c['pending']} pending"
        if c["skipped"]:
            progress += f", {c['skipped']} skipped"
        lines.append("")
        lines.append(progress)
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

class UpdatePlanInput(BaseModel):
    action: Literal["add", "update", "remove", "show"]
    task_id: str = ""
    description: str = ""
    status: TaskStatus | None = None


class TransitionPhaseInput(BaseModel):
    new_phase: Phase
    reason: str


def make_plan_tools(plan: ExecutionPlan) -> list[ToolDef]:
    """Factory: both tools edit the same *ExecutionPlan* instance."""

    async def update_execution_plan(inp: UpdatePlanInput) -> str:
        if inp.action == "add":
            if not inp.task_id or not inp.description:
                raise ToolError("task_id and description are required for add action")
            plan.add_task(inp.task_id, inp.description)
            return f"Task added: {inp.description}\n\n{plan.summary()}"

        if inp.action == "update":
            if not inp.task_id or inp.status is None:
                raise ToolError("task_id and status are required for update action")
            task = plan.find(inp.task_id)
            old = task.status if task else None
            if not plan.update_task(inp.task_id, inp.status):
                return f"Task '{inp.task_id}' not found or status unchanged.\n\n{plan.summary()}"
            return f"Task status changed: {task.description} ({old} -> {inp.status})\n\n{plan.summary()}"

        if inp.action == "remove":
            if not inp.task_id:
                raise ToolError("task_id is required for remove action")
            task = plan.find(inp.task_id)
            if not plan.remove_task(inp.task_id):
                return f"Task '{inp.task_id}' not found.\n\n{plan.summary()}"
            return f"Task removed: {task.description}\n\n{plan.summary()}"

        return plan.summary()

    async def transition_phase(inp: TransitionPhaseInput) -> str:
        if not inp.reason.strip():
            raise ToolError("reason is required - explain why you are transitioning to this phase")
        previous = plan.current_phase
        if not plan.transition(inp.new_phase, inp.reason):
            return f"Already in phase {previous.value}.\n\n{plan.summary()}"
        return (
            "Phase Transition\n\n"
            f"From: {previous.value}\n"
            f"To: {inp.new_phase.value}\n"
            f"Reason: {inp.reason}\n\n"
            f"{plan.summary()}"
        )

    return [
        ToolDef(
            name="update_execution_plan",
            description=(
                "Maintain the investigation plan. action=add (task_id, description), "
                "update (task_id, status: pending|in_progress|completed|skipped), "
                "remove (task_id) or show."
            ),
            input_model=UpdatePlanInput,
            handler=update_execution_plan,
        ),
        ToolDef(
            name="transition_phase",
            description=(
                "Move the investigation to another phase: problem_definition, impact_analysis, "
                "root_cause_hypothesis, investigation_plan, execution, verification, reporting."
            ),
            input_model=TransitionPhaseInput,
            handler=transition_phase,
        ),
    ]

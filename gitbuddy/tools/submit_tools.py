"""Terminal "submit" tools: each one ends a run with a structured artifact."""

from __future__ import annotations

import asyncio
import re
from datetime import date
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from gitbuddy.tools.registry import ToolDef

COMMIT_TYPES = (
    "feat", "fix", "docs", "style", "refactor", "perf",
    "test", "chore", "build", "ci", "revert",
)


# ---------------------------------------------------------------------------
# submit_commit
# ---------------------------------------------------------------------------

class CommitInfo(BaseModel):
    type: str = Field(description="Commit type: " + " ".join(COMMIT_TYPES))
    scope: str = Field(default="", description="Scope of the change, e.g. auth, api, ui")
    description: str = Field(description="Imperative summary, no trailing period, ideally 50 chars or less")
    body: str = Field(default="", description="What changed and why (not how); may span lines")
    footer: str = Field(default="", description="e.g. 'BREAKING CHANGE: ...' or 'Closes #123'")

    @field_validator("type")
    @classmethod
    def _known_type(cls, value: str) -> str:
        value = value.strip().lower()
        if not value:
            raise ValueError("commit type is required")
        if value not in COMMIT_TYPES:
            raise ValueError(f"invalid commit type: {value}")
        return value

    @field_validator("description")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("commit description is required")
        return value

    def title(self) -> str:
        if self.scope:
            return f"{self.type}({self.scope}): {self.description}"
        return f"{self.type}: {self.description}"

    def format_message(self) -> str:
        parts = [self.title()]
        if self.body:
            parts += ["", self.body]
        if self.footer:
            parts += ["", self.footer]
        return "\n".join(parts)


_TITLE_RE = re.compile(r"^(?P<type>[A-Za-z]+)(?:\((?P<scope>[^)]*)\))?!?:\s*(?P<desc>.+)$")


def parse_commit_text(text: str) -> CommitInfo:
    """Best-effort parse of a free-text commit message.

    The first line is read as ``type(scope): description``; a first line
    without that shape becomes ``feat: <line>``. Non-blank lines from the
    third line on form the body.
    """
    lines = text.strip().splitlines()
    if not lines:
        raise ValueError("empty response from model")
    title = lines[0].strip().strip("`").strip()
    body = "\n".join(line.strip() for line in lines[2:] if line.strip())

    m = _TITLE_RE.match(title)
    if m and m.group("type").lower() in COMMIT_TYPES:
        return CommitInfo(
            type=m.group("type"),
            scope=(m.group("scope") or "").strip(),
            description=m.group("desc"),
            body=body,
        )
    return CommitInfo(type="feat", description=title, body=body)


# ---------------------------------------------------------------------------
# submit_pr
# ---------------------------------------------------------------------------

class PRInfo(BaseModel):
    title: str
    summary: str
    changes: list[str] = Field(default_factory=list)
    why: str
    impact: str = ""
    testing_note: str = ""

    def format_description(self) -> str:
        sections: list[str] = []
        if self.summary:
            sections.append(f"## Summary\n\n{self.summary}")
        if self.changes:
            sections.append("## Changes\n\n" + "\n".join(f"- {c}" for c in self.changes))
        if self.why:
            sections.append(f"## Why\n\n{self.why}")
        if self.impact:
            sections.append(f"## Impact\n\n{self.impact}")
        if self.testing_note:
            sections.append(f"## Testing\n\n{self.testing_note}")
        return "\n\n".join(sections)


# ---------------------------------------------------------------------------
# submit_report
# ---------------------------------------------------------------------------

class ReportInfo(BaseModel):
    title: str
    period: str
    author: str = ""
    summary: str
    features: list[str] = Field(default_factory=list)
    fixes: list[str] = Field(default_factory=list)
    refactoring: list[str] = Field(default_factory=list)
    other: list[str] = Field(default_factory=list)
    highlights: str = ""
    next_steps: str = ""

    def format_report(self) -> str:
        out = [f"# {self.title}", ""]
        if self.period:
            out.append(f"**Period:** {self.period}")
        if self.author:
            out.append(f"**Author:** {self.author}")
        out.append("")
        if self.summary:
            out += ["## Summary", "", self.summary, ""]
        for heading, items in (
            ("## New Features", self.features),
            ("## Bug Fixes", self.fixes),
            ("## Refactoring & Improvements", self.refactoring),
            ("## Other Work", self.other),
        ):
            if items:
                out += [heading, ""]
                out += [f"- {item}" for item in items]
                out.append("")
        if self.highlights:
            out += ["## Highlights", "", self.highlights, ""]
        if self.next_steps:
            out += ["## Next Steps", "", self.next_steps]
        return "\n".join(out).strip()


# ---------------------------------------------------------------------------
# submit_debug_report
# ---------------------------------------------------------------------------

class DebugReportInput(BaseModel):
    title: str = Field(description="Concise report title; also used in the file name")
    content: str = Field(description="The complete report in Markdown")

    @field_validator("title", "content")
    @classmethod
    def _required(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value


class DebugReport(BaseModel):
    title: str
    content: str
    issue_id: int
    date: str
    file_path: str


_ISSUE_RE = re.compile(r"^issue-(\d+)-")


def title_to_slug(title: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    if len(slug) > 50:
        slug = slug[:50]
        cut = slug.rfind("-")
        if cut > 0:
            slug = slug[:cut]
    return slug or "report"


def next_issue_id(issues_dir: Path) -> int:
    if not issues_dir.is_dir():
        return 1
    highest = 0
    for entry in issues_dir.iterdir():
        if not entry.is_file():
            continue
        m = _ISSUE_RE.match(entry.name)
        if m:
            highest = max(highest, int(m.group(1)))
    return highest + 1


def save_debug_report(issues_dir: str | Path, title: str, content: str, today: date | None = None) -> DebugReport:
    """Write ``issue-NNN-<slug>-<YYYY-MM-DD>.md`` under ``issues_dir``."""
    directory = Path(issues_dir)
    directory.mkdir(parents=True, exist_ok=True)
    issue_id = next_issue_id(directory)
    day = (today or date.today()).isoformat()
    path = directory / f"issue-{issue_id:03d}-{title_to_slug(title)}-{day}.md"
    path.write_text(content, encoding="utf-8")
    return DebugReport(title=title, content=content, issue_id=issue_id, date=day, file_path=str(path))


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

def make_submit_commit_tool() -> ToolDef:
    async def submit_commit(inp: CommitInfo) -> str:
        return f"Commit information submitted successfully:\n{inp.format_message()}"

    return ToolDef(
        name="submit_commit",
        description="Submit the final commit message in Conventional Commits form. Call exactly once.",
        input_model=CommitInfo,
        handler=submit_commit,
        terminal=True,
    )


def make_submit_pr_tool() -> ToolDef:
    async def submit_pr(inp: PRInfo) -> str:
        return f"PR description submitted: {inp.title}"

    return ToolDef(
        name="submit_pr",
        description="Submit the final pull request title and description. Call exactly once.",
        input_model=PRInfo,
        handler=submit_pr,
        terminal=True,
    )


def make_submit_report_tool() -> ToolDef:
    async def submit_report(inp: ReportInfo) -> str:
        return f"Report submitted: {inp.title}"

    return ToolDef(
        name="submit_report",
        description="Submit the final work report, grouping commits into features, fixes, refactoring and other.",
        input_model=ReportInfo,
        handler=submit_report,
        terminal=True,
    )


def make_submit_debug_report_tool(issues_dir: str | Path) -> ToolDef:
    async def submit_debug_report(inp: DebugReportInput) -> DebugReport:
        return await asyncio.to_thread(save_debug_report, issues_dir, inp.title, inp.content)

    return ToolDef(
        name="submit_debug_report",
        description=(
            "Submit the final analysis report once the investigation is complete. The Markdown "
            "content should cover: problem description, analysis process, conclusions, "
            "solutions, verification plan and unresolved items. It is saved to the issues directory."
        ),
        input_model=DebugReportInput,
        handler=submit_debug_report,
        terminal=True,
    )

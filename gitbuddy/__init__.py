"""gitbuddy: LLM agents for commit messages, PR descriptions, reports and debugging.

Usage::

    from gitbuddy import create_engine, create_skill

    git = GitExecutor(".")
    plan = ExecutionPlan()
    engine = create_engine(git=git, plan=plan)
    skill = create_skill("commit", git=git, plan=plan)
    session = await engine.prepare(skill, request)
    result = await engine.run(skill, session, request)
"""

from __future__ import annotations

from dotenv import load_dotenv

load_dotenv()  # reads .env into os.environ (no-op if file missing)

from gitbuddy.config import Settings
from gitbuddy.engine.agent import AgentEngine
from gitbuddy.engine.compression import HistoryCompressor
from gitbuddy.engine.errors import ConfigError
from gitbuddy.engine.llm import LLMClient, OpenAILLMClient
from gitbuddy.engine.models import AgentRequest, AgentResult
from gitbuddy.engine.session import FileSessionStore, SessionStore
from gitbuddy.git.executor import GitExecutor
from gitbuddy.skills import ChatSkill, CommitSkill, DebugSkill, PRSkill, ReportSkill, Skill
from gitbuddy.tools.fs_tools import make_fs_tools
from gitbuddy.tools.git_tools import make_git_tools
from gitbuddy.tools.plan import ExecutionPlan, make_plan_tools
from gitbuddy.tools.registry import ToolRegistry
from gitbuddy.tools.submit_tools import (
    make_submit_commit_tool,
    make_submit_debug_report_tool,
    make_submit_pr_tool,
    make_submit_report_tool,
)
from gitbuddy.tracing.interface import TraceCollector
from gitbuddy.tracing.jsonl_tracer import JSONLTraceCollector

__version__ = "0.3.0"

AGENT_TYPES = ("commit", "pr", "report", "debug", "chat")

__all__ = [
    "AGENT_TYPES",
    "AgentEngine",
    "AgentRequest",
    "AgentResult",
    "ExecutionPlan",
    "GitExecutor",
    "Settings",
    "build_registry",
    "create_engine",
    "create_skill",
]


def build_registry(git: GitExecutor, plan: ExecutionPlan, issues_dir: str = "./issues") -> ToolRegistry:
    """Register every tool; each skill exposes only its own allowlist to the model."""
    registry = ToolRegistry()
    for tool in make_git_tools(git):
        registry.register(tool)
    for tool in make_fs_tools(git.work_dir):
        registry.register(tool)
    for tool in make_plan_tools(plan):
        registry.register(tool)
    registry.register(make_submit_commit_tool())
    registry.register(make_submit_pr_tool())
    registry.register(make_submit_report_tool())
    registry.register(make_submit_debug_report_tool(issues_dir))
    return registry


def create_skill(agent_type: str, git: GitExecutor, plan: ExecutionPlan | None = None) -> Skill:
    if agent_type == "commit":
        return CommitSkill(git)
    if agent_type == "pr":
        return PRSkill(git)
    if agent_type == "report":
        return ReportSkill(git)
    if agent_type == "debug":
        return DebugSkill(plan)
    if agent_type == "chat":
        return ChatSkill()
    raise ValueError(f"unknown agent type: {agent_type}")


def create_engine(
    *,
    git: GitExecutor,
    plan: ExecutionPlan,
    settings: Settings | None = None,
    llm_client: LLMClient | None = None,
    session_store: SessionStore | None = None,
    trace_collector: TraceCollector | None = None,
) -> AgentEngine:
    """Wire all components and return a ready-to-use AgentEngine."""
    settings = settings or Settings.from_env()

    if llm_client is None:
        if not settings.openai_api_key:
            raise ConfigError("OPENAI_API_KEY is not set")
        llm_client = OpenAILLMClient(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            base_url=settings.openai_base_url,
        )

    compressor = None
    if settings.compression.enabled:
        compressor = HistoryCompressor(
            threshold=settings.compression.threshold,
            keep_recent=settings.compression.keep_recent,
            strategy=settings.compression.strategy,
            llm=llm_client,
        )

    return AgentEngine(
        llm_client=llm_client,
        tool_registry=build_registry(git, plan, str(settings.issues_dir)),
        session_store=session_store or FileSessionStore(settings.session_dir),
        trace_collector=trace_collector or JSONLTraceCollector(settings.trace_dir),
        retry_config=settings.retry,
        compressor=compressor,
        debug=settings.debug,
    )

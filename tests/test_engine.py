"""Tests for AgentEngine: tool loop, terminal tools, fallback policy, checkpoints and resume."""

from __future__ import annotations

import asyncio
import json

import pytest

from gitbuddy.engine.agent import CONTINUE_PROMPT, AgentEngine
from gitbuddy.engine.cancellation import Cancellation
from gitbuddy.engine.compression import HistoryCompressor
from gitbuddy.engine.errors import (
    GitBuddyError,
    IterationBudgetExhausted,
    LLMAPIError,
    NoStructuredOutputError,
)
from gitbuddy.engine.llm import MockLLMClient, text_script, tool_call_script
from gitbuddy.engine.models import (
    AgentRequest,
    Role,
    StreamDelta,
    TokenUsage,
    ToolCallDelta,
)
from gitbuddy.engine.session import InMemorySessionStore
from gitbuddy.skills import ChatSkill, CommitSkill, DebugSkill, PRSkill


class CountingStore(InMemorySessionStore):
    def __init__(self) -> None:
        super().__init__()
        self.saves = 0

    async def save(self, session):
        self.saves += 1
        await super().save(session)


def _engine(llm, tool_registry, store, retry, **kwargs) -> AgentEngine:
    return AgentEngine(
        llm_client=llm,
        tool_registry=tool_registry,
        session_store=store,
        retry_config=retry,
        **kwargs,
    )


async def _run(engine, skill, request=None, **kwargs):
    request = request or AgentRequest()
    session = await engine.prepare(skill, request)
    result = await engine.run(skill, session, request, **kwargs)
    return session, result


class TestToolLoop:
    async def test_tool_call_then_terminal_submit(self, git, tool_registry, ses_store, no_wait_retry):
        llm = MockLLMClient([
            tool_call_script("git_log", {"max_count": 5}, call_id="call_1"),
            tool_call_script(
                "submit_commit",
                {"type": "fix", "scope": "api", "description": "handle empty request body"},
                call_id="call_2",
            ),
        ])
        engine = _engine(llm, tool_registry, ses_store, no_wait_retry)

        session, result = await _run(engine, CommitSkill(git))

        assert result.text == "fix(api): handle empty request body"
        assert result.payload["type"] == "fix"
        assert result.iterations == 2
        assert llm.call_count == 2

        # The model only sees the commit allowlist.
        offered = {s["function"]["name"] for s in llm.calls[0]["tools"]}
        assert offered == set(CommitSkill(git).allowed_tools())

        # The pre-gathered diff is in the first user message.
        first = llm.calls[0]["messages"]
        assert first[0].role == Role.SYSTEM
        assert "def handle(body)" in first[1].content

        saved = await ses_store.load(session.id)
        roles = [m.role for m in saved.messages]
        assert roles == [Role.SYSTEM, Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT, Role.TOOL]
        assert saved.messages[3].content == "a1b2c3d Add request validation"
        assert saved.messages[3].tool_call_id == "call_1"
        assert saved.agent_type == "commit"

    async def test_malformed_arguments_become_error_result(self, git, tool_registry, ses_store, no_wait_retry):
        llm = MockLLMClient([
            tool_call_script("git_log", '{"max_count": ', call_id="bad"),
            tool_call_script("submit_commit", {"type": "docs", "description": "update readme"}, call_id="ok"),
        ])
        engine = _engine(llm, tool_registry, ses_store, no_wait_retry)

        session, result = await _run(engine, CommitSkill(git))

        assert result.text == "docs: update readme"
        tool_msg = next(m for m in (await ses_store.load(session.id)).messages if m.tool_call_id == "bad")
        assert tool_msg.content.startswith("Error: invalid JSON arguments for git_log")

    async def test_invalid_terminal_arguments_are_fed_back(self, git, tool_registry, ses_store, no_wait_retry):
        llm = MockLLMClient([
            tool_call_script("submit_commit", {"type": "wip", "description": "stuff"}, call_id="c1"),
            tool_call_script("submit_commit", {"type": "chore", "description": "bump deps"}, call_id="c2"),
        ])
        engine = _engine(llm, tool_registry, ses_store, no_wait_retry)

        _, result = await _run(engine, CommitSkill(git))

        assert result.text == "chore: bump deps"
        assert result.iterations == 2
        second_view = llm.calls[1]["messages"]
        assert "invalid commit type: wip" in second_view[-1].content

    async def test_disallowed_tool_is_refused(self, git, tool_registry, ses_store, no_wait_retry):
        llm = MockLLMClient([
            tool_call_script("read_file", {"file_path": "setup.py"}, call_id="c1"),
            tool_call_script("submit_commit", {"type": "fix", "description": "x"}, call_id="c2"),
        ])
        engine = _engine(llm, tool_registry, ses_store, no_wait_retry)

        session, _ = await _run(engine, CommitSkill(git))

        saved = await ses_store.load(session.id)
        refused = next(m for m in saved.messages if m.tool_call_id == "c1")
        assert refused.content == "Error: tool read_file is not available to this agent"

    async def test_calls_after_terminal_are_not_run(self, git, tool_registry, ses_store, no_wait_retry):
        submit = json.dumps({"type": "fix", "description": "stop early"})
        script = [
            StreamDelta(tool_calls=[ToolCallDelta(index=0, id="c1", name="submit_commit", arguments=submit)]),
            StreamDelta(tool_calls=[ToolCallDelta(index=1, id="c2", name="git_status", arguments="{}")]),
        ]
        llm = MockLLMClient([script])
        engine = _engine(llm, tool_registry, ses_store, no_wait_retry)

        session, result = await _run(engine, CommitSkill(git))

        assert result.text == "fix: stop early"
        saved = await ses_store.load(session.id)
        skipped = next(m for m in saved.messages if m.tool_call_id == "c2")
        assert skipped.content.startswith("Error: not executed")
        assert ("status",) not in git.commands[1:]

    async def test_token_usage_summed_across_iterations(self, tool_registry, ses_store, no_wait_retry):
        usage = TokenUsage(prompt_tokens=100, completion_tokens=10, total_tokens=110)
        llm = MockLLMClient([
            tool_call_script("git_status", {}, usage=usage),
            text_script("The tree is clean.", usage=usage),
        ])
        engine = _engine(llm, tool_registry, ses_store, no_wait_retry)

        session, result = await _run(engine, ChatSkill(), AgentRequest(query="is the tree clean?"))

        assert result.token_usage.total_tokens == 220
        assert (await ses_store.load(session.id)).token_usage.prompt_tokens == 200


class TestTerminalConditions:
    async def test_budget_exhausted(self, tool_registry, ses_store, no_wait_retry):
        llm = MockLLMClient([tool_call_script("git_status", {}, call_id=f"c{i}") for i in range(5)])
        engine = _engine(llm, tool_registry, ses_store, no_wait_retry)
        skill = ChatSkill()
        request = AgentRequest(query="loop forever", max_iterations=3)
        session = await engine.prepare(skill, request)

        with pytest.raises(IterationBudgetExhausted, match="maximum iterations \\(3\\)"):
            await engine.run(skill, session, request)

        assert llm.call_count == 3
        saved = await ses_store.load(session.id)
        assert saved.iteration_count == 3
        assert saved.max_iterations == 3

    async def test_chat_accepts_text_answer(self, tool_registry, ses_store, no_wait_retry):
        llm = MockLLMClient([text_script("The entry point is main.py.")])
        engine = _engine(llm, tool_registry, ses_store, no_wait_retry)

        _, result = await _run(engine, ChatSkill(), AgentRequest(query="where does it start?"))

        assert result.text == "The entry point is main.py."
        assert result.payload is None

    async def test_commit_parses_text_answer(self, git, tool_registry, ses_store, no_wait_retry):
        llm = MockLLMClient([text_script("fix(api): reject empty body\n\nReturn 400 instead of 500.")])
        engine = _engine(llm, tool_registry, ses_store, no_wait_retry)

        _, result = await _run(engine, CommitSkill(git))

        assert result.text == "fix(api): reject empty body\n\nReturn 400 instead of 500."
        assert result.payload["scope"] == "api"

    async def test_pr_rejects_text_answer(self, git, tool_registry, ses_store, no_wait_retry):
        git.outputs["diff"] = "diff --git a/x b/x"
        llm = MockLLMClient([text_script("Here is your PR description.")])
        engine = _engine(llm, tool_registry, ses_store, no_wait_retry)
        skill = PRSkill(git)
        session = await engine.prepare(skill, AgentRequest())

        with pytest.raises(NoStructuredOutputError, match="submit_pr"):
            await engine.run(skill, session, AgentRequest())

        assert await ses_store.exists(session.id)

    async def test_fallback_policy_is_per_instance(self, git, tool_registry, ses_store, no_wait_retry):
        git.outputs["diff"] = "diff --git a/x b/x"
        llm = MockLLMClient([text_script("Adds validation to the API.")])
        engine = _engine(llm, tool_registry, ses_store, no_wait_retry)

        _, result = await _run(engine, PRSkill(git, accepts_text_answer=True))

        assert result.text == "Adds validation to the API."

    async def test_seed_failure_saves_nothing(self, git, tool_registry, ses_store, no_wait_retry):
        git.outputs["diff --cached"] = ""
        llm = MockLLMClient([])
        engine = _engine(llm, tool_registry, ses_store, no_wait_retry)

        with pytest.raises(GitBuddyError, match="no staged changes"):
            await _run(engine, CommitSkill(git))

        assert llm.call_count == 0
        assert await ses_store.list() == []


class TestRetryInLoop:
    async def test_transient_error_is_retried(self, tool_registry, ses_store, no_wait_retry):
        llm = MockLLMClient([
            LLMAPIError("overloaded", status_code=503),
            [*text_script("partial"), TimeoutError("stream stalled")],
            text_script("Recovered answer."),
        ])
        engine = _engine(llm, tool_registry, ses_store, no_wait_retry)

        _, result = await _run(engine, ChatSkill(), AgentRequest(query="hello"))

        assert result.text == "Recovered answer."
        assert llm.call_count == 3
        assert result.iterations == 1

    async def test_permanent_error_surfaces(self, tool_registry, ses_store, no_wait_retry):
        llm = MockLLMClient([LLMAPIError("invalid api key", status_code=401)])
        engine = _engine(llm, tool_registry, ses_store, no_wait_retry)

        with pytest.raises(LLMAPIError):
            await _run(engine, ChatSkill(), AgentRequest(query="hello"))
        assert llm.call_count == 1


class TestCheckpoints:
    async def test_checkpoint_every_iteration(self, tool_registry, no_wait_retry):
        store = CountingStore()
        llm = MockLLMClient([
            tool_call_script("git_status", {}, call_id="c1"),
            tool_call_script("git_branch", {}, call_id="c2"),
            text_script("Two branches, clean tree."),
        ])
        engine = _engine(llm, tool_registry, store, no_wait_retry)

        await _run(engine, ChatSkill(), AgentRequest(query="overview"))

        assert store.saves == 3

    async def test_interrupt_mid_stream_keeps_only_complete_messages(self, tool_registry, ses_store, no_wait_retry):
        cancellation = Cancellation()
        second = [
            StreamDelta(content="Now the branches"),
            StreamDelta(tool_calls=[ToolCallDelta(index=0, id="call_2")]),
            StreamDelta(tool_calls=[ToolCallDelta(index=0, arguments="{")]),
            StreamDelta(tool_calls=[ToolCallDelta(index=0, name="git_branch", arguments="}")]),
        ]
        llm = MockLLMClient([tool_call_script("git_status", {}, call_id="call_1"), second])

        def on_delta(delta: StreamDelta) -> None:
            if llm.call_count == 2 and delta.tool_calls:
                cancellation.cancel("interrupted by user")

        engine = _engine(llm, tool_registry, ses_store, no_wait_retry)
        skill = ChatSkill()
        request = AgentRequest(query="overview")
        session = await engine.prepare(skill, request)

        with pytest.raises(asyncio.CancelledError):
            await engine.run(skill, session, request, on_delta=on_delta, cancellation=cancellation)

        saved = await ses_store.load(session.id)
        assert [m.role for m in saved.messages] == [Role.SYSTEM, Role.USER, Role.ASSISTANT, Role.TOOL]
        calls = [tc for m in saved.messages for tc in m.tool_calls]
        assert [tc.id for tc in calls] == ["call_1"]
        assert all(tc.name for tc in calls)
        assert saved.iteration_count == 1

    async def test_task_cancel_checkpoints(self, tool_registry, ses_store, no_wait_retry):
        release = asyncio.Event()

        class SlowLLM(MockLLMClient):
            async def stream_chat(self, messages, tools=None):
                self.calls.append({"messages": messages, "tools": tools})
                await release.wait()
                yield StreamDelta(content="never")

        llm = SlowLLM([])
        engine = _engine(llm, tool_registry, ses_store, no_wait_retry)
        skill = ChatSkill()
        request = AgentRequest(query="hang")
        session = await engine.prepare(skill, request)

        task = asyncio.create_task(engine.run(skill, session, request))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        saved = await ses_store.load(session.id)
        assert [m.role for m in saved.messages] == [Role.SYSTEM, Role.USER]

    async def test_resume_continues_saved_session(self, tool_registry, ses_store, no_wait_retry):
        cancellation = Cancellation()
        llm = MockLLMClient([
            tool_call_script("git_status", {}, call_id="call_1"),
            text_script("unreachable"),
        ])

        def on_delta(delta: StreamDelta) -> None:
            if llm.call_count == 2:
                cancellation.cancel()

        engine = _engine(llm, tool_registry, ses_store, no_wait_retry)
        skill = ChatSkill()
        request = AgentRequest(query="what is staged?")
        session = await engine.prepare(skill, request)
        with pytest.raises(asyncio.CancelledError):
            await engine.run(skill, session, request, on_delta=on_delta, cancellation=cancellation)

        llm2 = MockLLMClient([text_script("app/api.py is staged.")])
        engine2 = _engine(llm2, tool_registry, ses_store, no_wait_retry)
        resumed = await engine2.prepare(ChatSkill(), AgentRequest(), resume_id=session.id)
        result = await engine2.run(ChatSkill(), resumed, AgentRequest())

        assert result.session_id == session.id
        assert result.text == "app/api.py is staged."
        assert result.iterations == 2
        view = llm2.calls[0]["messages"]
        assert view[-1].role == Role.USER
        assert view[-1].content == CONTINUE_PROMPT
        assert view[-2].tool_call_id == "call_1"

    async def test_resume_with_new_query(self, tool_registry, ses_store, no_wait_retry):
        llm = MockLLMClient([text_script("First answer.")])
        engine = _engine(llm, tool_registry, ses_store, no_wait_retry)
        session, _ = await _run(engine, ChatSkill(), AgentRequest(query="first"))

        llm2 = MockLLMClient([text_script("Second answer.")])
        engine2 = _engine(llm2, tool_registry, ses_store, no_wait_retry)
        request = AgentRequest(query="and then?")
        resumed = await engine2.prepare(ChatSkill(), request, resume_id=session.id)
        await engine2.run(ChatSkill(), resumed, request)

        view = llm2.calls[0]["messages"]
        assert [m.content for m in view[1:]] == ["first", "First answer.", "and then?"]

    async def test_resume_rejects_other_agent_type(self, git, tool_registry, ses_store, no_wait_retry):
        llm = MockLLMClient([text_script("hi")])
        engine = _engine(llm, tool_registry, ses_store, no_wait_retry)
        session, _ = await _run(engine, ChatSkill(), AgentRequest(query="hi"))

        with pytest.raises(GitBuddyError, match="belongs to the chat agent"):
            await engine.prepare(CommitSkill(git), AgentRequest(), resume_id=session.id)


class TestDebugAgent:
    async def test_plan_progress_and_report(self, plan, tool_registry, ses_store, issues_dir, no_wait_retry):
        llm = MockLLMClient([
            tool_call_script(
                "update_execution_plan",
                {"action": "add", "task_id": "t1", "description": "Find the login handler"},
                call_id="c1",
            ),
            tool_call_script(
                "transition_phase",
                {"new_phase": "execution", "reason": "plan is ready"},
                call_id="c2",
            ),
            tool_call_script(
                "submit_debug_report",
                {"title": "Login fails with 500", "content": "# Login fails\n\nRoot cause: missing check."},
                call_id="c3",
            ),
        ])
        engine = _engine(llm, tool_registry, ses_store, no_wait_retry)
        skill = DebugSkill(plan)

        session, result = await _run(engine, skill, AgentRequest(query="login returns 500"))

        second_system = llm.calls[1]["messages"][0].content
        assert "- Iteration: 2 / 30" in second_system
        assert "- Tasks: 0 completed, 0 in progress, 1 pending" in second_system

        reports = list(issues_dir.glob("issue-001-login-fails-with-500-*.md"))
        assert len(reports) == 1
        assert "Root cause: missing check." in reports[0].read_text(encoding="utf-8")
        assert result.payload["issue_id"] == 1
        assert result.text.endswith(f"Report saved to {reports[0]}")

        saved = await ses_store.load(session.id)
        stored_plan = json.loads(saved.metadata["execution_plan"])
        assert stored_plan["current_phase"] == "execution"
        assert stored_plan["tasks"][0]["id"] == "t1"

    async def test_resume_restores_plan(self, plan, tool_registry, ses_store, no_wait_retry):
        llm = MockLLMClient([
            tool_call_script(
                "update_execution_plan",
                {"action": "add", "task_id": "t1", "description": "Check config"},
            ),
        ])
        engine = _engine(llm, tool_registry, ses_store, no_wait_retry)
        request = AgentRequest(query="crash on start", max_iterations=1)
        session = await engine.prepare(DebugSkill(plan), request)
        with pytest.raises(IterationBudgetExhausted):
            await engine.run(DebugSkill(plan), session, request)

        plan.tasks.clear()
        restored = DebugSkill(plan)
        await engine.prepare(restored, AgentRequest(), resume_id=session.id)

        assert restored.plan is plan
        assert [t.id for t in plan.tasks] == ["t1"]


class TestCompressionInLoop:
    async def test_history_stays_bounded(self, tool_registry, ses_store, trace_collector, tmp_path, no_wait_retry):
        llm = MockLLMClient(
            [tool_call_script("git_status", {}, call_id=f"c{i}") for i in range(4)]
            + [text_script("done")]
        )
        engine = _engine(
            llm, tool_registry, ses_store, no_wait_retry,
            compressor=HistoryCompressor(threshold=6, keep_recent=4),
            trace_collector=trace_collector,
        )

        session, result = await _run(engine, ChatSkill(), AgentRequest(query="status please"))

        assert result.text == "done"
        for call in llm.calls:
            assert len(call["messages"]) <= 7
        saved = await ses_store.load(session.id)
        assert saved.messages[0].role == Role.SYSTEM

        lines = (tmp_path / "traces" / f"{session.id}.jsonl").read_text().splitlines()
        events = [json.loads(line)["event"] for line in lines]
        assert events[0] == "run_start"
        assert "compress" in events
        assert "llm_call" in events
        assert "tool_exec" in events
        assert events[-1] == "run_done"

    async def test_summary_tokens_count_toward_session_usage(self, tool_registry, ses_store, no_wait_retry):
        step = TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15)
        llm = MockLLMClient([
            tool_call_script("git_status", {}, call_id="c0", usage=step),
            tool_call_script("git_status", {}, call_id="c1", usage=step),
            text_script("Checked status once.", usage=TokenUsage(prompt_tokens=100, completion_tokens=80, total_tokens=180)),
            text_script("done", usage=step),
        ])
        engine = _engine(
            llm, tool_registry, ses_store, no_wait_retry,
            compressor=HistoryCompressor(threshold=4, keep_recent=2, strategy="summarize", llm=llm),
        )

        session, result = await _run(engine, ChatSkill(), AgentRequest(query="status please"))

        assert result.text == "done"
        assert result.token_usage.total_tokens == 15 * 3 + 180
        assert result.token_usage.prompt_tokens == 10 * 3 + 100
        saved = await ses_store.load(session.id)
        assert saved.token_usage.total_tokens == 225
        assert any("Checked status once." in m.content for m in saved.messages if m.role == Role.USER)

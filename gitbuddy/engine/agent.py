"""AgentEngine: the bounded inference / tool-dispatch loop."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any, Callable

from gitbuddy.engine.cancellation import Cancellation
from gitbuddy.engine.compression import HistoryCompressor
from gitbuddy.engine.errors import (
    GitBuddyError,
    IterationBudgetExhausted,
    NoStructuredOutputError,
)
from gitbuddy.engine.history import HistoryPipeline, chain, progress_context, repair_tool_pairs
from gitbuddy.engine.llm import LLMClient
from gitbuddy.engine.models import (
    AccumulatedResponse,
    AgentRequest,
    AgentResult,
    Message,
    RetryConfig,
    Role,
    Session,
    StreamDelta,
    ToolCallRequest,
)
from gitbuddy.engine.retry import with_retry
from gitbuddy.engine.session import SessionStore, generate_session_id
from gitbuddy.engine.stream import accumulate
from gitbuddy.tracing.interface import NullTraceCollector, TraceCollector

if TYPE_CHECKING:
    from gitbuddy.skills.interface import Skill
    from gitbuddy.tools.registry import ToolOutcome, ToolRegistry

logger = logging.getLogger(__name__)

CONTINUE_PROMPT = "Continue from where you left off."


class AgentEngine:
    """Public API::

        session = await engine.prepare(skill, request, resume_id)
        result = await engine.run(skill, session, request)

    ``prepare`` allocates (or loads) the session first, so its id is known
    to the host even if the run is interrupted before the first
    checkpoint.
    """

    DEFAULT_MAX_ITERATIONS: int = 10

    def __init__(
        self,
        llm_client: LLMClient,
        tool_registry: ToolRegistry,
        session_store: SessionStore,
        trace_collector: TraceCollector | None = None,
        retry_config: RetryConfig | None = None,
        compressor: HistoryCompressor | None = None,
        debug: bool = False,
    ) -> None:
        self._llm = llm_client
        self._tools = tool_registry
        self._store = session_store
        self._trace = trace_collector or NullTraceCollector()
        self._retry = retry_config or RetryConfig()
        self._compressor = compressor
        self.debug = debug

    # ------------------------------------------------------------------
    # Seed
    # ------------------------------------------------------------------

    async def prepare(self, skill: Skill, request: AgentRequest, resume_id: str | None = None) -> Session:
        if resume_id:
            session = await self._store.load(resume_id)
            if session.agent_type != skill.name:
                raise GitBuddyError(
                    f"session {resume_id} belongs to the {session.agent_type} agent, not {skill.name}"
                )
            skill.load_state(session.metadata)
            logger.info("resuming session id=%s messages=%d", session.id, len(session.messages))
            return session

        max_iterations = request.max_iterations or skill.default_max_iterations or self.DEFAULT_MAX_ITERATIONS
        return Session(id=generate_session_id(skill.name), agent_type=skill.name, max_iterations=max_iterations)

    async def _seed(self, skill: Skill, session: Session, request: AgentRequest) -> list[Message]:
        if session.messages:
            messages = repair_tool_pairs(session.messages)
            if request.query.strip():
                messages.append(Message.user(request.query.strip()))
            elif messages[-1].role != Role.USER:
                messages.append(Message.user(CONTINUE_PROMPT))
            return messages

        user = await skill.build_user_message(request)
        return [Message.system(skill.system_prompt(request)), Message.user(user)]

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(
        self,
        skill: Skill,
        session: Session,
        request: AgentRequest,
        on_delta: Callable[[StreamDelta], None] | None = None,
        cancellation: Cancellation | None = None,
    ) -> AgentResult:
        cancellation = cancellation or Cancellation()
        max_iterations = request.max_iterations or session.max_iterations or skill.default_max_iterations
        session.max_iterations = max_iterations
        t_start = time.time()

        resumed = bool(session.messages)
        messages = list(session.messages)
        schemas = self._tools.openai_schemas(skill.allowed_tools())
        task_counts, current_tasks = skill.progress_sources()
        persist = chain(*skill.history_transforms())

        status = "error"
        try:
            messages = await self._seed(skill, session, request)
            session.messages = list(messages)
            await self._trace.emit(session.id, "run_start", {
                "agent": skill.name,
                "resumed": resumed,
                "max_iterations": max_iterations,
                "messages": len(messages),
                "tools": len(schemas),
            })

            for iteration in range(1, max_iterations + 1):
                cancellation.check()
                view = chain(
                    progress_context(iteration, max_iterations, task_counts, current_tasks),
                    repair_tool_pairs,
                )(messages)

                response = await self._infer(view, schemas, iteration, session.id, on_delta, cancellation)
                session.token_usage.add(response.usage)
                session.iteration_count += 1

                assistant = response.message
                messages.append(assistant)

                if not assistant.tool_calls:
                    result = self._text_answer(skill, session, assistant)
                    await self._checkpoint(skill, session, messages)
                    status = "done"
                    return result

                terminal = await self._dispatch(skill, assistant.tool_calls, messages, session.id)
                if terminal is not None:
                    await self._checkpoint(skill, session, messages)
                    status = "done"
                    payload = terminal.payload()
                    return AgentResult(
                        session_id=session.id,
                        agent_type=skill.name,
                        text=skill.finalize(payload),
                        payload=payload,
                        iterations=session.iteration_count,
                        token_usage=session.token_usage.model_copy(),
                    )

                messages = await self._maintain(persist, messages, session)
                await self._checkpoint(skill, session, messages)

            raise IterationBudgetExhausted(max_iterations)

        except asyncio.CancelledError:
            status = "interrupted"
            # Only fully accumulated messages are ever in ``messages``.
            await self._checkpoint(skill, session, repair_tool_pairs(messages))
            logger.info("run interrupted; session %s saved", session.id)
            raise
        except (IterationBudgetExhausted, NoStructuredOutputError) as exc:
            status = "exhausted" if isinstance(exc, IterationBudgetExhausted) else "no_output"
            await self._checkpoint(skill, session, messages)
            raise
        finally:
            await self._trace.emit(session.id, "run_done", {
                "status": status,
                "iterations": session.iteration_count,
                "total_tokens": session.token_usage.total_tokens,
                "total_latency_ms": round((time.time() - t_start) * 1000, 2),
            })
            await self._trace.flush(session.id)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _infer(
        self,
        view: list[Message],
        schemas: list[dict[str, Any]],
        iteration: int,
        session_id: str,
        on_delta: Callable[[StreamDelta], None] | None,
        cancellation: Cancellation,
    ) -> AccumulatedResponse:
        async def attempt() -> AccumulatedResponse:
            # A retried attempt starts from a fresh accumulator.
            stream = self._llm.stream_chat(view, schemas or None)
            return await accumulate(stream, on_delta=on_delta, cancellation=cancellation)

        t0 = time.time()
        response = await with_retry(attempt, self._retry, cancellation)
        latency = time.time() - t0

        if self.debug:
            logger.debug(
                "iteration=%d latency=%.2fs content=%d chars tool_calls=%s",
                iteration, latency, len(response.message.content),
                [tc.name for tc in response.message.tool_calls],
            )
        await self._trace.emit(session_id, "llm_call", {
            "iteration": iteration,
            "latency_ms": round(latency * 1000, 2),
            "tool_calls": [tc.name for tc in response.message.tool_calls],
            "usage": response.usage.model_dump(),
        })
        return response

    def _text_answer(self, skill: Skill, session: Session, assistant: Message) -> AgentResult:
        text = assistant.content.strip()
        if not skill.accepts_text_answer or not text:
            raise NoStructuredOutputError(
                f"the {skill.name} agent finished without calling "
                f"{skill.terminal_tool or 'a tool'} and without a usable answer"
            )
        artifact, payload = skill.finalize_text(text)
        return AgentResult(
            session_id=session.id,
            agent_type=skill.name,
            text=artifact,
            payload=payload,
            iterations=session.iteration_count,
            token_usage=session.token_usage.model_copy(),
        )

    async def _dispatch(
        self,
        skill: Skill,
        calls: list[ToolCallRequest],
        messages: list[Message],
        session_id: str,
    ) -> ToolOutcome | None:
        """Run every call in order, appending one tool message per call.

        Returns the terminal tool's outcome once one succeeds; calls after
        it are answered without being run.
        """
        allowed = set(skill.allowed_tools())
        finished: ToolOutcome | None = None

        for call in calls:
            if finished is not None:
                messages.append(Message.tool(call.id, f"Error: not executed, the run ended with {skill.terminal_tool}"))
                continue
            if call.name not in allowed:
                messages.append(Message.tool(call.id, f"Error: tool {call.name} is not available to this agent"))
                continue

            tool = self._tools.get(call.name)
            try:
                outcome = await self._tools.invoke(call.name, call.arguments, self._trace, session_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("tool call %s(%s) failed: %s", call.name, call.id, exc)
                messages.append(Message.tool(call.id, f"Error: {exc}"))
                continue

            messages.append(Message.tool(call.id, outcome.text))
            if tool is not None and tool.terminal and call.name == skill.terminal_tool:
                finished = outcome

        return finished

    async def _maintain(self, persist: HistoryPipeline, messages: list[Message], session: Session) -> list[Message]:
        messages = persist(messages)
        if self._compressor is not None and self._compressor.needed(messages):
            result = await self._compressor.compress(messages)
            # Summary generation is a model call too.
            session.token_usage.add(result.usage)
            await self._trace.emit(session.id, "compress", {
                "strategy": self._compressor.strategy.value,
                "before": result.before,
                "after": result.after,
            })
            messages = result.messages
        return messages

    async def _checkpoint(self, skill: Skill, session: Session, messages: list[Message]) -> None:
        session.messages = list(messages)
        session.metadata.update(skill.save_state())
        await self._store.save(session)
        await self._trace.emit(session.id, "checkpoint", {
            "iterations": session.iteration_count,
            "messages": len(session.messages),
        })

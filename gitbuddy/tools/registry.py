"""Tool registry with Pydantic v2 argument schemas, timeout and audit logging."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable

from pydantic import BaseModel, ValidationError

from gitbuddy.engine.errors import ToolError, ToolNotFoundError
from gitbuddy.tracing.interface import TraceCollector

logger = logging.getLogger(__name__)


@dataclass
class ToolDef:
    """Registration record for a single tool.

    ``terminal`` marks a "submit the final artifact" tool: once its
    arguments validate, the agent loop ends and returns them as the
    structured payload.
    """

    name: str
    description: str
    input_model: type[BaseModel]
    handler: Callable[[Any], Awaitable[Any]]
    timeout: float = 30.0
    terminal: bool = False

    def schema(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_model.model_json_schema(),
            },
        }


@dataclass
class ToolOutcome:
    params: BaseModel
    raw: Any
    text: str

    def payload(self) -> dict[str, Any]:
        """Structured result: the handler's model/dict if it returned one, else the arguments."""
        if isinstance(self.raw, BaseModel):
            return self.raw.model_dump(mode="json")
        if isinstance(self.raw, dict):
            return dict(self.raw)
        return self.params.model_dump(mode="json")


def _render(raw: Any) -> str:
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw
    if isinstance(raw, BaseModel):
        return raw.model_dump_json(indent=2)
    return json.dumps(raw, indent=2, ensure_ascii=False, default=str)


class ToolRegistry:
    """Central tool store with argument validation, timeout and tracing hooks."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolDef] = {}

    # -- registration -------------------------------------------------------

    def register(self, tool_def: ToolDef) -> None:
        self._tools[tool_def.name] = tool_def
        logger.debug("Registered tool %s (terminal=%s)", tool_def.name, tool_def.terminal)

    def get(self, name: str) -> ToolDef | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    # -- OpenAI function-calling schemas ------------------------------------

    def openai_schemas(self, allowed_tools: Iterable[str] | None = None) -> list[dict[str, Any]]:
        """Return OpenAI-compatible function schemas, filtered by an allowlist if given."""
        allowed = None if allowed_tools is None else set(allowed_tools)
        return [
            tool.schema()
            for tool in self._tools.values()
            if allowed is None or tool.name in allowed
        ]

    # -- execution ----------------------------------------------------------

    def parse_arguments(self, name: str, arguments_json: str) -> BaseModel:
        """Validate raw JSON arguments against the tool's input model."""
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        raw = arguments_json.strip() or "{}"
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ToolError(f"invalid JSON arguments for {name}: {exc.msg}") from exc
        if not isinstance(data, dict):
            raise ToolError(f"arguments for {name} must be a JSON object")
        try:
            return tool.input_model.model_validate(data)
        except ValidationError as exc:
            raise ToolError(f"invalid arguments for {name}: {exc}") from exc

    async def execute(
        self,
        name: str,
        arguments_json: str,
        trace_collector: TraceCollector | None = None,
        trace_id: str | None = None,
    ) -> str:
        """Run a tool and return its result text; failures raise."""
        outcome = await self.invoke(name, arguments_json, trace_collector, trace_id)
        return outcome.text

    async def invoke(
        self,
        name: str,
        arguments_json: str,
        trace_collector: TraceCollector | None = None,
        trace_id: str | None = None,
    ) -> ToolOutcome:
        """Like :meth:`execute` but also returns the validated params and raw handler result."""
        params = self.parse_arguments(name, arguments_json)
        tool = self._tools[name]

        t0 = time.time()
        try:
            raw = await asyncio.wait_for(tool.handler(params), timeout=tool.timeout)
        except asyncio.TimeoutError as exc:
            await self._audit(trace_collector, trace_id, name, "timeout", time.time() - t0)
            logger.warning("tool=%s timed out after %.1fs", name, tool.timeout)
            raise ToolError(f"tool {name} timed out after {tool.timeout:.0f}s") from exc
        except Exception as exc:
            await self._audit(trace_collector, trace_id, name, "error", time.time() - t0, str(exc))
            logger.warning("tool=%s error=%s", name, exc)
            raise
        latency = time.time() - t0

        logger.info("tool=%s latency=%.3fs OK", name, latency)
        await self._audit(trace_collector, trace_id, name, "ok", latency)
        return ToolOutcome(params=params, raw=raw, text=_render(raw))

    @staticmethod
    async def _audit(
        trace_collector: TraceCollector | None,
        trace_id: str | None,
        name: str,
        status: str,
        latency: float,
        error: str | None = None,
    ) -> None:
        if not (trace_collector and trace_id):
            return
        data: dict[str, Any] = {
            "tool": name,
            "status": status,
            "latency_ms": round(latency * 1000, 2),
        }
        if error is not None:
            data["error"] = error
        await trace_collector.emit(trace_id, "tool_exec", data)

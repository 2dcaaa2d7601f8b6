"""Core data models: no internal dependencies, only Pydantic + stdlib."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------

class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCallRequest(BaseModel):
    """A single tool/function call requested by the LLM.

    ``index`` only matters while fragments are being accumulated;
    ``arguments`` is the raw JSON text exactly as the model produced it.
    """
    id: str = ""
    index: int = 0
    name: str = ""
    arguments: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.id) and bool(self.name)


class Message(BaseModel):
    role: Role
    content: str = ""
    tool_calls: list[ToolCallRequest] = Field(default_factory=list)
    tool_call_id: str | None = None

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: list[ToolCallRequest] | None = None) -> Message:
        return cls(role=Role.ASSISTANT, content=content, tool_calls=tool_calls or [])

    @classmethod
    def tool(cls, tool_call_id: str, content: str) -> Message:
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id)

    def to_openai(self) -> dict[str, Any]:
        """Render as an OpenAI chat-completions message dict."""
        msg: dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.role == Role.ASSISTANT and self.tool_calls:
            msg["content"] = self.content or None
            msg["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.name, "arguments": tc.arguments},
                }
                for tc in self.tool_calls
            ]
        if self.role == Role.TOOL:
            msg["tool_call_id"] = self.tool_call_id
        return msg


# ---------------------------------------------------------------------------
# Token usage
# ---------------------------------------------------------------------------

class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def observe(self, other: TokenUsage) -> None:
        """Keep the maximum seen per counter (cumulative-total semantics)."""
        self.prompt_tokens = max(self.prompt_tokens, other.prompt_tokens)
        self.completion_tokens = max(self.completion_tokens, other.completion_tokens)
        self.total_tokens = max(self.total_tokens, other.total_tokens)

    def add(self, other: TokenUsage) -> None:
        self.prompt_tokens += other.prompt_tokens
        self.completion_tokens += other.completion_tokens
        self.total_tokens += other.total_tokens


# ---------------------------------------------------------------------------
# Streaming deltas (LLM client -> accumulator)
# ---------------------------------------------------------------------------

class ToolCallDelta(BaseModel):
    """One fragment of a streamed tool call, placed by ``index``."""
    index: int = 0
    id: str = ""
    name: str = ""
    arguments: str = ""


class StreamDelta(BaseModel):
    content: str = ""
    tool_calls: list[ToolCallDelta] = Field(default_factory=list)
    usage: TokenUsage | None = None


class AccumulatedResponse(BaseModel):
    """Complete assistant message plus the usage snapshot for one inference."""
    message: Message
    usage: TokenUsage = Field(default_factory=TokenUsage)


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------

class RetryConfig(BaseModel):
    enabled: bool = True
    max_attempts: int = Field(default=3, ge=0)
    backoff_base: float = Field(default=1.0, ge=0)
    backoff_max: float = Field(default=8.0, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> RetryConfig:
        if self.backoff_max < self.backoff_base:
            raise ValueError("backoff_max must be greater than or equal to backoff_base")
        return self


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class Session(BaseModel):
    id: str
    agent_type: str
    messages: list[Message] = Field(default_factory=list)
    iteration_count: int = 0
    max_iterations: int = 0
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)
    metadata: dict[str, str] = Field(default_factory=dict)


class SessionInfo(BaseModel):
    """Lightweight listing entry: never carries the message history."""
    id: str
    agent_type: str
    created_at: float
    updated_at: float
    iterations: int = 0
    max_iterations: int = 0
    total_tokens: int = 0
    size_bytes: int = 0


# ---------------------------------------------------------------------------
# Run request / result
# ---------------------------------------------------------------------------

class AgentRequest(BaseModel):
    """Plain parameters consumed by a run; the CLI fills them from flags."""
    language: str = "en"
    context: str = ""
    query: str = ""
    max_iterations: int = 0
    options: dict[str, Any] = Field(default_factory=dict)


class AgentResult(BaseModel):
    session_id: str
    agent_type: str
    text: str
    payload: dict[str, Any] | None = None
    iterations: int = 0
    token_usage: TokenUsage = Field(default_factory=TokenUsage)

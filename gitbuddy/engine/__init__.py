from gitbuddy.engine.models import (
    AccumulatedResponse,
    AgentRequest,
    AgentResult,
    Message,
    RetryConfig,
    Role,
    Session,
    SessionInfo,
    StreamDelta,
    TokenUsage,
    ToolCallDelta,
    ToolCallRequest,
)
from gitbuddy.engine.errors import ErrorType, classify_error
from gitbuddy.engine.cancellation import Cancellation
from gitbuddy.engine.retry import calculate_backoff, with_retry
from gitbuddy.engine.stream import StreamAccumulator, accumulate
from gitbuddy.engine.session import FileSessionStore, InMemorySessionStore, SessionStore
from gitbuddy.engine.llm import LLMClient, MockLLMClient, OpenAILLMClient
from gitbuddy.engine.agent import AgentEngine

__all__ = [
    "AccumulatedResponse",
    "AgentEngine",
    "AgentRequest",
    "AgentResult",
    "Cancellation",
    "ErrorType",
    "FileSessionStore",
    "InMemorySessionStore",
    "LLMClient",
    "Message",
    "MockLLMClient",
    "OpenAILLMClient",
    "RetryConfig",
    "Role",
    "Session",
    "SessionInfo",
    "SessionStore",
    "StreamAccumulator",
    "StreamDelta",
    "TokenUsage",
    "ToolCallDelta",
    "ToolCallRequest",
    "accumulate",
    "calculate_backoff",
    "classify_error",
    "with_retry",
]

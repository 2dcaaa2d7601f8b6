"""TraceCollector ABC: no internal deps."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class TraceCollector(ABC):
    """Collects structured run events, keyed by session id."""

    @abstractmethod
    async def emit(self, session_id: str, event_type: str, data: dict[str, Any]) -> None: ...

    @abstractmethod
    async def flush(self, session_id: str) -> None: ...


class NullTraceCollector(TraceCollector):
    """Discards everything."""

    async def emit(self, session_id: str, event_type: str, data: dict[str, Any]) -> None:
        return None

    async def flush(self, session_id: str) -> None:
        return None

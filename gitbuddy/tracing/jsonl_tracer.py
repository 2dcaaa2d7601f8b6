"""JSONL file-based trace collector."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any

from gitbuddy.tracing.interface import TraceCollector

logger = logging.getLogger(__name__)


class JSONLTraceCollector(TraceCollector):
    """Appends run events to ``<trace_dir>/<session_id>.jsonl``.

    Events are buffered in memory and flushed when a run ends, including
    runs that end by interruption. A resumed session appends to the same
    file.
    """

    def __init__(self, trace_dir: str | Path = "./traces") -> None:
        self._dir = Path(trace_dir)
        self._buffers: dict[str, list[dict[str, Any]]] = {}

    def pending(self, session_id: str) -> list[dict[str, Any]]:
        return list(self._buffers.get(session_id, []))

    async def emit(self, session_id: str, event_type: str, data: dict[str, Any]) -> None:
        entry = {
            "ts": time.time(),
            "session_id": session_id,
            "event": event_type,
            **data,
        }
        self._buffers.setdefault(session_id, []).append(entry)

    async def flush(self, session_id: str) -> None:
        entries = self._buffers.pop(session_id, [])
        if not entries:
            return
        self._dir.mkdir(parents=True, exist_ok=True)
        path = self._dir / f"{session_id}.jsonl"
        with open(path, "a", encoding="utf-8") as f:
            for entry in entries:
                f.write(json.dumps(entry, default=str, ensure_ascii=False) + "\n")
        logger.debug("flushed %d trace event(s) to %s", len(entries), path)

"""Session store: ABC, in-memory implementation and JSON-file implementation."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import secrets
import time
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from gitbuddy.engine.errors import GitBuddyError, SessionNotFoundError
from gitbuddy.engine.models import Session, SessionInfo

logger = logging.getLogger(__name__)

MAX_SESSION_FILE_SIZE = 50 * 1024 * 1024


def generate_session_id(agent_type: str, now: datetime | None = None) -> str:
    """``<agent_type>-<YYYY-MM-DD-HHMMSS>-<4 hex>``, e.g. ``debug-2025-01-15-143022-a3f2``."""
    now = now or datetime.now()
    return f"{agent_type}-{now:%Y-%m-%d-%H%M%S}-{secrets.token_hex(2)}"


def _info(session: Session, size_bytes: int = 0) -> SessionInfo:
    return SessionInfo(
        id=session.id,
        agent_type=session.agent_type,
        created_at=session.created_at,
        updated_at=session.updated_at,
        iterations=session.iteration_count,
        max_iterations=session.max_iterations,
        total_tokens=session.token_usage.total_tokens,
        size_bytes=size_bytes,
    )


class SessionStore(ABC):
    """Async session persistence interface."""

    @abstractmethod
    async def save(self, session: Session) -> None: ...

    @abstractmethod
    async def load(self, session_id: str) -> Session:
        """Return the session or raise :class:`SessionNotFoundError`."""

    @abstractmethod
    async def list(self) -> list[SessionInfo]:
        """Lightweight summaries, most recently updated first."""

    @abstractmethod
    async def delete(self, session_id: str) -> None: ...

    @abstractmethod
    async def exists(self, session_id: str) -> bool: ...

    async def cleanup_old(self, max_keep: int) -> int:
        """Keep the ``max_keep`` most recently updated sessions; return how many were removed."""
        sessions = await self.list()
        if max_keep < 0 or len(sessions) <= max_keep:
            return 0
        removed = 0
        for info in sessions[max_keep:]:
            try:
                await self.delete(info.id)
                removed += 1
            except SessionNotFoundError:
                continue
        if removed:
            logger.info("removed %d old session(s), kept %d", removed, max_keep)
        return removed


class InMemorySessionStore(SessionStore):
    """Dict-backed store: suitable for single-process dev/test."""

    def __init__(self) -> None:
        self._store: dict[str, Session] = {}

    async def save(self, session: Session) -> None:
        session.updated_at = time.time()
        self._store[session.id] = session.model_copy(deep=True)

    async def load(self, session_id: str) -> Session:
        try:
            return self._store[session_id].model_copy(deep=True)
        except KeyError:
            raise SessionNotFoundError(session_id) from None

    async def list(self) -> list[SessionInfo]:
        infos = [_info(s) for s in self._store.values()]
        return sorted(infos, key=lambda i: i.updated_at, reverse=True)

    async def delete(self, session_id: str) -> None:
        if self._store.pop(session_id, None) is None:
            raise SessionNotFoundError(session_id)

    async def exists(self, session_id: str) -> bool:
        return session_id in self._store


class FileSessionStore(SessionStore):
    """One pretty-printed ``<id>.json`` file per session under ``save_dir``.

    File I/O runs in a worker thread so a checkpoint never blocks the
    event loop for the length of a large history.
    """

    def __init__(self, save_dir: str | Path, max_file_size: int = MAX_SESSION_FILE_SIZE) -> None:
        self._dir = Path(save_dir)
        self._max_file_size = max_file_size

    @property
    def save_dir(self) -> Path:
        return self._dir

    def _path(self, session_id: str) -> Path:
        if not session_id or "/" in session_id or "\\" in session_id or session_id.startswith("."):
            raise SessionNotFoundError(session_id)
        return self._dir / f"{session_id}.json"

    # -- save ------------------------------------------------------------

    async def save(self, session: Session) -> None:
        session.updated_at = time.time()
        data = session.model_dump_json(indent=2)
        if len(data.encode("utf-8")) > self._max_file_size:
            raise GitBuddyError(
                f"session {session.id} is too large to save "
                f"({len(data)} bytes, limit {self._max_file_size})"
            )
        await asyncio.to_thread(self._write, self._path(session.id), data)
        logger.debug("session saved id=%s messages=%d", session.id, len(session.messages))

    def _write(self, path: Path, data: str) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(data, encoding="utf-8")
        os.replace(tmp, path)

    # -- load ------------------------------------------------------------

    async def load(self, session_id: str) -> Session:
        path = self._path(session_id)
        try:
            raw = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            raise SessionNotFoundError(session_id) from None
        try:
            return Session.model_validate_json(raw)
        except ValidationError as exc:
            raise GitBuddyError(f"session file {path} is corrupt: {exc}") from exc

    # -- list / delete -----------------------------------------------------

    async def list(self) -> list[SessionInfo]:
        return await asyncio.to_thread(self._list_sync)

    def _list_sync(self) -> list[SessionInfo]:
        if not self._dir.is_dir():
            return []
        infos: list[SessionInfo] = []
        # One file at a time: only the current session is ever held in memory.
        for path in self._dir.glob("*.json"):
            try:
                size = path.stat().st_size
                session = Session.model_validate_json(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                logger.warning("skipping unreadable session file %s: %s", path.name, exc)
                continue
            infos.append(_info(session, size))
        infos.sort(key=lambda i: i.updated_at, reverse=True)
        return infos

    async def delete(self, session_id: str) -> None:
        path = self._path(session_id)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            raise SessionNotFoundError(session_id) from None
        logger.debug("session deleted id=%s", session_id)

    async def exists(self, session_id: str) -> bool:
        try:
            return self._path(session_id).is_file()
        except SessionNotFoundError:
            return False


def session_summary(session: Session) -> str:
    """Human-readable block used by ``gitbuddy sessions show``."""
    def fmt(ts: float) -> str:
        return datetime.fromtimestamp(ts).astimezone().isoformat(timespec="seconds")

    lines = [
        "Session Details",
        "===============",
        f"ID:              {session.id}",
        f"Agent Type:      {session.agent_type}",
        f"Created:         {fmt(session.created_at)}",
        f"Updated:         {fmt(session.updated_at)}",
        f"Iterations:      {session.iteration_count} / {session.max_iterations}",
        f"Messages:        {len(session.messages)}",
    ]
    usage = session.token_usage
    if usage.total_tokens:
        lines += [
            "Token Usage:",
            f"  Prompt:        {usage.prompt_tokens}",
            f"  Completion:    {usage.completion_tokens}",
            f"  Total:         {usage.total_tokens}",
        ]
    if session.metadata:
        lines.append("Metadata:")
        lines.extend(f"  {k}: {v}" for k, v in sorted(session.metadata.items()))
    lines += ["", f"Resume with: gitbuddy {session.agent_type} --resume {session.id}"]
    return "\n".join(lines)


def dump_messages(session: Session) -> str:
    """The message list as pretty JSON (``sessions show --messages``)."""
    return json.dumps([m.model_dump(mode="json") for m in session.messages], indent=2, ensure_ascii=False)

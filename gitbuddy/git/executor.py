"""Async git command executor.

Every operation returns git's stdout with surrounding whitespace stripped
and raises :class:`GitError` (carrying stderr) on a non-zero exit. The
subprocess is killed if the awaiting task is cancelled.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from gitbuddy.engine.errors import GitError

logger = logging.getLogger(__name__)


def _ref(ref: str) -> str:
    """Reject refs git would parse as an option (e.g. ``--output=...``)."""
    ref = ref.strip()
    if not ref:
        raise GitError("empty git ref")
    if ref.startswith("-"):
        raise GitError(f"invalid git ref: {ref!r}")
    return ref


@dataclass
class LogOptions:
    count: int = 0
    author: str = ""
    since: str = ""
    until: str = ""
    format: str = ""

    def to_args(self) -> list[str]:
        args: list[str] = []
        if self.count > 0:
            args += ["-n", str(self.count)]
        if self.author:
            args.append(f"--author={self.author}")
        if self.since:
            args.append(f"--since={self.since}")
        if self.until:
            args.append(f"--until={self.until}")
        if self.format:
            args.append(f"--format={self.format}")
        return args


class GitExecutor:
    def __init__(self, work_dir: str | Path = ".", git_binary: str = "git") -> None:
        self.work_dir = Path(work_dir)
        self._git = git_binary

    async def run(self, *args: str) -> str:
        logger.debug("git %s (cwd=%s)", " ".join(args), self.work_dir)
        proc = await asyncio.create_subprocess_exec(
            self._git, *args,
            cwd=str(self.work_dir),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise
        err_text = stderr.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            raise GitError(
                f"git {' '.join(args)} failed (exit {proc.returncode}): {err_text.strip()}",
                stderr=err_text,
            )
        return stdout.decode("utf-8", errors="replace").strip()

    # -- diffs ---------------------------------------------------------------

    async def diff_cached(self) -> str:
        return await self.run("diff", "--cached")

    async def diff_branches(self, base: str, head: str) -> str:
        return await self.run("diff", f"{_ref(base)}..{_ref(head)}")

    # -- history -------------------------------------------------------------

    async def status(self) -> str:
        return await self.run("status")

    async def log(self, options: LogOptions | None = None) -> str:
        options = options or LogOptions()
        try:
            return await self.run("log", *options.to_args())
        except GitError as exc:
            if "does not have any commits" in exc.stderr:
                return ""
            raise

    async def log_range(self, base: str, head: str, format: str = "") -> str:
        args = ["log", f"{_ref(base)}..{_ref(head)}"]
        if format:
            args.append(f"--format={format}")
        return await self.run(*args)

    async def show(self, ref: str = "HEAD") -> str:
        return await self.run("show", _ref(ref or "HEAD"), "--stat")

    async def list_branches(self) -> str:
        return await self.run("branch", "-a", "-v")

    # -- identity / mutation -------------------------------------------------

    async def current_branch(self) -> str:
        return await self.run("rev-parse", "--abbrev-ref", "HEAD")

    async def current_user(self) -> str:
        return await self.run("config", "user.name")

    async def commit(self, message: str) -> str:
        return await self.run("commit", "-m", message)

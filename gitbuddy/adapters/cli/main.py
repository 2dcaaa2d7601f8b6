"""Command-line host: ``gitbuddy commit|pr|report|debug|chat|sessions``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from datetime import datetime
from typing import TextIO

from gitbuddy import __version__, create_engine, create_skill
from gitbuddy.config import Settings
from gitbuddy.engine.cancellation import Cancellation
from gitbuddy.engine.errors import ConfigError, GitBuddyError
from gitbuddy.engine.models import AgentRequest, RetryConfig, StreamDelta
from gitbuddy.engine.session import FileSessionStore, SessionStore, dump_messages, session_summary
from gitbuddy.git.executor import GitExecutor
from gitbuddy.tools.plan import ExecutionPlan

logger = logging.getLogger(__name__)

EXIT_INTERRUPTED = 130


# ---------------------------------------------------------------------------
# Interrupt handling
# ---------------------------------------------------------------------------

class InterruptHandler:
    """First SIGINT/SIGTERM: signal cancellation, then cancel the run task
    after a short grace period. Second signal: exit immediately."""

    def __init__(self, cancellation: Cancellation, task: asyncio.Task, grace: float = 2.0, out: TextIO = sys.stderr) -> None:
        self._cancellation = cancellation
        self._task = task
        self._grace = grace
        self._out = out
        self._loop: asyncio.AbstractEventLoop | None = None
        self._installed: list[int] = []
        self.interrupted = False

    def install(self) -> None:
        self._loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                self._loop.add_signal_handler(sig, self.trigger)
            except (NotImplementedError, RuntimeError):
                # Windows event loops have no add_signal_handler.
                signal.signal(sig, lambda *_: self._loop.call_soon_threadsafe(self.trigger))
            self._installed.append(sig)

    def remove(self) -> None:
        for sig in self._installed:
            try:
                if self._loop is not None:
                    self._loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                signal.signal(sig, signal.SIG_DFL)
        self._installed.clear()

    def trigger(self) -> None:
        if self.interrupted:
            print("\n\nForce exit requested.", file=self._out, flush=True)
            os._exit(EXIT_INTERRUPTED)
        self.interrupted = True
        print("\n\nReceived interrupt signal. Stopping agent...", file=self._out, flush=True)
        self._cancellation.cancel("interrupted by user")
        loop = self._loop or asyncio.get_running_loop()
        loop.call_later(self._grace, self._cancel_task)

    def _cancel_task(self) -> None:
        if not self._task.done():
            self._task.cancel()


# ---------------------------------------------------------------------------
# Stream display
# ---------------------------------------------------------------------------

class StreamPrinter:
    """Progress side channel: echoes streamed text and announces tool calls."""

    def __init__(self, out: TextIO = sys.stderr, echo_content: bool = True) -> None:
        self._out = out
        self._echo = echo_content

    def __call__(self, delta: StreamDelta) -> None:
        if delta.content and self._echo:
            self._out.write(delta.content)
        for fragment in delta.tool_calls:
            # The name arrives once, on the first fragment of each call.
            if fragment.name:
                self._out.write(f"\n-> {fragment.name}\n")
        self._out.flush()


# ---------------------------------------------------------------------------
# Agent commands
# ---------------------------------------------------------------------------

def _request_from_args(args: argparse.Namespace, settings: Settings) -> AgentRequest:
    options: dict[str, str] = {}
    for key in ("base", "head", "since", "until", "author"):
        value = getattr(args, key, None)
        if value is not None:
            options[key] = value
    query = " ".join(getattr(args, "query", None) or [])
    return AgentRequest(
        language=args.language or settings.language,
        context=args.context or "",
        query=query,
        max_iterations=args.max_iterations or 0,
        options=options,
    )


def _apply_overrides(args: argparse.Namespace, settings: Settings) -> Settings:
    update: dict[str, object] = {}
    if args.debug:
        update["debug"] = True
    if args.retry_attempts is not None:
        try:
            update["retry"] = RetryConfig(
                enabled=args.retry_attempts > 0,
                max_attempts=max(args.retry_attempts, 0),
                backoff_base=settings.retry.backoff_base,
                backoff_max=settings.retry.backoff_max,
            )
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc
    return settings.model_copy(update=update) if update else settings


async def run_agent(args: argparse.Namespace, settings: Settings, out: TextIO = sys.stdout) -> int:
    git = GitExecutor(args.work_dir)
    plan = ExecutionPlan()
    store = FileSessionStore(settings.session_dir)
    engine = create_engine(git=git, plan=plan, settings=settings, session_store=store)
    skill = create_skill(args.command, git=git, plan=plan)
    request = _request_from_args(args, settings)

    session = await engine.prepare(skill, request, args.resume)
    logger.debug("starting %s run session=%s", skill.name, session.id)
    cancellation = Cancellation()
    printer = StreamPrinter(echo_content=args.command in ("chat", "debug"))
    task = asyncio.create_task(engine.run(skill, session, request, on_delta=printer, cancellation=cancellation))
    handler = InterruptHandler(cancellation, task)
    handler.install()
    try:
        result = await task
    except asyncio.CancelledError:
        if not handler.interrupted:
            raise
        if await store.exists(session.id):
            print(f"Session saved: {session.id}", file=sys.stderr)
            print(f"  Resume with: gitbuddy {skill.name} --resume {session.id}", file=sys.stderr)
        else:
            print("No session was saved.", file=sys.stderr)
        return EXIT_INTERRUPTED
    finally:
        handler.remove()

    await store.cleanup_old(settings.max_sessions)

    print(file=sys.stderr)
    print(result.text, file=out)
    print(
        f"\n[session {result.session_id}: {result.iterations} iteration(s), "
        f"{result.token_usage.total_tokens} tokens]",
        file=sys.stderr,
    )

    if args.command == "commit" and getattr(args, "yes", False):
        output = await git.commit(result.text)
        print(output, file=out)
    return 0


# ---------------------------------------------------------------------------
# sessions
# ---------------------------------------------------------------------------

async def run_sessions(args: argparse.Namespace, store: SessionStore, out: TextIO = sys.stdout) -> int:
    action = args.action or "list"

    if action == "list":
        sessions = await store.list()
        if not sessions:
            print("No saved sessions found.", file=out)
            return 0
        print(f"{'ID':<40} {'AGENT':<8} {'UPDATED':<19} {'ITER':>9} {'TOKENS':>8}", file=out)
        for info in sessions:
            updated = datetime.fromtimestamp(info.updated_at).strftime("%Y-%m-%d %H:%M:%S")
            iterations = f"{info.iterations}/{info.max_iterations}"
            print(f"{info.id:<40} {info.agent_type:<8} {updated:<19} {iterations:>9} {info.total_tokens:>8}", file=out)
        print(f"\nTotal: {len(sessions)} session(s)", file=out)
        if isinstance(store, FileSessionStore):
            print(f"Session directory: {store.save_dir}", file=out)
        return 0

    if action == "show":
        session = await store.load(args.session_id)
        print(session_summary(session), file=out)
        if args.messages:
            print(dump_messages(session), file=out)
        return 0

    if action == "delete":
        await store.delete(args.session_id)
        print(f"Session deleted: {args.session_id}", file=out)
        return 0

    if action == "clean":
        removed = await store.cleanup_old(args.max)
        print(f"Cleaned up {removed} old session(s) (kept {args.max} most recent)", file=out)
        return 0

    raise GitBuddyError(f"unknown sessions action: {action}")


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gitbuddy", description="LLM agents for everyday git work.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-l", "--language", help="output language (default: GITBUDDY_LANGUAGE or en)")
    common.add_argument("-c", "--context", help="extra context for the model")
    common.add_argument("--max-iterations", type=int, help="iteration budget for this run")
    common.add_argument("--resume", metavar="SESSION_ID", help="continue a saved session")
    common.add_argument("--retry-attempts", type=int, help="retries for transient model errors (0 disables)")
    common.add_argument("-C", "--work-dir", default=".", help="repository directory (default: .)")
    common.add_argument("--debug", action="store_true", help="verbose logging")

    commit = sub.add_parser("commit", parents=[common], help="generate a commit message for staged changes")
    commit.add_argument("-y", "--yes", action="store_true", help="commit with the generated message")

    pr = sub.add_parser("pr", parents=[common], help="generate a pull request description")
    pr.add_argument("--base", default=None, help="target branch (default: main)")
    pr.add_argument("--head", default=None, help="source branch (default: current branch)")

    report = sub.add_parser("report", parents=[common], help="generate a work report from git history")
    report.add_argument("--since", default=None, help="start of the period (default: '1 week ago')")
    report.add_argument("--until", default=None, help="end of the period")
    report.add_argument("--author", default=None, help="author filter (default: git user.name)")

    debug = sub.add_parser("debug", parents=[common], help="investigate a problem and write an issue report")
    debug.add_argument("query", nargs="*", help="problem description")

    chat = sub.add_parser("chat", parents=[common], help="ask a question about the repository")
    chat.add_argument("query", nargs="*", help="question")

    sessions = sub.add_parser("sessions", help="manage saved sessions")
    sessions.add_argument("--debug", action="store_true", help=argparse.SUPPRESS)
    actions = sessions.add_subparsers(dest="action")
    actions.add_parser("list", help="list saved sessions")
    show = actions.add_parser("show", help="show one session")
    show.add_argument("session_id")
    show.add_argument("--messages", action="store_true", help="also print the message history")
    delete = actions.add_parser("delete", help="delete one session")
    delete.add_argument("session_id")
    clean = actions.add_parser("clean", help="keep only the most recent sessions")
    clean.add_argument("--max", type=int, default=None, help="sessions to keep (default: GITBUDDY_MAX_SESSIONS)")

    return parser


async def run_cli(args: argparse.Namespace) -> int:
    settings = Settings.from_env()
    if args.command == "sessions":
        if getattr(args, "max", None) is None:
            args.max = settings.max_sessions
        return await run_sessions(args, FileSessionStore(settings.session_dir))
    settings = _apply_overrides(args, settings)
    return await run_agent(args, settings)


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    debug = getattr(args, "debug", False) or os.environ.get("GITBUDDY_DEBUG", "").lower() in ("1", "true", "yes")
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.command in ("debug", "chat") and not args.query and not args.resume:
        print(f"Usage: gitbuddy {args.command} <text>", file=sys.stderr)
        sys.exit(2)

    try:
        code = asyncio.run(run_cli(args))
    except Exception as exc:
        attempts = getattr(exc, "attempts", None)
        if attempts is not None:
            print(f"Error: model request failed after {attempts} attempts: {exc}", file=sys.stderr)
        elif isinstance(exc, GitBuddyError):
            print(f"Error: {exc}", file=sys.stderr)
        else:
            raise
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
